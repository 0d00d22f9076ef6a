"""
LLM Threat Classifier
Sends a structured prompt to an external completion service and expects a JSON
verdict back. The provider is hidden behind a one-method backend interface:

- OpenAICompatibleBackend: any /chat/completions endpoint over httpx
- OllamaBackend: local inference through LangChain

Every failure (timeout, transport error, non-2xx, bad JSON, wrong shape) is
raised as ClassifierError so the caller can fall back to the rule engine.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Protocol

import httpx
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import PromptTemplate
from langchain_ollama import OllamaLLM
from pydantic import BaseModel, Field, ValidationError

from mailshield.core.aggregator import recommendations_for_types
from mailshield.core.config import settings
from mailshield.core.domain_reputation import extract_domain
from mailshield.core.exceptions import ClassifierError
from mailshield.core.input_sanitizer import bound_text
from mailshield.core.models import (
    AnalysisSource,
    DetectionType,
    DomainReputation,
    EmailAnalysisResult,
    EmailInput,
    RecommendedAction,
    Reputation,
    ThreatLevel,
)

logger = logging.getLogger(__name__)

MAX_PROMPT_BODY_CHARS = 4000

THREAT_SYSTEM_PROMPT = """You are an expert email security analyst. Analyze emails for phishing, scams, malware, and other threats.
Respond with JSON in this exact format:
{
  "threatLevel": "safe|low|medium|high|critical",
  "threatTypes": ["phishing", "scam", "malware", "spam", "spoofing", "social_engineering"],
  "confidence": 0.95,
  "reasoning": "Detailed explanation of analysis",
  "warningMessage": "User-friendly warning message",
  "actionRecommended": "allow|warn|quarantine|block",
  "suspiciousElements": ["list of specific suspicious elements"],
  "legitimacyScore": 85
}"""

SENDER_SYSTEM_PROMPT = """You are a domain reputation expert. Analyze email domains for security risks and reputation.
Respond with JSON in this exact format:
{
  "isKnownThreat": false,
  "domainReputation": "good|neutral|suspicious|malicious",
  "riskFactors": ["list of specific risk factors found"]
}"""

SENDER_REPUTATION_MAP = {
    "good": (Reputation.TRUSTED, 90),
    "neutral": (Reputation.NEUTRAL, 60),
    "suspicious": (Reputation.SUSPICIOUS, 30),
    "malicious": (Reputation.MALICIOUS, 5),
}


class LLMThreatVerdict(BaseModel):
    """JSON contract expected back from the completion service"""
    threatLevel: Literal["safe", "low", "medium", "high", "critical"]
    threatTypes: List[str]
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str
    warningMessage: Optional[str] = None
    actionRecommended: Literal["allow", "warn", "quarantine", "block"]
    suspiciousElements: List[str]
    legitimacyScore: int = Field(ge=0, le=100)


class LLMSenderVerdict(BaseModel):
    isKnownThreat: bool
    domainReputation: Literal["good", "neutral", "suspicious", "malicious"]
    riskFactors: List[str] = []


class CompletionBackend(Protocol):
    """Anything that turns a system instruction plus a prompt into text"""

    name: str

    async def complete(self, system_prompt: str, prompt: str) -> str:
        ...

    async def is_available(self) -> bool:
        ...


class OpenAICompatibleBackend:
    """Chat-completions API in JSON mode over httpx"""

    name = "openai"

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o",
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def complete(self, system_prompt: str, prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.1,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)

        if response.status_code != 200:
            raise ClassifierError(f"Completion API returned {response.status_code}: {response.text[:200]}")

        data = response.json()
        return data["choices"][0]["message"]["content"] or ""

    async def is_available(self) -> bool:
        return bool(self.api_key)


class OllamaBackend:
    """Local Ollama model through LangChain, run off the event loop"""

    name = "ollama"

    def __init__(self, model: str = "llama3.2:3b", base_url: str = "http://localhost:11434"):
        self.model = model
        self.base_url = base_url
        self._llm = None
        self._available: Optional[bool] = None

    @property
    def llm(self):
        """Lazy initialization of LLM"""
        if self._llm is None:
            try:
                self._llm = OllamaLLM(
                    model=self.model,
                    base_url=self.base_url,
                    temperature=0.1,  # Low temperature for consistent outputs
                    format="json",
                )
                logger.info(f"LLM initialized with model: {self.model}")
            except Exception as e:
                logger.error(f"Failed to initialize LLM: {e}")
                self._llm = None
        return self._llm

    async def complete(self, system_prompt: str, prompt: str) -> str:
        if self.llm is None:
            raise ClassifierError("Ollama model could not be initialized")

        # Passed as variables so JSON braces in the prompts are not read as placeholders
        template = PromptTemplate.from_template("{system_prompt}\n\n{prompt}")
        chain = template | self.llm | StrOutputParser()
        return await asyncio.to_thread(chain.invoke, {"system_prompt": system_prompt, "prompt": prompt})

    async def is_available(self) -> bool:
        """Check if Ollama is running and model is available"""
        if self._available is not None:
            return self._available

        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                if response.status_code == 200:
                    models = response.json().get("models", [])
                    model_names = [m.get("name", "").split(":")[0] for m in models]
                    self._available = self.model.split(":")[0] in model_names
                    if not self._available:
                        logger.warning(f"Model {self.model} not found. Available: {model_names}")
                else:
                    self._available = False
        except Exception as e:
            logger.warning(f"Ollama not available: {e}")
            self._available = False

        return self._available


def build_threat_prompt(email: EmailInput) -> str:
    """Prompt embedding sender, subject, body, links and attachment names"""
    sender_line = email.sender_email
    if email.sender:
        sender_line += f" ({email.sender})"

    sections = [
        "ANALYZE THIS EMAIL FOR SECURITY THREATS:",
        "",
        f"FROM: {sender_line}",
        f"SUBJECT: {email.subject}",
        "",
        "EMAIL BODY:",
        bound_text(email.body, MAX_PROMPT_BODY_CHARS),
        "",
    ]
    if email.links:
        sections.append(f"LINKS FOUND: {', '.join(email.links[:20])}")
    if email.attachments:
        sections.append(f"ATTACHMENTS: {', '.join(a.name for a in email.attachments)}")

    sections.append("""
ANALYZE FOR:
1. Phishing attempts (credential theft, fake login pages)
2. Scams (financial fraud, fake prizes, advance fee fraud)
3. Malware distribution (suspicious attachments/links)
4. Impersonation (pretending to be legitimate organizations)
5. Social engineering attacks
6. Spam and unwanted commercial email

THREAT LEVELS:
- safe: Legitimate email, no threats detected
- low: Minor suspicious elements, likely safe
- medium: Some concerning elements, caution advised
- high: Clear threat indicators, user warning needed
- critical: Definite malicious email, block immediately

Provide detailed reasoning and specific suspicious elements found.""")
    return "\n".join(sections)


def parse_json_response(response: str) -> Dict[str, Any]:
    """JSON object from a model response, tolerating markdown code fences"""
    clean_response = (response or "").strip()
    if clean_response.startswith("```"):
        lines = clean_response.split("\n")
        clean_response = "\n".join(lines[1:-1])

    try:
        data = json.loads(clean_response)
    except json.JSONDecodeError as e:
        raise ClassifierError(f"Completion was not valid JSON: {e}")

    if not isinstance(data, dict):
        raise ClassifierError("Completion JSON was not an object")
    return data


class LLMThreatClassifier:
    """Threat classifier backed by an external completion service"""

    def __init__(self, backend: CompletionBackend, timeout: float = 5.0):
        self.backend = backend
        self.timeout = timeout

    async def _complete(self, system_prompt: str, prompt: str) -> Dict[str, Any]:
        try:
            response = await asyncio.wait_for(self.backend.complete(system_prompt, prompt), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ClassifierError(f"LLM call exceeded {self.timeout}s")
        except ClassifierError:
            raise
        except Exception as e:
            raise ClassifierError(f"LLM call failed: {e}") from e

        return parse_json_response(response)

    async def classify(self, email: EmailInput, email_id: str) -> EmailAnalysisResult:
        data = await self._complete(THREAT_SYSTEM_PROMPT, build_threat_prompt(email))
        try:
            verdict = LLMThreatVerdict.model_validate(data)
        except ValidationError as e:
            raise ClassifierError(f"LLM verdict did not match the expected shape: {e.error_count()} errors")

        level = ThreatLevel(verdict.threatLevel)
        action = RecommendedAction(verdict.actionRecommended)
        known_types = {t.value for t in DetectionType}
        high_severity = level in (ThreatLevel.HIGH, ThreatLevel.CRITICAL)

        return EmailAnalysisResult(
            email_id=email_id,
            overall_threat_level=level,
            confidence=round(verdict.confidence, 2),
            detections=(),
            recommendations=tuple(recommendations_for_types(
                [DetectionType(t) for t in verdict.threatTypes if t in known_types],
                high_severity,
            )),
            quarantine_recommended=high_severity or action in (RecommendedAction.QUARANTINE, RecommendedAction.BLOCK),
            threat_types=tuple(verdict.threatTypes),
            action_recommended=action,
            legitimacy_score=verdict.legitimacyScore,
            warning_message=verdict.warningMessage,
            reasoning=verdict.reasoning,
            suspicious_elements=tuple(verdict.suspiciousElements),
            source=AnalysisSource.LLM,
        )

    async def assess_sender(self, email_address: str) -> DomainReputation:
        """Reputation of a sender address as judged by the model"""
        domain = extract_domain(email_address)
        if not domain:
            raise ClassifierError(f"No domain in address '{email_address}'")

        prompt = f"""Analyze the email domain and sender for reputation and security risks:

EMAIL: {email_address}
DOMAIN: {domain}

Check for:
1. Known malicious domains
2. Suspicious domain patterns (typosquatting, lookalikes)
3. Recently registered domains
4. Common phishing domain characteristics
5. Legitimate business domain vs suspicious patterns"""

        data = await self._complete(SENDER_SYSTEM_PROMPT, prompt)
        try:
            verdict = LLMSenderVerdict.model_validate(data)
        except ValidationError as e:
            raise ClassifierError(f"LLM sender verdict did not match the expected shape: {e.error_count()} errors")

        reputation, score = SENDER_REPUTATION_MAP[verdict.domainReputation]
        if verdict.isKnownThreat:
            reputation, score = SENDER_REPUTATION_MAP["malicious"]

        return DomainReputation(
            domain=domain,
            reputation=reputation,
            score=score,
            reasons=tuple(verdict.riskFactors),
            last_checked=datetime.utcnow(),
            source=AnalysisSource.LLM.value,
        )


def get_completion_backend(config=None) -> CompletionBackend:
    """Backend selected by configuration"""
    config = config or settings
    if config.LLM_PROVIDER == "ollama":
        return OllamaBackend(model=config.OLLAMA_MODEL, base_url=config.OLLAMA_HOST)
    return OpenAICompatibleBackend(
        base_url=config.LLM_BASE_URL,
        model=config.LLM_MODEL,
        api_key=config.LLM_API_KEY,
        timeout=config.LLM_TIMEOUT_SECONDS,
    )


async def check_llm_status(classifier: Optional[LLMThreatClassifier]) -> Dict[str, Any]:
    """Check LLM service status"""
    if classifier is None:
        return {"enabled": False, "available": False, "provider": None}

    available = await classifier.backend.is_available()
    return {
        "enabled": True,
        "available": available,
        "provider": classifier.backend.name,
    }
