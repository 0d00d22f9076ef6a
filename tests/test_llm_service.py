"""Tests for the LLM threat classifier, its backends and the rule-based fallback."""

import asyncio
import json

import httpx
import pytest

from mailshield.core.exceptions import ClassifierError
from mailshield.core.models import AnalysisSource, EmailInput, RecommendedAction, Reputation, ThreatLevel
from mailshield.core.threat_engine import FallbackClassifier, RuleBasedClassifier
from mailshield.services.llm_service import (
    LLMThreatClassifier,
    OpenAICompatibleBackend,
    build_threat_prompt,
    check_llm_status,
    parse_json_response,
)

VERDICT = {
    "threatLevel": "high",
    "threatTypes": ["phishing"],
    "confidence": 0.91,
    "reasoning": "Credential harvesting link",
    "warningMessage": "Do not click the link",
    "actionRecommended": "quarantine",
    "suspiciousElements": ["login link to unknown host"],
    "legitimacyScore": 12,
}

PHISHING_EMAIL = EmailInput(
    subject="Verify your account",
    sender="IT Support",
    sender_email="it@helpdesk-login.net",
    body="Log in at http://helpdesk-login.net/verify to keep your mailbox.",
    links=("http://helpdesk-login.net/verify",),
)


class StubBackend:
    """Completion backend returning a canned response."""

    name = "stub"

    def __init__(self, response="", delay=0.0, error=None):
        self.response = response
        self.delay = delay
        self.error = error
        self.calls = []

    async def complete(self, system_prompt, prompt):
        self.calls.append((system_prompt, prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.response

    async def is_available(self):
        return True


def chat_transport(status_code=200, content=None):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/chat/completions")
        if status_code != 200:
            return httpx.Response(status_code, text="upstream failure")
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})
    return httpx.MockTransport(handler)


def test_prompt_contains_email_details():
    prompt = build_threat_prompt(PHISHING_EMAIL)

    assert "FROM: it@helpdesk-login.net (IT Support)" in prompt
    assert "SUBJECT: Verify your account" in prompt
    assert "LINKS FOUND: http://helpdesk-login.net/verify" in prompt


def test_parse_json_response_strips_code_fences():
    fenced = "```json\n" + json.dumps(VERDICT) + "\n```"

    assert parse_json_response(fenced)["threatLevel"] == "high"


@pytest.mark.parametrize("text", ["not json", "", "[1, 2, 3]"])
def test_parse_json_response_rejects_non_objects(text):
    with pytest.raises(ClassifierError):
        parse_json_response(text)


@pytest.mark.asyncio
async def test_classify_maps_verdict_to_result():
    classifier = LLMThreatClassifier(StubBackend(json.dumps(VERDICT)))

    result = await classifier.classify(PHISHING_EMAIL, "email_abc")

    assert result.email_id == "email_abc"
    assert result.source == AnalysisSource.LLM
    assert result.overall_threat_level == ThreatLevel.HIGH
    assert result.action_recommended == RecommendedAction.QUARANTINE
    assert result.quarantine_recommended is True
    assert result.confidence == 0.91
    assert result.legitimacy_score == 12
    assert result.threat_types == ("phishing",)
    assert "Do not click any links in this email" in result.recommendations


@pytest.mark.asyncio
async def test_classify_accepts_missing_warning_message():
    verdict = {k: v for k, v in VERDICT.items() if k != "warningMessage"}
    classifier = LLMThreatClassifier(StubBackend(json.dumps(verdict)))

    result = await classifier.classify(PHISHING_EMAIL, "email_abc")

    assert result.warning_message is None
    assert result.overall_threat_level == ThreatLevel.HIGH


@pytest.mark.asyncio
async def test_classify_rejects_wrong_shape():
    incomplete = {k: v for k, v in VERDICT.items() if k != "threatLevel"}
    classifier = LLMThreatClassifier(StubBackend(json.dumps(incomplete)))

    with pytest.raises(ClassifierError):
        await classifier.classify(PHISHING_EMAIL, "email_abc")


@pytest.mark.asyncio
async def test_classify_rejects_out_of_range_values():
    classifier = LLMThreatClassifier(StubBackend(json.dumps(dict(VERDICT, confidence=3.5))))

    with pytest.raises(ClassifierError):
        await classifier.classify(PHISHING_EMAIL, "email_abc")


@pytest.mark.asyncio
async def test_classify_times_out():
    classifier = LLMThreatClassifier(StubBackend(json.dumps(VERDICT), delay=1.0), timeout=0.05)

    with pytest.raises(ClassifierError):
        await classifier.classify(PHISHING_EMAIL, "email_abc")


@pytest.mark.asyncio
async def test_backend_errors_become_classifier_errors():
    classifier = LLMThreatClassifier(StubBackend(error=ConnectionError("refused")))

    with pytest.raises(ClassifierError):
        await classifier.classify(PHISHING_EMAIL, "email_abc")


@pytest.mark.asyncio
async def test_openai_backend_round_trip():
    backend = OpenAICompatibleBackend(
        base_url="https://llm.example.test/v1",
        api_key="test-key",
        transport=chat_transport(content=json.dumps(VERDICT)),
    )

    result = await LLMThreatClassifier(backend).classify(PHISHING_EMAIL, "email_abc")

    assert result.overall_threat_level == ThreatLevel.HIGH


@pytest.mark.asyncio
async def test_openai_backend_non_200_raises():
    backend = OpenAICompatibleBackend(api_key="test-key", transport=chat_transport(status_code=503))

    with pytest.raises(ClassifierError):
        await backend.complete("system", "prompt")


@pytest.mark.asyncio
async def test_openai_backend_availability_needs_key():
    assert await OpenAICompatibleBackend(api_key=None).is_available() is False
    assert await OpenAICompatibleBackend(api_key="test-key").is_available() is True


@pytest.mark.asyncio
async def test_assess_sender():
    response = json.dumps({"isKnownThreat": False, "domainReputation": "suspicious", "riskFactors": ["lookalike"]})
    classifier = LLMThreatClassifier(StubBackend(response))

    verdict = await classifier.assess_sender("it@helpdesk-login.net")

    assert verdict.domain == "helpdesk-login.net"
    assert verdict.reputation == Reputation.SUSPICIOUS
    assert verdict.score == 30
    assert verdict.reasons == ("lookalike",)
    assert verdict.source == "llm"


@pytest.mark.asyncio
async def test_known_threat_overrides_reputation():
    response = json.dumps({"isKnownThreat": True, "domainReputation": "good", "riskFactors": []})

    verdict = await LLMThreatClassifier(StubBackend(response)).assess_sender("a@b.example")

    assert verdict.reputation == Reputation.MALICIOUS


@pytest.mark.asyncio
async def test_llm_status():
    assert await check_llm_status(None) == {"enabled": False, "available": False, "provider": None}

    status = await check_llm_status(LLMThreatClassifier(StubBackend()))
    assert status == {"enabled": True, "available": True, "provider": "stub"}


class TestFallbackClassifier:

    @pytest.mark.asyncio
    async def test_primary_result_is_used_when_it_succeeds(self):
        classifier = FallbackClassifier(LLMThreatClassifier(StubBackend(json.dumps(VERDICT))), RuleBasedClassifier())

        result = await classifier.classify(PHISHING_EMAIL, "email_abc")

        assert result.source == AnalysisSource.LLM

    @pytest.mark.asyncio
    async def test_falls_back_to_rules_with_reduced_confidence(self):
        rules = RuleBasedClassifier()
        classifier = FallbackClassifier(LLMThreatClassifier(StubBackend("garbage")), rules, confidence_penalty=0.8)

        expected = rules.evaluate(PHISHING_EMAIL, "email_abc")
        result = await classifier.classify(PHISHING_EMAIL, "email_abc")

        assert result.source == AnalysisSource.RULES_FALLBACK
        assert result.overall_threat_level == expected.overall_threat_level
        assert result.confidence == round(expected.confidence * 0.8, 2)
        assert result.confidence < expected.confidence

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_not_swallowed(self):
        class Broken:
            async def classify(self, email, email_id):
                raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            await FallbackClassifier(Broken(), RuleBasedClassifier()).classify(PHISHING_EMAIL, "email_abc")
