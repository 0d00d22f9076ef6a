"""
Threat Detection Engine
Runs a threat classifier over emails, applies the user rule store and records
alerts. Two interchangeable classifiers exist behind one interface:

- RuleBasedClassifier: the heuristic analyzers plus the aggregator
- LLMThreatClassifier (mailshield.services.llm_service): external model

FallbackClassifier chains them: try the primary, fall back to rules on failure.
"""

import asyncio
import dataclasses
import hashlib
import logging
from typing import List, Optional, Protocol, Sequence

from mailshield.core import analyzers
from mailshield.core.aggregator import apply_rule_matches, build_result
from mailshield.core.domain_reputation import DomainReputationAnalyzer, extract_domain
from mailshield.core.exceptions import ClassifierError
from mailshield.core.models import (
    AnalysisSource,
    DomainReputation,
    EmailAnalysisResult,
    EmailInput,
    RecommendedAction,
    SecurityDetection,
    ThreatLevel,
)
from mailshield.core.rule_store import SecurityRuleStore

logger = logging.getLogger(__name__)


class ThreatClassifier(Protocol):
    """Anything that turns one email into a verdict"""

    async def classify(self, email: EmailInput, email_id: str) -> EmailAnalysisResult:
        ...


def compute_email_id(email: EmailInput) -> str:
    """Stable identifier derived from the email content"""
    digest = hashlib.sha256()
    for part in (email.sender_email, email.subject, email.body):
        digest.update((part or "").encode("utf-8", errors="ignore"))
        digest.update(b"\x00")
    for attachment in email.attachments:
        digest.update(attachment.name.encode("utf-8", errors="ignore"))
        digest.update(b"\x00")
    for link in email.links:
        digest.update(link.encode("utf-8", errors="ignore"))
        digest.update(b"\x00")
    return f"email_{digest.hexdigest()[:16]}"


class RuleBasedClassifier:
    """Heuristic analyzers feeding the detection aggregator"""

    def __init__(self, domain_analyzer: Optional[DomainReputationAnalyzer] = None):
        self.domain_analyzer = domain_analyzer or DomainReputationAnalyzer()

    def detect(self, email: EmailInput) -> List[SecurityDetection]:
        """All detections for one email, in analyzer order"""
        detections: List[SecurityDetection] = []

        # 1. Domain reputation and look-alike domains
        detections.extend(self.domain_analyzer.analyze(email.sender_email))
        # 2. Content patterns
        detections.extend(analyzers.analyze_content(email.subject, email.body))
        # 3. Authentication headers and routing
        detections.extend(analyzers.analyze_headers(email.headers, email.sender_email))
        # 4. Attachments
        detections.extend(analyzers.analyze_attachments(email.attachments))
        # 5. Social engineering
        detections.extend(analyzers.detect_social_engineering(email.subject, email.body))
        detections.extend(analyzers.detect_impersonation(email.sender, email.sender_email))
        detections.extend(analyzers.detect_grammar_issues(email.body))
        # 6. Links
        detections.extend(analyzers.analyze_urls(email.body, email.links, self.domain_analyzer.suspicious_domains))

        return detections

    def evaluate(self, email: EmailInput, email_id: str) -> EmailAnalysisResult:
        return build_result(email_id, self.detect(email), AnalysisSource.RULES)

    async def classify(self, email: EmailInput, email_id: str) -> EmailAnalysisResult:
        return self.evaluate(email, email_id)


class FallbackClassifier:
    """Try the primary classifier; on ClassifierError use the fallback at reduced confidence"""

    def __init__(self, primary: ThreatClassifier, fallback: ThreatClassifier, confidence_penalty: float = 0.8):
        self.primary = primary
        self.fallback = fallback
        self.confidence_penalty = confidence_penalty

    async def classify(self, email: EmailInput, email_id: str) -> EmailAnalysisResult:
        try:
            return await self.primary.classify(email, email_id)
        except ClassifierError as e:
            logger.warning(f"Primary classifier failed for {email_id}, using rule-based fallback: {e}")

        result = await self.fallback.classify(email, email_id)
        return dataclasses.replace(
            result,
            confidence=round(result.confidence * self.confidence_penalty, 2),
            source=AnalysisSource.RULES_FALLBACK,
            reasoning=f"{result.reasoning} (LLM classifier unavailable)",
        )


def error_result(email_id: str) -> EmailAnalysisResult:
    """Conservative verdict used when analysis could not complete"""
    return EmailAnalysisResult(
        email_id=email_id,
        overall_threat_level=ThreatLevel.LOW,
        confidence=0.0,
        detections=(),
        recommendations=("Analysis could not be completed - treat this email with normal caution",),
        quarantine_recommended=False,
        action_recommended=RecommendedAction.WARN,
        legitimacy_score=50,
        warning_message="This email could not be fully analyzed.",
        reasoning="Analysis failed",
        source=AnalysisSource.ERROR,
    )


class ThreatDetectionEngine:
    """Entry point for single, batch and sender analyses"""

    def __init__(
        self,
        classifier: ThreatClassifier,
        rule_store: SecurityRuleStore,
        alert_service=None,
        domain_analyzer: Optional[DomainReputationAnalyzer] = None,
        llm_classifier=None,
        batch_concurrency: int = 8,
    ):
        self.classifier = classifier
        self.rule_store = rule_store
        self.alert_service = alert_service
        self.domain_analyzer = domain_analyzer or DomainReputationAnalyzer()
        self.llm_classifier = llm_classifier
        self.batch_concurrency = max(1, batch_concurrency)

    async def analyze(self, email: EmailInput) -> EmailAnalysisResult:
        """Verdict for one email; never raises"""
        email_id = compute_email_id(email)
        try:
            result = await self.classifier.classify(email, email_id)
            result = apply_rule_matches(result, self.rule_store.evaluate(email))
        except Exception:
            logger.exception(f"Analysis failed for {email_id}")
            result = error_result(email_id)

        if self.alert_service is not None:
            self.alert_service.record(email, result)
        return result

    async def analyze_batch(self, emails: Sequence[EmailInput]) -> List[EmailAnalysisResult]:
        """Concurrent analysis; results come back in input order"""
        semaphore = asyncio.Semaphore(self.batch_concurrency)

        async def bounded(email: EmailInput) -> EmailAnalysisResult:
            async with semaphore:
                return await self.analyze(email)

        results = await asyncio.gather(*(bounded(email) for email in emails))
        logger.info(f"Batch analysis completed for {len(results)} emails")
        return list(results)

    async def sender_reputation(self, email_address: str) -> Optional[DomainReputation]:
        """LLM verdict when configured, cached rule-based verdict otherwise"""
        domain = extract_domain(email_address)
        if not domain:
            return None

        if self.llm_classifier is not None:
            try:
                return await self.llm_classifier.assess_sender(email_address)
            except ClassifierError as e:
                logger.warning(f"LLM sender reputation failed for {domain}: {e}")

        return self.domain_analyzer.reputation(domain)
