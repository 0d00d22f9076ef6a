"""
Domain Reputation Analyzer
Classifies sender domains using static allow/deny lists, TLD heuristics
and look-alike (typosquatting) detection against trusted domains
"""

import re
import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from mailshield.core.models import (
    DetectionType,
    DomainReputation,
    Reputation,
    SecurityDetection,
    Severity,
)
from mailshield.core.similarity import string_similarity

logger = logging.getLogger(__name__)

# Order matters: only the first look-alike match is reported
TRUSTED_DOMAINS = (
    'gmail.com', 'outlook.com', 'yahoo.com', 'apple.com', 'microsoft.com',
    'google.com', 'amazon.com', 'paypal.com', 'stripe.com', 'github.com',
)

# Entries starting with "." are TLDs, the rest are exact hostnames
SUSPICIOUS_DOMAINS = frozenset({
    '.tk', '.ml', '.ga', '.cf', 'bit.ly', 'tinyurl.com',
})

# Heuristics for freshly registered throwaway domains
NEW_DOMAIN_PATTERNS = [
    re.compile(r'\d{4,}'),           # Many digits
    re.compile(r'-{2,}'),            # Doubled hyphens
    re.compile(r'[0-9]{2,}-[a-z]+'),  # Digits, hyphen, letters
]

SPOOFING_SIMILARITY_THRESHOLD = 0.8

# Reputation score penalty per detection severity
SEVERITY_PENALTY = {
    Severity.LOW: 10,
    Severity.MEDIUM: 20,
    Severity.HIGH: 40,
    Severity.CRITICAL: 60,
}

NEUTRAL_SCORE = 70
TRUSTED_SCORE = 95


def extract_domain(email_address: str) -> Optional[str]:
    """Domain part of an address, lower-cased; None when there is no '@'"""
    if not email_address or '@' not in email_address:
        return None
    domain = email_address.rsplit('@', 1)[1].strip().strip('>').lower()
    return domain or None


def is_suspicious_domain(domain: str, suspicious_domains: Iterable[str] = SUSPICIOUS_DOMAINS) -> bool:
    """Exact hostname or TLD membership in the suspicious set"""
    if not domain:
        return False
    suspicious = suspicious_domains if isinstance(suspicious_domains, (set, frozenset)) else set(suspicious_domains)
    tld = '.' + domain.rsplit('.', 1)[-1]
    return domain in suspicious or tld in suspicious


class DomainReputationAnalyzer:
    """
    Scores sender domains.

    `analyze` is a pure function of its input. `reputation` keeps a per-domain
    cache whose entries are recomputed once older than `cache_ttl`.
    """

    def __init__(
        self,
        trusted_domains: Optional[Iterable[str]] = None,
        suspicious_domains: Optional[Iterable[str]] = None,
        cache_ttl: timedelta = timedelta(hours=24),
    ):
        if trusted_domains is None:
            trusted_domains = TRUSTED_DOMAINS
        if suspicious_domains is None:
            suspicious_domains = SUSPICIOUS_DOMAINS
        self.trusted_domains = tuple(d.lower() for d in trusted_domains)
        self.suspicious_domains = frozenset(d.lower() for d in suspicious_domains)
        self.cache_ttl = cache_ttl
        self._cache: Dict[str, DomainReputation] = {}
        self._lock = threading.Lock()

    def analyze(self, sender_email: str) -> List[SecurityDetection]:
        """Detections for the domain of a sender address"""
        detections: List[SecurityDetection] = []
        domain = extract_domain(sender_email)
        if not domain:
            return detections

        if is_suspicious_domain(domain, self.suspicious_domains):
            detections.append(SecurityDetection(
                type=DetectionType.SUSPICIOUS_DOMAIN,
                severity=Severity.HIGH,
                description="Email from suspicious domain",
                evidence=(f"Domain: {domain}", "Known suspicious TLD or domain"),
                confidence=0.85,
            ))

        spoofing = self.detect_spoofing(domain)
        if spoofing:
            detections.append(spoofing)

        if self.is_likely_new_domain(domain):
            detections.append(SecurityDetection(
                type=DetectionType.SUSPICIOUS_DOMAIN,
                severity=Severity.MEDIUM,
                description="Email from potentially new domain",
                evidence=(f"Domain: {domain}", "Domain appears to be recently registered"),
                confidence=0.65,
            ))

        return detections

    def detect_spoofing(self, domain: str) -> Optional[SecurityDetection]:
        """First trusted domain the given one closely resembles without matching"""
        domain = domain.lower()
        if domain in self.trusted_domains:
            return None

        for trusted in self.trusted_domains:
            similarity = string_similarity(domain, trusted)
            if SPOOFING_SIMILARITY_THRESHOLD <= similarity < 1.0:
                return SecurityDetection(
                    type=DetectionType.SPOOFING,
                    severity=Severity.CRITICAL,
                    description="Potential domain spoofing detected",
                    evidence=(
                        f"Suspicious domain: {domain}",
                        f"Similar to trusted domain: {trusted}",
                        f"Similarity: {round(similarity * 100)}%",
                    ),
                    confidence=0.90,
                )
        return None

    @staticmethod
    def is_likely_new_domain(domain: str) -> bool:
        return any(pattern.search(domain) for pattern in NEW_DOMAIN_PATTERNS)

    def reputation(self, domain: str, now: Optional[datetime] = None) -> DomainReputation:
        """Cached reputation verdict for a domain"""
        domain = domain.lower().strip()
        now = now or datetime.utcnow()

        with self._lock:
            cached = self._cache.get(domain)
            if cached and now - cached.last_checked < self.cache_ttl:
                return cached

        logger.debug(f"Refreshing reputation for {domain}")
        verdict = self._compute_reputation(domain, now)

        with self._lock:
            self._cache[domain] = verdict
        return verdict

    def _compute_reputation(self, domain: str, now: datetime) -> DomainReputation:
        detections = self.analyze(f"@{domain}")
        reasons = tuple(d.description for d in detections)

        if any(d.type == DetectionType.SPOOFING for d in detections):
            reputation = Reputation.MALICIOUS
        elif detections:
            reputation = Reputation.SUSPICIOUS
        elif domain in self.trusted_domains:
            reputation = Reputation.TRUSTED
            reasons = ("Domain is on the trusted list",)
        else:
            reputation = Reputation.NEUTRAL

        if reputation == Reputation.TRUSTED:
            score = TRUSTED_SCORE
        else:
            score = max(0, NEUTRAL_SCORE - sum(SEVERITY_PENALTY[d.severity] for d in detections))

        return DomainReputation(
            domain=domain,
            reputation=reputation,
            score=score,
            reasons=reasons,
            last_checked=now,
        )

    def clear_cache(self):
        with self._lock:
            self._cache.clear()
