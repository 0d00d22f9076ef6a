"""
Threat Detection Data Model
Shared types for analyzers, the aggregator, the rule store and the API layer
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Severity(str, Enum):
    """Severity of a single detection or rule"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DetectionType(str, Enum):
    """Kind of finding emitted by an analyzer"""
    PHISHING = "phishing"
    SPAM = "spam"
    MALWARE = "malware"
    SCAM = "scam"
    SUSPICIOUS_DOMAIN = "suspicious_domain"
    SPOOFING = "spoofing"
    SOCIAL_ENGINEERING = "social_engineering"
    DATA_EXFILTRATION_RISK = "data_exfiltration_risk"


class ThreatLevel(str, Enum):
    """Aggregate verdict for a whole email"""
    SAFE = "safe"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecommendedAction(str, Enum):
    """Action suggested to the caller for an analyzed email"""
    ALLOW = "allow"
    WARN = "warn"
    QUARANTINE = "quarantine"
    BLOCK = "block"


class RuleType(str, Enum):
    DOMAIN = "domain"
    KEYWORD = "keyword"
    PATTERN = "pattern"
    HEADER = "header"
    ATTACHMENT = "attachment"


class RuleAction(str, Enum):
    BLOCK = "block"
    QUARANTINE = "quarantine"
    FLAG = "flag"
    WARN = "warn"


class Reputation(str, Enum):
    TRUSTED = "trusted"
    NEUTRAL = "neutral"
    SUSPICIOUS = "suspicious"
    MALICIOUS = "malicious"


class AnalysisSource(str, Enum):
    """Which classifier produced a result"""
    RULES = "rules"
    LLM = "llm"
    RULES_FALLBACK = "rules_fallback"
    ERROR = "error"


@dataclass(frozen=True)
class Attachment:
    """Attachment metadata (content is never inspected)"""
    name: str
    type: str = "application/octet-stream"
    size: int = 0


@dataclass(frozen=True)
class EmailInput:
    """Everything the analyzers look at for one email"""
    subject: str = ""
    sender: str = ""  # Display name
    sender_email: str = ""
    body: str = ""
    headers: Optional[Dict[str, str]] = None  # None means "not available", not "empty"
    attachments: Tuple[Attachment, ...] = ()
    links: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SecurityDetection:
    """One finding from one analyzer"""
    type: DetectionType
    severity: Severity
    description: str
    evidence: Tuple[str, ...] = ()
    confidence: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "evidence": list(self.evidence),
            "confidence": self.confidence,
        }


@dataclass
class SecurityRule:
    """User-configurable filter rule; `rule` is a regex source"""
    id: str
    name: str
    description: str
    type: RuleType
    rule: str
    action: RuleAction
    severity: Severity
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "rule": self.rule,
            "action": self.action.value,
            "severity": self.severity.value,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class RuleMatch:
    """An enabled rule that fired on an email"""
    rule_id: str
    name: str
    action: RuleAction
    severity: Severity
    matched: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "name": self.name,
            "action": self.action.value,
            "severity": self.severity.value,
            "matched": self.matched,
        }


@dataclass(frozen=True)
class DomainReputation:
    """Cached reputation verdict for a sender domain"""
    domain: str
    reputation: Reputation
    score: int  # 0-100, higher = more trustworthy
    reasons: Tuple[str, ...]
    last_checked: datetime
    source: str = "rules"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "reputation": self.reputation.value,
            "score": self.score,
            "reasons": list(self.reasons),
            "lastChecked": self.last_checked.isoformat(),
            "source": self.source,
        }


@dataclass(frozen=True)
class EmailAnalysisResult:
    """Canonical verdict for one email, whichever classifier produced it"""
    email_id: str
    overall_threat_level: ThreatLevel
    confidence: float
    detections: Tuple[SecurityDetection, ...]
    recommendations: Tuple[str, ...]
    quarantine_recommended: bool
    threat_types: Tuple[str, ...] = ()
    action_recommended: RecommendedAction = RecommendedAction.ALLOW
    legitimacy_score: int = 100
    warning_message: Optional[str] = None
    reasoning: str = ""
    suspicious_elements: Tuple[str, ...] = ()
    rule_matches: Tuple[RuleMatch, ...] = ()
    source: AnalysisSource = AnalysisSource.RULES

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the field names external callers depend on"""
        return {
            "emailId": self.email_id,
            "overallThreatLevel": self.overall_threat_level.value,
            "confidence": self.confidence,
            "detections": [d.to_dict() for d in self.detections],
            "recommendations": list(self.recommendations),
            "quarantineRecommended": self.quarantine_recommended,
            "threatTypes": list(self.threat_types),
            "actionRecommended": self.action_recommended.value,
            "legitimacyScore": self.legitimacy_score,
            "warningMessage": self.warning_message,
            "reasoning": self.reasoning,
            "suspiciousElements": list(self.suspicious_elements),
            "ruleMatches": [m.to_dict() for m in self.rule_matches],
            "source": self.source.value,
        }


@dataclass
class SecurityAlert:
    """Alert raised for an email whose verdict was not safe"""
    id: int
    email_id: str
    alert_type: str
    severity: Severity
    description: str
    sender: str
    subject: str
    threat_types: List[str] = field(default_factory=list)
    confidence: float = 0.0
    status: str = "open"  # "open" or "acknowledged"
    created_at: datetime = field(default_factory=datetime.utcnow)
    acknowledged_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "emailId": self.email_id,
            "alertType": self.alert_type,
            "severity": self.severity.value,
            "description": self.description,
            "sender": self.sender,
            "subject": self.subject,
            "threatTypes": list(self.threat_types),
            "confidence": self.confidence,
            "status": self.status,
            "createdAt": self.created_at.isoformat(),
            "acknowledgedAt": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
        }
