"""
Detection Aggregator
Turns the detections of all analyzers into one verdict: threat level,
confidence, recommendations, quarantine decision and recommended action.

Everything here is a pure function of its inputs.
"""

import dataclasses
from typing import Iterable, List, Sequence

from mailshield.core.models import (
    AnalysisSource,
    DetectionType,
    EmailAnalysisResult,
    RecommendedAction,
    RuleAction,
    RuleMatch,
    SecurityDetection,
    Severity,
    ThreatLevel,
)

SAFE_CONFIDENCE = 0.95

# Threat level -> action the caller should take
SEVERITY_ACTION = {
    ThreatLevel.SAFE: RecommendedAction.ALLOW,
    ThreatLevel.LOW: RecommendedAction.ALLOW,
    ThreatLevel.MEDIUM: RecommendedAction.WARN,
    ThreatLevel.HIGH: RecommendedAction.QUARANTINE,
    ThreatLevel.CRITICAL: RecommendedAction.BLOCK,
}

RULE_ACTION_MAP = {
    RuleAction.WARN: RecommendedAction.WARN,
    RuleAction.FLAG: RecommendedAction.WARN,
    RuleAction.QUARANTINE: RecommendedAction.QUARANTINE,
    RuleAction.BLOCK: RecommendedAction.BLOCK,
}

ACTION_RANK = {
    RecommendedAction.ALLOW: 0,
    RecommendedAction.WARN: 1,
    RecommendedAction.QUARANTINE: 2,
    RecommendedAction.BLOCK: 3,
}

LEGITIMACY_WEIGHT = {
    Severity.LOW: 5,
    Severity.MEDIUM: 15,
    Severity.HIGH: 30,
    Severity.CRITICAL: 50,
}

WARNING_MESSAGES = {
    ThreatLevel.LOW: "Minor suspicious elements found. This email is likely safe.",
    ThreatLevel.MEDIUM: "Some concerning elements found. Be cautious with links and requests in this email.",
    ThreatLevel.HIGH: "This email shows clear threat indicators. Do not interact with it.",
    ThreatLevel.CRITICAL: "This email is very likely malicious. It should be blocked.",
}

# Detection type -> recommendations added when that type is present
TYPE_RECOMMENDATIONS = [
    (DetectionType.PHISHING, [
        "Do not click any links in this email",
        "Verify sender identity through alternative communication",
    ]),
    (DetectionType.MALWARE, [
        "Do not download or open attachments",
        "Scan any attachments with antivirus before opening",
    ]),
    (DetectionType.SCAM, [
        "This appears to be a financial scam - do not respond",
        "Report this email to authorities if it involves large sums",
    ]),
    (DetectionType.SPOOFING, [
        "Verify the sender through official channels",
        "Check the actual sender email address carefully",
    ]),
]

HIGH_SEVERITY_RECOMMENDATIONS = [
    "Consider blocking this sender",
    "Move this email to quarantine immediately",
]

THREAT_LEVEL_ORDER = [
    ThreatLevel.SAFE, ThreatLevel.LOW, ThreatLevel.MEDIUM, ThreatLevel.HIGH, ThreatLevel.CRITICAL,
]


def _count(detections: Sequence[SecurityDetection], severity: Severity) -> int:
    return sum(1 for d in detections if d.severity == severity)


def calculate_threat_level(detections: Sequence[SecurityDetection]) -> ThreatLevel:
    """Overall threat level, first matching row wins"""
    if not detections:
        return ThreatLevel.SAFE

    high_count = _count(detections, Severity.HIGH)
    medium_count = _count(detections, Severity.MEDIUM)

    if _count(detections, Severity.CRITICAL) > 0:
        return ThreatLevel.CRITICAL
    if high_count >= 2:
        return ThreatLevel.CRITICAL
    if high_count >= 1:
        return ThreatLevel.HIGH
    if medium_count >= 3:
        return ThreatLevel.HIGH
    if medium_count >= 1:
        return ThreatLevel.MEDIUM

    return ThreatLevel.LOW


def calculate_confidence(detections: Sequence[SecurityDetection]) -> float:
    if not detections:
        return SAFE_CONFIDENCE  # High confidence it's safe

    average = sum(d.confidence for d in detections) / len(detections)
    return round(average, 2)


def is_quarantine_recommended(detections: Sequence[SecurityDetection]) -> bool:
    return any(d.severity in (Severity.HIGH, Severity.CRITICAL) for d in detections)


def generate_recommendations(detections: Sequence[SecurityDetection]) -> List[str]:
    return recommendations_for_types(
        {d.type for d in detections},
        is_quarantine_recommended(detections),
    )


def recommendations_for_types(types: Iterable[DetectionType], high_severity: bool) -> List[str]:
    """Recommendations for a set of threat types; shared with the LLM path"""
    present = set(types)
    recommendations: List[str] = []

    for detection_type, texts in TYPE_RECOMMENDATIONS:
        if detection_type in present:
            recommendations.extend(texts)

    if high_severity:
        recommendations.extend(HIGH_SEVERITY_RECOMMENDATIONS)

    return recommendations


def calculate_legitimacy_score(detections: Sequence[SecurityDetection]) -> int:
    """0-100, higher = more legitimate; never increases when detections are added"""
    penalty = sum(LEGITIMACY_WEIGHT[d.severity] for d in detections)
    return max(0, 100 - penalty)


def threat_types(detections: Sequence[SecurityDetection]) -> List[str]:
    """Distinct detection types in first-seen order"""
    seen: List[str] = []
    for d in detections:
        if d.type.value not in seen:
            seen.append(d.type.value)
    return seen


def escalate_action(action: RecommendedAction, matches: Iterable[RuleMatch]) -> RecommendedAction:
    """Strongest of the current action and the actions of matched rules"""
    for match in matches:
        rule_action = RULE_ACTION_MAP[match.action]
        if ACTION_RANK[rule_action] > ACTION_RANK[action]:
            action = rule_action
    return action


def build_result(
    email_id: str,
    detections: Sequence[SecurityDetection],
    source: AnalysisSource = AnalysisSource.RULES,
    rule_matches: Sequence[RuleMatch] = (),
) -> EmailAnalysisResult:
    """Aggregate detections into the canonical result"""
    level = calculate_threat_level(detections)
    result = EmailAnalysisResult(
        email_id=email_id,
        overall_threat_level=level,
        confidence=calculate_confidence(detections),
        detections=tuple(detections),
        recommendations=tuple(generate_recommendations(detections)),
        quarantine_recommended=is_quarantine_recommended(detections),
        threat_types=tuple(threat_types(detections)),
        action_recommended=SEVERITY_ACTION[level],
        legitimacy_score=calculate_legitimacy_score(detections),
        warning_message=WARNING_MESSAGES.get(level),
        reasoning=f"Rule-based analysis produced {len(detections)} detections",
        suspicious_elements=tuple(d.description for d in detections),
        source=source,
    )
    return apply_rule_matches(result, rule_matches)


def apply_rule_matches(result: EmailAnalysisResult, matches: Sequence[RuleMatch]) -> EmailAnalysisResult:
    """Attach user-rule matches; they may raise the recommended action but never lower it"""
    if not matches:
        return result

    return dataclasses.replace(
        result,
        rule_matches=tuple(result.rule_matches) + tuple(matches),
        action_recommended=escalate_action(result.action_recommended, matches),
        suspicious_elements=tuple(result.suspicious_elements) + tuple(f"Rule matched: {m.name}" for m in matches),
    )

