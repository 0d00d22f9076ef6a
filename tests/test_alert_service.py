"""Tests for the security alert log."""

from mailshield.core.aggregator import build_result
from mailshield.core.models import DetectionType, EmailInput, SecurityDetection, Severity
from mailshield.services.alert_service import AlertService

EMAIL = EmailInput(subject="Prize", sender_email="winner@free-prizes.tk", body="Claim now")


def threat_result(email_id="email_1", detection_type=DetectionType.SCAM, severity=Severity.HIGH):
    detection = SecurityDetection(type=detection_type, severity=severity, description="test", confidence=0.8)
    return build_result(email_id, [detection])


def test_safe_result_is_counted_without_alert():
    service = AlertService()

    assert service.record(EMAIL, build_result("email_1", [])) is None
    assert service.statistics()["totalEmailsScanned"] == 1
    assert service.list_alerts() == []


def test_threat_raises_alert():
    service = AlertService()

    alert = service.record(EMAIL, threat_result())

    assert alert.id == 1
    assert alert.alert_type == "scam"
    assert alert.severity == Severity.HIGH
    assert alert.sender == "winner@free-prizes.tk"
    assert alert.status == "open"


def test_alerts_are_listed_newest_first():
    service = AlertService()
    service.record(EMAIL, threat_result("email_1"))
    service.record(EMAIL, threat_result("email_2"))

    assert [a.email_id for a in service.list_alerts()] == ["email_2", "email_1"]


def test_acknowledge_and_filter_by_status():
    service = AlertService()
    first = service.record(EMAIL, threat_result("email_1"))
    service.record(EMAIL, threat_result("email_2"))

    assert service.acknowledge(first.id) is True
    assert service.acknowledge(999) is False

    acknowledged = service.list_alerts("acknowledged")
    assert [a.id for a in acknowledged] == [first.id]
    assert acknowledged[0].acknowledged_at is not None
    assert [a.email_id for a in service.list_alerts("open")] == ["email_2"]


def test_statistics_group_by_type_and_limit_recent():
    service = AlertService()
    for i in range(12):
        service.record(EMAIL, threat_result(f"email_{i}", DetectionType.MALWARE if i % 2 else DetectionType.SCAM))

    stats = service.statistics()

    assert stats["threatsDetected"] == 12
    assert stats["threatsByType"] == {"scam": 6, "malware": 6}
    assert len(stats["recentThreats"]) == 10
    assert stats["recentThreats"][0]["emailId"] == "email_11"
