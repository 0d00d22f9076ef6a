"""Shared fixtures for the MailShield test suite."""

import pytest

from mailshield.core.models import Attachment, EmailInput
from mailshield.core.rule_store import SecurityRuleStore
from mailshield.core.threat_engine import RuleBasedClassifier, ThreatDetectionEngine
from mailshield.services.alert_service import AlertService


@pytest.fixture
def clean_email():
    """An ordinary internal email with nothing suspicious in it."""
    return EmailInput(
        subject="Team meeting tomorrow",
        sender="Alice Smith",
        sender_email="alice@example.org",
        body="Hi team, the weekly meeting moves to 3pm tomorrow. Thanks, Alice",
    )


@pytest.fixture
def malware_email():
    """Invoice email carrying an executable attachment."""
    return EmailInput(
        subject="Invoice for your order",
        sender="Billing",
        sender_email="billing@example.org",
        body="Please find the invoice attached.",
        attachments=(Attachment(name="invoice.exe", type="application/x-msdownload", size=52000),),
    )


@pytest.fixture
def rule_store():
    return SecurityRuleStore()


@pytest.fixture
def alert_service():
    return AlertService()


@pytest.fixture
def engine(rule_store, alert_service):
    return ThreatDetectionEngine(RuleBasedClassifier(), rule_store, alert_service=alert_service)
