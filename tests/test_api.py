"""API tests for the health and email security endpoints."""

import pytest
from fastapi.testclient import TestClient

from main import app

PLAIN_EML = b"""From: Alice Smith <alice@example.org>
To: bob@example.org
Subject: Quarterly numbers
Content-Type: text/plain; charset="utf-8"

Hi Bob, the report is ready. Thanks!
"""

CLEAN_EMAIL = {
    "subject": "Team meeting tomorrow",
    "sender": "Alice Smith",
    "senderEmail": "alice@example.org",
    "body": "Hi team, the weekly meeting moves to 3pm tomorrow.",
}

MALWARE_EMAIL = {
    "subject": "Invoice for your order",
    "sender": "Billing",
    "senderEmail": "billing@example.org",
    "body": "Please find the invoice attached.",
    "attachments": [{"name": "invoice.exe", "type": "application/x-msdownload", "size": 52000}],
}

NEW_RULE = {
    "name": "Block crypto giveaways",
    "description": "Crypto giveaway scams",
    "type": "keyword",
    "rule": "free.*bitcoin",
    "action": "block",
    "severity": "high",
}


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_status(client):
    data = client.get("/api/status").json()

    assert data["engine_ready"] is True
    assert data["rule_count"] >= 5
    assert data["llm_enabled"] is False


def test_analyze_clean_email(client):
    response = client.post("/api/security/analyze", json=CLEAN_EMAIL)

    assert response.status_code == 200
    data = response.json()
    assert data["overallThreatLevel"] == "safe"
    assert data["actionRecommended"] == "allow"
    assert data["emailId"].startswith("email_")
    assert data["source"] == "rules"


def test_analyze_malware_email(client):
    data = client.post("/api/security/analyze", json=MALWARE_EMAIL).json()

    assert data["overallThreatLevel"] == "critical"
    assert data["quarantineRecommended"] is True
    assert data["actionRecommended"] == "block"
    assert data["ruleMatches"][0]["ruleId"] == "rule_1"


def test_analyze_requires_content(client):
    response = client.post("/api/security/analyze", json={"senderEmail": "a@example.org"})

    assert response.status_code == 400


def test_analyze_eml_upload(client):
    response = client.post(
        "/api/security/analyze-eml",
        files={"file": ("message.eml", PLAIN_EML, "message/rfc822")},
    )

    assert response.status_code == 200
    assert response.json()["overallThreatLevel"] in ("safe", "low", "medium")


def test_analyze_eml_rejects_other_file_types(client):
    response = client.post(
        "/api/security/analyze-eml",
        files={"file": ("invoice.exe", b"MZ\x90\x00", "application/octet-stream")},
    )

    assert response.status_code == 400


def test_analyze_eml_rejects_unparsable_content(client):
    response = client.post(
        "/api/security/analyze-eml",
        files={"file": ("message.eml", b"just some text without headers", "message/rfc822")},
    )

    assert response.status_code == 400


def test_batch_analyze(client):
    response = client.post("/api/security/batch-analyze", json={"emails": [MALWARE_EMAIL, CLEAN_EMAIL]})

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["threatsDetected"] == 1
    assert [r["overallThreatLevel"] for r in data["results"]] == ["critical", "safe"]


def test_batch_size_is_limited(client):
    response = client.post("/api/security/batch-analyze", json={"emails": [CLEAN_EMAIL] * 101})

    assert response.status_code == 400


def test_empty_batch_is_rejected(client):
    assert client.post("/api/security/batch-analyze", json={"emails": []}).status_code == 400


def test_sender_reputation(client):
    response = client.post("/api/security/sender-reputation", json={"emailAddress": "someone@gmail.com"})

    assert response.status_code == 200
    assert response.json()["reputation"] == "trusted"
    assert response.json()["score"] == 95


def test_sender_reputation_invalid_address(client):
    response = client.post("/api/security/sender-reputation", json={"emailAddress": "nobody"})

    assert response.status_code == 400


def test_rule_lifecycle(client):
    created = client.post("/api/security/rules", json=NEW_RULE)
    assert created.status_code == 201
    rule_id = created.json()["ruleId"]

    rules = client.get("/api/security/rules").json()["rules"]
    assert rule_id in [r["id"] for r in rules]

    updated = client.patch(f"/api/security/rules/{rule_id}", json={"enabled": False})
    assert updated.status_code == 200

    rule = next(r for r in client.get("/api/security/rules").json()["rules"] if r["id"] == rule_id)
    assert rule["enabled"] is False

    assert client.delete(f"/api/security/rules/{rule_id}").status_code == 200
    assert client.delete(f"/api/security/rules/{rule_id}").status_code == 404


def test_invalid_rule_is_rejected(client):
    response = client.post("/api/security/rules", json=dict(NEW_RULE, rule="(a+)+$"))

    assert response.status_code == 422


def test_invalid_rule_update_is_rejected(client):
    response = client.patch("/api/security/rules/rule_2", json={"severity": "extreme"})

    assert response.status_code == 422


def test_unknown_rule_update(client):
    response = client.patch("/api/security/rules/rule_missing", json={"enabled": False})

    assert response.status_code == 404


def test_alerts_and_acknowledge(client):
    client.post("/api/security/analyze", json=MALWARE_EMAIL)

    alerts = client.get("/api/security/alerts", params={"status": "open"}).json()["alerts"]
    assert alerts
    assert alerts[0]["alertType"] == "malware"

    alert_id = alerts[0]["id"]
    assert client.patch(f"/api/security/alerts/{alert_id}/acknowledge").status_code == 200

    acknowledged = client.get("/api/security/alerts", params={"status": "acknowledged"}).json()["alerts"]
    assert alert_id in [a["id"] for a in acknowledged]


def test_acknowledge_unknown_alert(client):
    assert client.patch("/api/security/alerts/99999/acknowledge").status_code == 404


def test_stats(client):
    client.post("/api/security/analyze", json=MALWARE_EMAIL)

    stats = client.get("/api/security/stats").json()

    assert stats["totalEmailsScanned"] >= 1
    assert stats["threatsDetected"] >= 1
    assert stats["threatsByType"]["malware"] >= 1
    assert len(stats["recentThreats"]) <= 10
