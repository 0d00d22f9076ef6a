"""
Security Alert Service
Records an alert for every analyzed email whose verdict is not safe and
keeps running threat statistics
"""

import dataclasses
import logging
import threading
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

from mailshield.core.models import (
    EmailAnalysisResult,
    EmailInput,
    SecurityAlert,
    Severity,
    ThreatLevel,
)

logger = logging.getLogger(__name__)

RECENT_THREATS_LIMIT = 10

THREAT_LEVEL_SEVERITY = {
    ThreatLevel.LOW: Severity.LOW,
    ThreatLevel.MEDIUM: Severity.MEDIUM,
    ThreatLevel.HIGH: Severity.HIGH,
    ThreatLevel.CRITICAL: Severity.CRITICAL,
}


class AlertService:
    """In-memory alert log; all access goes through one lock"""

    def __init__(self):
        self._alerts: List[SecurityAlert] = []
        self._next_id = 1
        self._scanned = 0
        self._lock = threading.Lock()

    def record(self, email: EmailInput, result: EmailAnalysisResult) -> Optional[SecurityAlert]:
        """Count the scan and raise an alert when the verdict is not safe"""
        with self._lock:
            self._scanned += 1
            if result.overall_threat_level == ThreatLevel.SAFE:
                return None

            alert = SecurityAlert(
                id=self._next_id,
                email_id=result.email_id,
                alert_type=result.threat_types[0] if result.threat_types else "suspicious_email",
                severity=THREAT_LEVEL_SEVERITY[result.overall_threat_level],
                description=result.warning_message or result.reasoning,
                sender=email.sender_email,
                subject=email.subject[:200],
                threat_types=list(result.threat_types),
                confidence=result.confidence,
            )
            self._next_id += 1
            self._alerts.append(alert)

        logger.info(f"Security alert {alert.id} raised for {alert.email_id}: {alert.alert_type}/{alert.severity.value}")
        return alert

    def list_alerts(self, status: Optional[str] = None) -> List[SecurityAlert]:
        """Alerts newest first, optionally filtered by status"""
        with self._lock:
            alerts = [dataclasses.replace(a) for a in reversed(self._alerts)]
        if status:
            alerts = [a for a in alerts if a.status == status]
        return alerts

    def acknowledge(self, alert_id: int) -> bool:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    alert.status = "acknowledged"
                    alert.acknowledged_at = datetime.utcnow()
                    return True
        return False

    def statistics(self) -> Dict[str, Any]:
        with self._lock:
            by_type = Counter(a.alert_type for a in self._alerts)
            recent = [a.to_dict() for a in reversed(self._alerts[-RECENT_THREATS_LIMIT:])]
            return {
                "totalEmailsScanned": self._scanned,
                "threatsDetected": len(self._alerts),
                "threatsByType": dict(by_type),
                "recentThreats": recent,
            }
