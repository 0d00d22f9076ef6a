"""
Security Rule Store
Thread-safe in-memory collection of user-configurable filter rules.
Rule patterns are validated and compiled when written, never at match time.
"""

import dataclasses
import logging
import threading
import uuid
from typing import Any, Dict, List, Optional, Pattern

from mailshield.core.domain_reputation import extract_domain
from mailshield.core.exceptions import InvalidRuleError
from mailshield.core.input_sanitizer import bound_text, validate_rule_pattern
from mailshield.core.models import (
    EmailInput,
    RuleAction,
    RuleMatch,
    RuleType,
    SecurityRule,
    Severity,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "description", "type", "rule", "action", "severity", "enabled")

DEFAULT_RULES = [
    {
        "id": "rule_1",
        "name": "Block dangerous file extensions",
        "description": "Blocks emails with potentially dangerous executable attachments",
        "type": "attachment",
        "rule": r"\.exe$|\.scr$|\.bat$|\.cmd$",
        "action": "block",
        "severity": "critical",
        "enabled": True,
    },
    {
        "id": "rule_2",
        "name": "Flag urgent financial requests",
        "description": "Flags emails with urgent financial language",
        "type": "keyword",
        "rule": "urgent.*transfer|immediate.*payment|emergency.*funds",
        "action": "flag",
        "severity": "high",
        "enabled": True,
    },
    {
        "id": "rule_3",
        "name": "Quarantine lottery scams",
        "description": "Quarantines obvious lottery and inheritance scams",
        "type": "keyword",
        "rule": "congratulations.*won|inheritance.*million|lottery.*winner",
        "action": "quarantine",
        "severity": "high",
        "enabled": True,
    },
    {
        "id": "rule_4",
        "name": "Warn about suspicious domains",
        "description": "Warns about emails from suspicious TLDs",
        "type": "domain",
        "rule": r"\.tk$|\.ml$|\.ga$|\.cf$",
        "action": "warn",
        "severity": "medium",
        "enabled": True,
    },
    {
        "id": "rule_5",
        "name": "Flag account verification requests",
        "description": "Flags emails requesting account verification",
        "type": "keyword",
        "rule": "verify.*account|confirm.*identity|update.*details",
        "action": "flag",
        "severity": "medium",
        "enabled": True,
    },
]


def _coerce_enum(enum_cls, value, field_name: str):
    try:
        return enum_cls(value.value if isinstance(value, enum_cls) else value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise InvalidRuleError(f"Invalid {field_name} '{value}'; expected one of: {allowed}")


class SecurityRuleStore:
    """
    CRUD surface over security rules.

    All operations take the store lock; readers get copies so a caller can
    never mutate a stored rule without going through `update_rule`.
    """

    def __init__(self, seed_defaults: bool = True):
        self._rules: List[SecurityRule] = []
        self._compiled: Dict[str, Pattern] = {}
        self._lock = threading.RLock()

        if seed_defaults:
            for fields in DEFAULT_RULES:
                rule, pattern = self._build_rule(fields["id"], fields)
                self._rules.append(rule)
                self._compiled[rule.id] = pattern

    def list_rules(self) -> List[SecurityRule]:
        with self._lock:
            return [dataclasses.replace(rule) for rule in self._rules]

    def get_rule(self, rule_id: str) -> Optional[SecurityRule]:
        with self._lock:
            index = self._index_of(rule_id)
            return dataclasses.replace(self._rules[index]) if index is not None else None

    def add_rule(self, fields: Dict[str, Any]) -> str:
        """Validate and append a rule, returning its freshly generated id"""
        rule_id = f"rule_{uuid.uuid4().hex[:12]}"
        rule, pattern = self._build_rule(rule_id, fields)

        with self._lock:
            self._rules.append(rule)
            self._compiled[rule_id] = pattern

        logger.info(f"Security rule added: {rule_id} ({rule.name})")
        return rule_id

    def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> bool:
        """Merge fields into an existing rule; False when the id is unknown"""
        with self._lock:
            index = self._index_of(rule_id)
            if index is None:
                return False

            merged = self._rules[index].to_dict()
            for key, value in updates.items():
                if key == "id":
                    if value != rule_id:
                        raise InvalidRuleError("Rule id cannot be changed")
                    continue
                if key not in EDITABLE_FIELDS:
                    raise InvalidRuleError(f"Unknown rule field '{key}'")
                merged[key] = value

            rule, pattern = self._build_rule(rule_id, merged)
            self._rules[index] = rule
            self._compiled[rule_id] = pattern

        logger.info(f"Security rule updated: {rule_id}")
        return True

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock:
            index = self._index_of(rule_id)
            if index is None:
                return False
            del self._rules[index]
            self._compiled.pop(rule_id, None)

        logger.info(f"Security rule deleted: {rule_id}")
        return True

    def evaluate(self, email: EmailInput) -> List[RuleMatch]:
        """Enabled rules whose pattern matches the part of the email they target"""
        with self._lock:
            active = [(rule, self._compiled[rule.id]) for rule in self._rules if rule.enabled]

        matches: List[RuleMatch] = []
        for rule, pattern in active:
            for target in self._targets(rule.type, email):
                found = pattern.search(target)
                if found:
                    matches.append(RuleMatch(
                        rule_id=rule.id,
                        name=rule.name,
                        action=rule.action,
                        severity=rule.severity,
                        matched=found.group(0)[:100],
                    ))
                    break
        return matches

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def _index_of(self, rule_id: str) -> Optional[int]:
        for index, rule in enumerate(self._rules):
            if rule.id == rule_id:
                return index
        return None

    @staticmethod
    def _targets(rule_type: RuleType, email: EmailInput) -> List[str]:
        if rule_type == RuleType.DOMAIN:
            domain = extract_domain(email.sender_email)
            return [domain] if domain else []
        if rule_type in (RuleType.KEYWORD, RuleType.PATTERN):
            return [bound_text(f"{email.subject} {email.body}")]
        if rule_type == RuleType.HEADER:
            if not email.headers:
                return []
            return [bound_text("\n".join(f"{k}: {v}" for k, v in email.headers.items()))]
        if rule_type == RuleType.ATTACHMENT:
            return [a.name for a in email.attachments]
        return []

    @staticmethod
    def _build_rule(rule_id: str, fields: Dict[str, Any]):
        """Validated rule plus its compiled pattern; raises InvalidRuleError"""
        name = str(fields.get("name") or "").strip()
        if not name:
            raise InvalidRuleError("Rule name cannot be empty")

        enabled = fields.get("enabled", True)
        if not isinstance(enabled, bool):
            raise InvalidRuleError("Rule 'enabled' must be a boolean")

        rule_source = fields.get("rule")
        if not isinstance(rule_source, str):
            raise InvalidRuleError("Rule pattern must be a string")
        pattern, error = validate_rule_pattern(rule_source)
        if error:
            raise InvalidRuleError(error)

        rule = SecurityRule(
            id=rule_id,
            name=name,
            description=str(fields.get("description") or ""),
            type=_coerce_enum(RuleType, fields.get("type"), "type"),
            rule=rule_source,
            action=_coerce_enum(RuleAction, fields.get("action"), "action"),
            severity=_coerce_enum(Severity, fields.get("severity"), "severity"),
            enabled=enabled,
        )
        return rule, pattern
