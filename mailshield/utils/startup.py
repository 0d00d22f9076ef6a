"""
Startup initialization logic
Builds the threat engine and its collaborators into app.state on server startup
"""

import logging
from datetime import timedelta

from fastapi import FastAPI

from mailshield.core.config import Settings, settings as default_settings
from mailshield.core.domain_reputation import DomainReputationAnalyzer
from mailshield.core.rule_store import SecurityRuleStore
from mailshield.core.threat_engine import FallbackClassifier, RuleBasedClassifier, ThreatDetectionEngine
from mailshield.services.alert_service import AlertService
from mailshield.services.llm_service import LLMThreatClassifier, get_completion_backend

logger = logging.getLogger(__name__)


def build_engine(config: Settings = None, rule_store: SecurityRuleStore = None,
                 alert_service: AlertService = None) -> ThreatDetectionEngine:
    """
    Wire classifiers, rule store and alert log into one engine

    With LLM_ENABLED the LLM classifier runs first and the rule engine is the
    fallback; otherwise the rule engine runs alone.
    """
    config = config or default_settings

    domain_analyzer = DomainReputationAnalyzer(
        cache_ttl=timedelta(hours=config.DOMAIN_REPUTATION_TTL_HOURS),
    )
    rules = RuleBasedClassifier(domain_analyzer)

    llm_classifier = None
    classifier = rules
    if config.LLM_ENABLED:
        llm_classifier = LLMThreatClassifier(get_completion_backend(config), timeout=config.LLM_TIMEOUT_SECONDS)
        classifier = FallbackClassifier(llm_classifier, rules, config.FALLBACK_CONFIDENCE_PENALTY)
        logger.info(f"LLM classifier enabled ({llm_classifier.backend.name}), rule engine as fallback")
    else:
        logger.info("LLM classifier disabled, using rule-based analysis only")

    return ThreatDetectionEngine(
        classifier,
        rule_store if rule_store is not None else SecurityRuleStore(),
        alert_service=alert_service if alert_service is not None else AlertService(),
        domain_analyzer=domain_analyzer,
        llm_classifier=llm_classifier,
        batch_concurrency=config.BATCH_CONCURRENCY,
    )


async def initialize_system(app: FastAPI):
    """
    Initialize system components on startup

    Args:
        app: FastAPI application instance
    """
    try:
        app.state.init_error = None

        logger.info("[1/2] Loading security rules...")
        rule_store = SecurityRuleStore()
        alert_service = AlertService()

        logger.info("[2/2] Building threat detection engine...")
        engine = build_engine(default_settings, rule_store, alert_service)

        app.state.engine = engine
        app.state.rule_store = rule_store
        app.state.alert_service = alert_service
        app.state.llm_classifier = engine.llm_classifier
        app.state.initialized = True

        logger.info(f"Threat engine ready with {len(rule_store)} security rules")

    except Exception as e:
        logger.error(f"Startup failed: {e}")
        app.state.init_error = str(e)
        app.state.initialized = False
        raise


def get_init_status(app: FastAPI) -> dict:
    """Get current initialization status"""
    rule_store = getattr(app.state, "rule_store", None)
    return {
        "initialized": getattr(app.state, "initialized", False),
        "rule_count": len(rule_store) if rule_store is not None else 0,
        "error": getattr(app.state, "init_error", None)
    }
