"""
Email Security API Endpoints
Threat analysis for single emails, uploaded .eml files and batches, sender
reputation lookups, security rule management and the alert log

Rate limiting: analysis endpoints share ANALYZE_RATE_LIMIT per IP
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from pydantic import BaseModel, ConfigDict, Field
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address

from mailshield.core.config import settings
from mailshield.core.exceptions import EmailParseError, InvalidRuleError
from mailshield.core.input_sanitizer import log_security_event, validate_uploaded_file
from mailshield.core.models import Attachment, EmailInput
from mailshield.utils.email_parser import get_email_parser

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter()


class AttachmentModel(BaseModel):
    """Attachment metadata"""
    name: str
    type: str = "application/octet-stream"
    size: int = Field(default=0, ge=0)


class EmailRequest(BaseModel):
    """Email submitted for analysis"""
    model_config = ConfigDict(populate_by_name=True)

    subject: str = ""
    sender: str = ""
    sender_email: str = Field(default="", alias="senderEmail")
    body: str = ""
    headers: Optional[Dict[str, str]] = None
    attachments: List[AttachmentModel] = []
    links: List[str] = []

    def to_email_input(self) -> EmailInput:
        return EmailInput(
            subject=self.subject,
            sender=self.sender,
            sender_email=self.sender_email,
            body=self.body,
            headers={k.lower(): v for k, v in self.headers.items()} if self.headers is not None else None,
            attachments=tuple(Attachment(a.name, a.type, a.size) for a in self.attachments),
            links=tuple(self.links),
        )


class BatchAnalyzeRequest(BaseModel):
    """Batch of emails"""
    emails: List[EmailRequest]


class SenderReputationRequest(BaseModel):
    """Sender address to look up"""
    model_config = ConfigDict(populate_by_name=True)

    email_address: str = Field(alias="emailAddress")


class RuleRequest(BaseModel):
    """New security rule; enum fields are validated by the rule store"""
    name: str
    description: str = ""
    type: str
    rule: str
    action: str
    severity: str
    enabled: bool = True


def _engine(request: Request):
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Threat detection engine is not initialized")
    return engine


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/security/analyze")
@limiter.limit(settings.ANALYZE_RATE_LIMIT)
async def analyze_email(request: Request, payload: EmailRequest) -> Dict[str, Any]:
    """Analyze one email and return the threat verdict"""
    if not payload.body and not payload.subject:
        raise HTTPException(status_code=400, detail="Please provide at least subject or body content")

    result = await _engine(request).analyze(payload.to_email_input())
    return result.to_dict()


@router.post("/security/analyze-eml")
@limiter.limit(settings.ANALYZE_RATE_LIMIT)
async def analyze_eml(request: Request, file: UploadFile = File(...)) -> Dict[str, Any]:
    """Analyze an uploaded .eml file"""
    content = await file.read()
    filename = file.filename or "unknown.eml"

    is_valid, error_msg = validate_uploaded_file(content, filename)
    if not is_valid:
        log_security_event("FILE_REJECTED", f"{error_msg} - Filename: {filename}", _client_ip(request))
        raise HTTPException(status_code=400, detail=error_msg)

    try:
        email_input = get_email_parser().parse_eml(content)
    except EmailParseError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = await _engine(request).analyze(email_input)
    return result.to_dict()


@router.post("/security/batch-analyze")
@limiter.limit(settings.ANALYZE_RATE_LIMIT)
async def batch_analyze(request: Request, payload: BatchAnalyzeRequest) -> Dict[str, Any]:
    """Analyze several emails concurrently; results keep the request order"""
    if not payload.emails:
        raise HTTPException(status_code=400, detail="Please provide at least one email")
    if len(payload.emails) > settings.MAX_BATCH_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"Batch size {len(payload.emails)} exceeds the limit of {settings.MAX_BATCH_SIZE}"
        )

    results = await _engine(request).analyze_batch([e.to_email_input() for e in payload.emails])
    return {
        "results": [r.to_dict() for r in results],
        "total": len(results),
        "threatsDetected": sum(1 for r in results if r.overall_threat_level.value != "safe"),
    }


@router.post("/security/sender-reputation")
async def sender_reputation(request: Request, payload: SenderReputationRequest) -> Dict[str, Any]:
    """Reputation of the sender's domain"""
    reputation = await _engine(request).sender_reputation(payload.email_address)
    if reputation is None:
        raise HTTPException(status_code=400, detail="Invalid email address")
    return reputation.to_dict()


@router.get("/security/rules")
async def list_rules(request: Request) -> Dict[str, Any]:
    rules = _engine(request).rule_store.list_rules()
    return {"rules": [r.to_dict() for r in rules]}


@router.post("/security/rules", status_code=201)
async def create_rule(request: Request, payload: RuleRequest) -> Dict[str, Any]:
    """Create a security rule; invalid patterns or enum values give 422"""
    try:
        rule_id = _engine(request).rule_store.add_rule(payload.model_dump())
    except InvalidRuleError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"success": True, "ruleId": rule_id}


@router.patch("/security/rules/{rule_id}")
async def update_rule(request: Request, rule_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    try:
        updated = _engine(request).rule_store.update_rule(rule_id, updates)
    except InvalidRuleError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if not updated:
        raise HTTPException(status_code=404, detail=f"Rule '{rule_id}' not found")
    return {"success": True}


@router.delete("/security/rules/{rule_id}")
async def delete_rule(request: Request, rule_id: str) -> Dict[str, Any]:
    if not _engine(request).rule_store.delete_rule(rule_id):
        raise HTTPException(status_code=404, detail=f"Rule '{rule_id}' not found")
    return {"success": True}


@router.get("/security/alerts")
async def list_alerts(request: Request, status: Optional[str] = None) -> Dict[str, Any]:
    alerts = _engine(request).alert_service.list_alerts(status)
    return {"alerts": [a.to_dict() for a in alerts]}


@router.patch("/security/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(request: Request, alert_id: int) -> Dict[str, Any]:
    if not _engine(request).alert_service.acknowledge(alert_id):
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
    return {"success": True}


@router.get("/security/stats")
async def security_stats(request: Request) -> Dict[str, Any]:
    """Scan counts, threats by type and the ten most recent threats"""
    return _engine(request).alert_service.statistics()
