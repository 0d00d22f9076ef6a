"""
Email Content Analyzers
Independent rule-based checks over one slice of an email each:
content, headers, attachments, URLs, social engineering, display-name
impersonation and writing quality. Every function is pure and returns a list of detections.
"""

import re
import logging
from typing import Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

from mailshield.core.domain_reputation import SUSPICIOUS_DOMAINS, extract_domain, is_suspicious_domain
from mailshield.core.input_sanitizer import bound_text
from mailshield.core.models import Attachment, DetectionType, SecurityDetection, Severity

logger = logging.getLogger(__name__)

# (keywords that must appear in order on one line, detection type, severity)
CONTENT_PATTERNS = [
    (('urgent', 'action', 'required'), DetectionType.PHISHING, Severity.HIGH),
    (('verify', 'account', 'immediately'), DetectionType.PHISHING, Severity.HIGH),
    (('suspended', 'account'), DetectionType.PHISHING, Severity.HIGH),
    (('click', 'here', 'now'), DetectionType.PHISHING, Severity.MEDIUM),
    (('limited', 'time', 'offer'), DetectionType.SPAM, Severity.LOW),
    (('congratulations', 'won'), DetectionType.SCAM, Severity.HIGH),
    (('inheritance', 'million'), DetectionType.SCAM, Severity.CRITICAL),
    (('tax', 'refund'), DetectionType.PHISHING, Severity.MEDIUM),
    (('update', 'payment', 'method'), DetectionType.PHISHING, Severity.HIGH),
]

MONEY_AMOUNT_PATTERN = re.compile(r'\$[\d,]+|€[\d,]+|£[\d,]+')
TRANSFER_KEYWORD_PATTERN = re.compile(r'transfer|claim|wire|bitcoin|crypto')
URGENCY_PATTERN = re.compile(r'urgent|immediate|asap|emergency|expire|deadline')
URGENCY_THRESHOLD = 3

CREDENTIAL_KEYWORDS = [
    'password', 'username', 'security code', 'verify account', 'ssn',
    'social security', 'credit card', 'bank account', 'pin number',
]
CREDENTIAL_THRESHOLD = 2

# Header names that count as evidence of each authentication mechanism
AUTH_HEADER_ALIASES = {
    'dkim-signature': ('dkim-signature',),
    'spf': ('spf', 'received-spf'),
    'dmarc': ('dmarc',),
}
MAX_RECEIVED_HOPS = 5
RECEIVED_HOP_PATTERN = re.compile(r'\bby\b')

DANGEROUS_EXTENSIONS = {'.exe', '.scr', '.bat', '.cmd', '.com', '.pif', '.vbs', '.js', '.jar'}
ARCHIVE_EXTENSIONS = {'.zip', '.rar', '.7z'}
MAX_ATTACHMENT_BYTES = 50 * 1024 * 1024

URL_PATTERN = re.compile(r'https?://[^\s]+', re.IGNORECASE)
URL_SHORTENERS = ['bit.ly', 'tinyurl.com', 't.co', 'goo.gl', 'short.link']
IPV4_HOST_PATTERN = re.compile(r'^\d+\.\d+\.\d+\.\d+$')

AUTHORITY_WORDS = [
    'ceo', 'president', 'manager', 'director', 'administrator',
    'irs', 'fbi', 'police', 'government', 'bank', 'paypal', 'amazon',
]
FEAR_SEQUENCES = [('account', 'clos'), ('legal', 'action')]
FEAR_PATTERN = re.compile(r'\barrest|\bpenalt|\bfines?\b')

# Sloppy writing typical of bulk spam; checked against the original casing
GRAMMAR_ISSUE_PATTERNS = [
    re.compile(r'\s{2,}'),
    re.compile(r'[a-z][A-Z]'),
    re.compile(r'\.{2,}'),
    re.compile(r'\?{2,}'),
]
GRAMMAR_ISSUE_THRESHOLD = 3

# Organisations whose names in a display name must match the sending domain
IMPERSONATED_ORGS = [
    'paypal', 'amazon', 'microsoft', 'google', 'apple', 'facebook',
    'instagram', 'twitter', 'linkedin', 'netflix', 'spotify',
    'wells fargo', 'chase', 'irs', 'usps', 'fedex', 'ups',
]


def _full_text(subject: str, body: str) -> str:
    return bound_text(f"{subject or ''} {body or ''}").lower()


def contains_in_order(text: str, keywords: Sequence[str]) -> bool:
    """
    True when every keyword occurs on a single line of `text`, each one
    after the end of the previous. Runs in linear time.
    """
    for line in text.split('\n'):
        position = 0
        for keyword in keywords:
            index = line.find(keyword, position)
            if index == -1:
                break
            position = index + len(keyword)
        else:
            return True
    return False


def analyze_content(subject: str, body: str) -> List[SecurityDetection]:
    """Phishing, scam, spam and urgency language in subject and body"""
    detections: List[SecurityDetection] = []
    full_text = _full_text(subject, body)
    subject_lower = bound_text(subject).lower()

    for keywords, detection_type, severity in CONTENT_PATTERNS:
        if contains_in_order(full_text, keywords):
            location = "subject" if contains_in_order(subject_lower, keywords) else "body"
            detections.append(SecurityDetection(
                type=detection_type,
                severity=severity,
                description=f"Suspicious {detection_type.value} pattern detected",
                evidence=(f"Pattern: {'.*'.join(keywords)}", f"Found in: {location}"),
                confidence=0.75,
            ))

    if MONEY_AMOUNT_PATTERN.search(full_text) and TRANSFER_KEYWORD_PATTERN.search(full_text):
        detections.append(SecurityDetection(
            type=DetectionType.SCAM,
            severity=Severity.HIGH,
            description="Potential financial scam detected",
            evidence=("Large monetary amounts mentioned", "Financial transfer keywords"),
            confidence=0.80,
        ))

    urgency_count = len(URGENCY_PATTERN.findall(full_text))
    if urgency_count >= URGENCY_THRESHOLD:
        detections.append(SecurityDetection(
            type=DetectionType.SOCIAL_ENGINEERING,
            severity=Severity.MEDIUM,
            description="High urgency language detected",
            evidence=(f"{urgency_count} urgency indicators found",),
            confidence=0.70,
        ))

    found_credentials = [k for k in CREDENTIAL_KEYWORDS if k in full_text]
    if len(found_credentials) >= CREDENTIAL_THRESHOLD:
        detections.append(SecurityDetection(
            type=DetectionType.PHISHING,
            severity=Severity.MEDIUM,
            description="Request for credentials or sensitive data",
            evidence=tuple(f"Keyword: {k}" for k in found_credentials),
            confidence=0.60,
        ))

    return detections


def analyze_headers(headers: Optional[Dict[str, str]], sender_email: str = "") -> List[SecurityDetection]:
    """Authentication headers, routing path and Return-Path consistency"""
    detections: List[SecurityDetection] = []
    if headers is None:
        return detections

    normalized = {str(k).lower(): str(v) for k, v in headers.items() if v}
    auth_results = normalized.get('authentication-results', '').lower()

    missing = []
    for name, aliases in AUTH_HEADER_ALIASES.items():
        present = any(alias in normalized for alias in aliases)
        if not present and name != 'dkim-signature' and f"{name}=" in auth_results:
            present = True
        if not present:
            missing.append(name)

    if missing:
        detections.append(SecurityDetection(
            type=DetectionType.SPOOFING,
            severity=Severity.MEDIUM,
            description="Missing email authentication headers",
            evidence=(f"Missing headers: {', '.join(missing)}",),
            confidence=0.60,
        ))

    received = bound_text(normalized.get('received', ''))
    hops = len(RECEIVED_HOP_PATTERN.findall(received))
    if 'suspicious' in received.lower() or hops > MAX_RECEIVED_HOPS:
        detections.append(SecurityDetection(
            type=DetectionType.SPOOFING,
            severity=Severity.MEDIUM,
            description="Suspicious email routing detected",
            evidence=("Unusual routing path", f"Relay hops: {hops}"),
            confidence=0.65,
        ))

    return_path = normalized.get('return-path', '').lower()
    sender_domain = extract_domain(sender_email)
    return_path_domain = extract_domain(return_path.strip('<> '))
    if return_path_domain and sender_domain and not _is_same_or_subdomain(return_path_domain, sender_domain):
        detections.append(SecurityDetection(
            type=DetectionType.SPOOFING,
            severity=Severity.MEDIUM,
            description="Return-Path does not match sender domain",
            evidence=(f"Return-Path: {return_path[:100]}", f"Sender domain: {sender_domain}"),
            confidence=0.65,
        ))

    return detections


def _is_same_or_subdomain(domain: str, parent: str) -> bool:
    return domain == parent or domain.endswith('.' + parent)


def _extension(filename: str) -> str:
    name = filename.lower()
    index = name.rfind('.')
    return name[index:] if index != -1 else ''


def analyze_attachments(attachments: Sequence[Attachment]) -> List[SecurityDetection]:
    """Dangerous file types, archives and oversized files"""
    detections: List[SecurityDetection] = []

    for attachment in attachments:
        extension = _extension(attachment.name)

        if extension in DANGEROUS_EXTENSIONS:
            detections.append(SecurityDetection(
                type=DetectionType.MALWARE,
                severity=Severity.CRITICAL,
                description="Potentially dangerous attachment",
                evidence=(f"File: {attachment.name}", f"Extension: {extension}"),
                confidence=0.90,
            ))
        elif extension in ARCHIVE_EXTENSIONS:
            detections.append(SecurityDetection(
                type=DetectionType.MALWARE,
                severity=Severity.MEDIUM,
                description="Compressed attachment requires caution",
                evidence=(f"File: {attachment.name}", "Archive files can contain malware"),
                confidence=0.50,
            ))

        if attachment.size > MAX_ATTACHMENT_BYTES:
            detections.append(SecurityDetection(
                type=DetectionType.DATA_EXFILTRATION_RISK,
                severity=Severity.LOW,
                description="Unusually large attachment",
                evidence=(f"File: {attachment.name}", f"Size: {round(attachment.size / 1024 / 1024)}MB"),
                confidence=0.40,
            ))

    return detections


def extract_urls(body: str, links: Iterable[str] = ()) -> List[str]:
    """URLs found in the body followed by explicit links, without repeats"""
    urls: List[str] = []
    for url in URL_PATTERN.findall(bound_text(body)) + list(links or []):
        if url and url not in urls:
            urls.append(url)
    return urls


def _is_shortener(hostname: str) -> bool:
    return any(hostname == s or hostname.endswith('.' + s) for s in URL_SHORTENERS)


def analyze_urls(body: str, links: Iterable[str] = (), suspicious_domains: Iterable[str] = SUSPICIOUS_DOMAINS) -> List[SecurityDetection]:
    """Shorteners, suspicious hosts, raw IP hosts and malformed links"""
    detections: List[SecurityDetection] = []

    for url in extract_urls(body, links):
        try:
            hostname = urlparse(url).hostname
        except ValueError:
            hostname = None

        if not hostname:
            logger.debug(f"Unparsable URL: {url[:80]}")
            detections.append(SecurityDetection(
                type=DetectionType.PHISHING,
                severity=Severity.LOW,
                description="Malformed URL detected",
                evidence=(f"URL: {url}",),
                confidence=0.50,
            ))
            continue

        if _is_shortener(hostname):
            detections.append(SecurityDetection(
                type=DetectionType.PHISHING,
                severity=Severity.MEDIUM,
                description="URL shortener detected",
                evidence=(f"URL: {url}", "Shortened URLs can hide malicious destinations"),
                confidence=0.60,
            ))

        if is_suspicious_domain(hostname, suspicious_domains):
            detections.append(SecurityDetection(
                type=DetectionType.PHISHING,
                severity=Severity.HIGH,
                description="Link to suspicious domain",
                evidence=(f"URL: {url}", f"Domain: {hostname}"),
                confidence=0.85,
            ))

        if IPV4_HOST_PATTERN.match(hostname):
            detections.append(SecurityDetection(
                type=DetectionType.PHISHING,
                severity=Severity.HIGH,
                description="Link uses IP address instead of domain",
                evidence=(f"URL: {url}", "IP addresses often used for malicious sites"),
                confidence=0.80,
            ))

    return detections


def detect_social_engineering(subject: str, body: str) -> List[SecurityDetection]:
    """Authority impersonation combined with urgency, and fear tactics"""
    detections: List[SecurityDetection] = []
    full_text = _full_text(subject, body)

    if 'urgent' in full_text:
        for authority in AUTHORITY_WORDS:
            if re.search(rf'\b{authority}\b', full_text):
                detections.append(SecurityDetection(
                    type=DetectionType.SOCIAL_ENGINEERING,
                    severity=Severity.HIGH,
                    description="Authority impersonation detected",
                    evidence=(f"Authority figure: {authority}", "Combined with urgency"),
                    confidence=0.75,
                ))
                break

    if FEAR_PATTERN.search(full_text) or any(contains_in_order(full_text, s) for s in FEAR_SEQUENCES):
        detections.append(SecurityDetection(
            type=DetectionType.SOCIAL_ENGINEERING,
            severity=Severity.HIGH,
            description="Fear-based manipulation detected",
            evidence=("Threats of negative consequences",),
            confidence=0.80,
        ))

    return detections


def detect_grammar_issues(body: str) -> List[SecurityDetection]:
    """Low-quality writing: doubled spaces, stray capitals, repeated periods and question marks"""
    text = bound_text(body)
    issues = sum(1 for pattern in GRAMMAR_ISSUE_PATTERNS if pattern.search(text))
    if issues <= GRAMMAR_ISSUE_THRESHOLD:
        return []

    return [SecurityDetection(
        type=DetectionType.SPAM,
        severity=Severity.LOW,
        description="Poor grammar and formatting",
        evidence=(f"{issues} formatting issues found",),
        confidence=0.40,
    )]


def detect_impersonation(sender: str, sender_email: str) -> List[SecurityDetection]:
    """Display name claims an organisation the sending domain does not belong to"""
    domain = extract_domain(sender_email)
    if not sender or not domain:
        return []

    display_name = sender.lower()
    compact_domain = domain.replace('-', '')
    for org in IMPERSONATED_ORGS:
        if re.search(rf'\b{re.escape(org)}\b', display_name) and org.replace(' ', '') not in compact_domain:
            return [SecurityDetection(
                type=DetectionType.SPOOFING,
                severity=Severity.HIGH,
                description="Display name impersonates a known organisation",
                evidence=(f"Display name: {sender[:80]}", f"Sender domain: {domain}"),
                confidence=0.75,
            )]
    return []
