"""
Input Sanitization and Validation Module
Keeps attacker-controlled email content and user-supplied rule patterns
from turning regex scanning into a denial-of-service vector

Security measures:
1. Length cap on text before any regex is applied
2. Length and shape limits on user-defined rule patterns
3. Upload validation for raw .eml files
"""

import re
import logging
from typing import List, Optional, Pattern, Tuple

from mailshield.core.config import settings

logger = logging.getLogger(__name__)

# Brace quantifiers: {n}, {n,}, {,m}, {n,m}
BRACE_QUANTIFIER_PATTERN = re.compile(r'\{(\d*)(,?)(\d*)\}')

# Each extra unbounded `.` in one alternative multiplies backtracking by the text length
MAX_WILDCARDS_PER_BRANCH = 1

# Backreferences force backtracking and are never needed for filtering
BACKREFERENCE_PATTERN = re.compile(r'\\[1-9]|\(\?P=')

# Dangerous file signatures (magic bytes) to block on .eml upload
DANGEROUS_FILE_SIGNATURES = {
    b'MZ': 'Windows Executable (EXE/DLL)',
    b'\x7fELF': 'Linux Executable (ELF)',
    b'PK\x03\x04': 'ZIP Archive',
    b'Rar!': 'RAR Archive',
    b'\x1f\x8b': 'GZIP Archive',
    b'%PDF': 'PDF Document',
    b'#!/': 'Shell Script',
}

ALLOWED_EMAIL_EXTENSIONS = {'.eml', '.txt'}


def bound_text(text: Optional[str], limit: Optional[int] = None) -> str:
    """Truncate text to the configured scan limit"""
    if not text:
        return ""
    limit = limit or settings.MAX_SCAN_CHARS
    return text[:limit]


def _quantifier_at(pattern: str, index: int) -> Tuple[int, Optional[int]]:
    """
    Length and upper repeat bound of the quantifier starting at `index`.

    Returns (0, 0) when there is no quantifier there. An upper bound of
    None means unbounded. Lazy and possessive suffixes count toward the length.
    """
    if index >= len(pattern):
        return 0, 0

    char = pattern[index]
    if char == '?':
        length, upper = 1, 1
    elif char in '*+':
        length, upper = 1, None
    elif char == '{':
        brace = BRACE_QUANTIFIER_PATTERN.match(pattern, index)
        if not brace or not (brace.group(1) or brace.group(2)):
            return 0, 0
        lower, comma, high = brace.groups()
        length = brace.end() - index
        if high:
            upper = int(high)
        elif comma:
            upper = None
        else:
            upper = int(lower)
    else:
        return 0, 0

    if pattern.startswith(('?', '+'), index + length):
        length += 1
    return length, upper


def _skip_class(pattern: str, index: int) -> int:
    """Index just past the character class opened at `index`"""
    i = index + 1
    if pattern.startswith('^', i):
        i += 1
    if pattern.startswith(']', i):
        i += 1
    while i < len(pattern) and pattern[i] != ']':
        i += 2 if pattern[i] == '\\' else 1
    return i + 1


def _skip_group_prefix(pattern: str, index: int) -> int:
    """Index of the first atom of a group whose '(' sits just before `index`"""
    if not pattern.startswith('?', index):
        return index

    i = index + 1
    if pattern.startswith('P<', i):
        end = pattern.find('>', i)
        return end + 1 if end != -1 else len(pattern)
    if pattern.startswith('#', i):
        end = pattern.find(')', i)
        return end if end != -1 else len(pattern)
    if pattern.startswith(('<=', '<!'), i):
        return i + 2
    if pattern.startswith(('=', '!', ':', '>'), i):
        return i + 1

    while i < len(pattern) and pattern[i] in 'aiLmsux-':
        i += 1
    if pattern.startswith(':', i):
        i += 1
    return i


def find_unsafe_repetition(pattern: str) -> Optional[str]:
    """
    Describe the first construct in `pattern` that makes backtracking
    super-linear, or return None.

    Two shapes are rejected:
    - a group repeated more than once that holds a quantifier or an
      alternation at any depth, e.g. (a+)+, ((a+))+, (x(a+))* or (a|aa)+
    - more than one unbounded `.` in one top-level alternative, e.g. a.*b.*c

    Malformed patterns are left for re.compile to report.
    """
    # One flag per open group: does it hold a quantifier or alternation?
    groups: List[bool] = []
    wildcards = 0
    i = 0

    while i < len(pattern):
        char = pattern[i]

        if char == '(':
            groups.append(False)
            i = _skip_group_prefix(pattern, i + 1)
            continue

        if char == '|':
            if groups:
                groups[-1] = True
            else:
                wildcards = 0
            i += 1
            continue

        inner = False
        if char == ')':
            if not groups:
                return None
            inner = groups.pop()
            i += 1
        elif char == '\\':
            i += 2
        elif char == '[':
            i = _skip_class(pattern, i)
        else:
            i += 1

        length, upper = _quantifier_at(pattern, i)
        if length:
            repeats = upper is None or upper > 1
            if inner and repeats:
                return "Rule pattern contains nested quantifiers"
            if char == '.' and upper is None:
                wildcards += 1
                if wildcards > MAX_WILDCARDS_PER_BRANCH:
                    return "Rule pattern repeats an unbounded wildcard"
            i += length

        if groups and (inner or length):
            groups[-1] = True

    return None


def validate_rule_pattern(pattern: str, max_length: Optional[int] = None) -> Tuple[Optional[Pattern], Optional[str]]:
    """
    Validate and compile a user-supplied rule pattern.

    Returns:
        Tuple of (compiled_pattern, error_message)
        If error_message is not None, the pattern must be rejected
    """
    max_length = max_length or settings.MAX_RULE_PATTERN_LENGTH

    if not pattern or not pattern.strip():
        return None, "Rule pattern cannot be empty"

    if len(pattern) > max_length:
        return None, f"Rule pattern exceeds maximum length of {max_length} characters"

    unsafe = find_unsafe_repetition(pattern)
    if unsafe:
        log_security_event("UNSAFE_RULE_PATTERN", f"{unsafe}: {pattern[:50]}")
        return None, unsafe

    if BACKREFERENCE_PATTERN.search(pattern):
        log_security_event("UNSAFE_RULE_PATTERN", f"Backreference: {pattern[:50]}")
        return None, "Rule pattern contains backreferences"

    try:
        compiled = re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        return None, f"Rule pattern is not a valid regular expression: {e}"

    return compiled, None


def validate_uploaded_file(content: bytes, filename: str, max_size: int = 10 * 1024 * 1024) -> Tuple[bool, Optional[str]]:
    """
    Validate an uploaded raw email file.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not content:
        return False, "Uploaded file is empty"

    if len(content) > max_size:
        log_security_event("FILE_TOO_LARGE", f"Size: {len(content)} bytes, Max: {max_size}")
        return False, f"File size exceeds {max_size // (1024*1024)}MB limit"

    if '\x00' in filename:
        log_security_event("NULL_BYTE_ATTACK", f"Filename: {filename[:50]}")
        return False, "Invalid filename detected"

    filename_lower = filename.lower().strip()
    ext = '.' + filename_lower.split('.')[-1] if '.' in filename_lower else ''
    if ext not in ALLOWED_EMAIL_EXTENSIONS:
        log_security_event("DISALLOWED_EXTENSION", f"Extension: {ext}")
        return False, f"Only {', '.join(sorted(ALLOWED_EMAIL_EXTENSIONS))} files are allowed"

    for signature, file_type in DANGEROUS_FILE_SIGNATURES.items():
        if content.startswith(signature):
            log_security_event("DANGEROUS_FILE_SIGNATURE", f"Type: {file_type}, Filename: {filename}")
            return False, f"File appears to be a {file_type}, not an email file"

    return True, None


def log_security_event(event_type: str, details: str, ip_address: str = None):
    """
    Log security-related events for monitoring and alerting.
    """
    log_msg = f"SECURITY_EVENT: {event_type}"
    if ip_address:
        log_msg += f" | IP: {ip_address}"
    log_msg += f" | Details: {details}"
    logger.warning(log_msg)
