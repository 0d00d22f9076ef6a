"""
Email Parser Utility
Parses raw .eml files into the EmailInput the threat engine analyzes
"""

import email
import email.header
import email.utils
import re
from email import policy
from email.parser import BytesParser
from typing import Dict, List, Optional, Tuple

import logging

from mailshield.core.exceptions import EmailParseError
from mailshield.core.models import Attachment, EmailInput

logger = logging.getLogger(__name__)


class EmailParser:
    """Parse email files and extract content for analysis"""

    # Common URL pattern
    URL_PATTERN = re.compile(
        r'https?://[^\s<>"\')\]]+',
        re.IGNORECASE
    )

    MAX_URLS = 50

    def parse_eml(self, content: bytes) -> EmailInput:
        """
        Parse .eml file content

        Args:
            content: Raw bytes of the .eml file

        Returns:
            EmailInput ready for analysis

        Raises:
            EmailParseError: when the bytes are not a usable email
        """
        if not content or not content.strip():
            raise EmailParseError("Email content is empty")

        try:
            msg = BytesParser(policy=policy.default).parsebytes(content)
        except Exception as e:
            logger.error(f"Failed to parse email: {e}")
            raise EmailParseError(f"Failed to parse email: {e}") from e

        if not msg.keys():
            raise EmailParseError("No email headers found")

        return self._to_email_input(msg)

    def _to_email_input(self, msg: email.message.Message) -> EmailInput:
        display_name, address = email.utils.parseaddr(self._decode_header(msg.get('From', '')))
        body_text, body_html, attachments = self._walk_parts(msg)
        body = body_text or self._strip_html(body_html)

        return EmailInput(
            subject=self._decode_header(msg.get('Subject', '')),
            sender=display_name,
            sender_email=address.lower(),
            body=body,
            headers=self._collect_headers(msg),
            attachments=tuple(attachments),
            links=tuple(self._extract_urls(f"{body_text} {body_html}")),
        )

    def _walk_parts(self, msg: email.message.Message) -> Tuple[str, str, List[Attachment]]:
        body_text = ""
        body_html = ""
        attachments: List[Attachment] = []

        if not msg.is_multipart():
            content = self._part_content(msg)
            if msg.get_content_type() == "text/html":
                return "", content, []
            return content, "", []

        for part in msg.walk():
            if part.is_multipart():
                continue

            content_type = part.get_content_type()
            filename = part.get_filename()

            # Check for attachments
            if filename or part.get_content_disposition() == "attachment":
                payload = part.get_payload(decode=True) or b""
                attachments.append(Attachment(
                    name=self._decode_header(filename or "unnamed"),
                    type=content_type,
                    size=len(payload),
                ))
            elif content_type == "text/plain" and not body_text:
                body_text = self._part_content(part)
            elif content_type == "text/html" and not body_html:
                body_html = self._part_content(part)

        return body_text, body_html, attachments

    @staticmethod
    def _part_content(part: email.message.Message) -> str:
        try:
            return part.get_content()
        except Exception:
            payload = part.get_payload(decode=True) or b""
            return payload.decode('utf-8', errors='ignore')

    def _collect_headers(self, msg: email.message.Message) -> Dict[str, str]:
        """Lower-cased header map; repeated headers are joined with newlines"""
        headers: Dict[str, str] = {}
        for key in dict.fromkeys(k.lower() for k in msg.keys()):
            values = msg.get_all(key, [])
            headers[key] = "\n".join(self._decode_header(str(v)) for v in values)
        return headers

    def _decode_header(self, header: str) -> str:
        """Decode email header value"""
        if not header:
            return ""
        try:
            decoded_parts = email.header.decode_header(str(header))
            result = []
            for part, charset in decoded_parts:
                if isinstance(part, bytes):
                    result.append(part.decode(charset or 'utf-8', errors='ignore'))
                else:
                    result.append(str(part))
            return ''.join(result)
        except Exception:
            return str(header)

    def _extract_urls(self, text: str) -> List[str]:
        """Extract URLs from text"""
        if not text:
            return []
        clean_urls = []
        seen = set()
        for url in self.URL_PATTERN.findall(text):
            # Remove trailing punctuation
            url = url.rstrip('.,;:!?')
            if url not in seen:
                seen.add(url)
                clean_urls.append(url)
        return clean_urls[:self.MAX_URLS]

    def _strip_html(self, html: str) -> str:
        """Simple HTML tag removal"""
        if not html:
            return ""
        # Remove script and style elements
        html = re.sub(r'<script[^>]*>.*?</script>', '', html, flags=re.DOTALL | re.IGNORECASE)
        html = re.sub(r'<style[^>]*>.*?</style>', '', html, flags=re.DOTALL | re.IGNORECASE)
        # Remove tags
        text = re.sub(r'<[^>]+>', ' ', html)
        # Clean whitespace
        text = re.sub(r'\s+', ' ', text)
        return text.strip()


# Singleton instance
_parser: Optional[EmailParser] = None


def get_email_parser() -> EmailParser:
    """Get or create email parser instance"""
    global _parser
    if _parser is None:
        _parser = EmailParser()
    return _parser
