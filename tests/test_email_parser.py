"""Tests for raw .eml parsing."""

import pytest

from mailshield.core.exceptions import EmailParseError
from mailshield.utils.email_parser import EmailParser, get_email_parser

PLAIN_EML = b"""From: "Alice Smith" <Alice@Example.org>
To: bob@example.org
Subject: Quarterly numbers
Return-Path: <alice@example.org>
Received: from mail1.example.org by mx.example.org
Received: from laptop by mail1.example.org
DKIM-Signature: v=1; a=rsa-sha256; d=example.org
Content-Type: text/plain; charset="utf-8"

Hi Bob, the report is at https://intranet.example.org/reports/q3. Thanks!
"""

MULTIPART_EML = b"""From: Billing <billing@invoices.example.net>
To: bob@example.org
Subject: =?utf-8?q?Invoice_=E2=84=96_42?=
MIME-Version: 1.0
Content-Type: multipart/mixed; boundary="XYZ"

--XYZ
Content-Type: text/html; charset="utf-8"

<html><body><p>Open the <a href="http://192.168.1.5/pay">invoice</a></p><script>x()</script></body></html>
--XYZ
Content-Type: application/octet-stream
Content-Disposition: attachment; filename="invoice.exe"
Content-Transfer-Encoding: base64

TVqQAAMAAAAEAAAA
--XYZ--
"""


def test_plain_email():
    email = EmailParser().parse_eml(PLAIN_EML)

    assert email.sender == "Alice Smith"
    assert email.sender_email == "alice@example.org"
    assert email.subject == "Quarterly numbers"
    assert "report is at" in email.body
    assert email.links == ("https://intranet.example.org/reports/q3",)
    assert email.attachments == ()


def test_headers_are_lower_cased_and_joined():
    email = EmailParser().parse_eml(PLAIN_EML)

    assert email.headers["return-path"] == "<alice@example.org>"
    assert "dkim-signature" in email.headers
    assert email.headers["received"].count("\n") == 1


def test_multipart_email_with_attachment():
    email = EmailParser().parse_eml(MULTIPART_EML)

    assert email.subject == "Invoice № 42"
    assert email.sender == "Billing"
    assert email.sender_email == "billing@invoices.example.net"
    assert [a.name for a in email.attachments] == ["invoice.exe"]
    assert email.attachments[0].size == 12
    assert email.links == ("http://192.168.1.5/pay",)


def test_html_body_is_stripped_when_no_text_part():
    email = EmailParser().parse_eml(MULTIPART_EML)

    assert "<p>" not in email.body
    assert "x()" not in email.body
    assert "Open the invoice" in email.body


@pytest.mark.parametrize("content", [b"", b"   \n  ", b"just some text without headers"])
def test_unusable_content_raises(content):
    with pytest.raises(EmailParseError):
        EmailParser().parse_eml(content)


def test_parser_singleton():
    assert get_email_parser() is get_email_parser()
