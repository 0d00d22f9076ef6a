"""Tests for scan bounds, rule pattern validation and upload checks."""

import pytest

from mailshield.core.input_sanitizer import (
    bound_text,
    find_unsafe_repetition,
    validate_rule_pattern,
    validate_uploaded_file,
)


def test_bound_text_truncates():
    assert bound_text("abcdef", 3) == "abc"
    assert bound_text(None) == ""
    assert len(bound_text("x" * 50000)) == 20000


@pytest.mark.parametrize("pattern", [
    r"\.exe$",
    "urgent.*transfer",
    "(abc)+",
    "[a-z]{2,5}",
    "urgent.*transfer|immediate.*payment",
    "(?i)(a+)?b",
    r"(\(x\))+",
    "[(a+)]+",
    "(?:https?://)?example",
])
def test_safe_patterns_compile_case_insensitively(pattern):
    compiled, error = validate_rule_pattern(pattern)

    assert error is None
    assert compiled.flags & 2  # re.IGNORECASE


@pytest.mark.parametrize("pattern", ["", "(a+)+", r"(\d*)*", "(x+){2,}", r"(a)\1", "(?P<n>a)(?P=n)", "[unclosed"])
def test_unsafe_or_invalid_patterns_are_rejected(pattern):
    compiled, error = validate_rule_pattern(pattern)

    assert compiled is None
    assert error


@pytest.mark.parametrize("pattern", [
    "((a+))+$",
    "(x(a+))*",
    "(a|aa)+$",
    "(?:(?:ab)*c)+",
    "(a{2,})*",
    "(a?b)+",
    "((a)|b){3,}",
])
def test_quantified_groups_holding_quantifiers_or_alternation(pattern):
    assert find_unsafe_repetition(pattern) == "Rule pattern contains nested quantifiers"
    assert validate_rule_pattern(pattern) == (None, "Rule pattern contains nested quantifiers")


def test_one_unbounded_wildcard_per_alternative():
    assert find_unsafe_repetition("urgent.*action.*required") == "Rule pattern repeats an unbounded wildcard"
    assert find_unsafe_repetition("a.+b(c.*d)") is not None
    assert find_unsafe_repetition("a.*b|c.*d") is None
    assert find_unsafe_repetition(r"a.{1,20}b.*c") is None
    assert find_unsafe_repetition(r"a\.*b.*c") is None


def test_pattern_length_limit():
    assert validate_rule_pattern("a" * 10, max_length=5)[1] is not None


def test_valid_eml_upload():
    assert validate_uploaded_file(b"From: a@example.org\n\nhi", "message.eml") == (True, None)


@pytest.mark.parametrize("content, filename", [
    (b"", "message.eml"),
    (b"From: a@example.org", "message.exe"),
    (b"MZ\x90\x00", "message.eml"),
    (b"From: a@example.org", "mess\x00age.eml"),
])
def test_rejected_uploads(content, filename):
    is_valid, error = validate_uploaded_file(content, filename)

    assert is_valid is False
    assert error
