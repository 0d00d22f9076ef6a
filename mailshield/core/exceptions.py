"""
Exceptions raised by the threat detection core
"""


class ClassifierError(Exception):
    """An external classifier could not produce a usable verdict"""


class InvalidRuleError(ValueError):
    """A security rule definition failed validation"""


class EmailParseError(ValueError):
    """Raw email content could not be parsed"""
