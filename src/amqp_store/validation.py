"""
Validation rules for configuration objects.

Each rule is a plain function taking a value and returning ``None`` when the
value passes, or a message describing the failure. ``check`` runs rules in
order and stops at the first failure. Entity validators collect failures into
a ``ValidationErrors`` report keyed by field name; reports of nested entities
are merged into their parent under the entry name.
"""

import ipaddress
import re
from typing import Any, Callable, Hashable, Iterable, Mapping, Optional

Rule = Callable[[Any], Optional[str]]

# Hostname labels: letters, digits, underscores and hyphens, at most 63 chars
_DNS_NAME_PATTERN = re.compile(
    r"^[a-zA-Z0-9_][a-zA-Z0-9_-]{0,62}(\.[a-zA-Z0-9_][a-zA-Z0-9_-]{0,62})*[._]?$"
)
_MAX_DNS_NAME_LENGTH = 255


class ValidationErrors(dict):
    """
    Mapping of field or entry name to a failure message or a nested report.

    Rendered the same way regardless of nesting depth, e.g.
    ``Host: must be a valid IP address or DNS name; orders: (type: must be a valid value).``
    """

    def merge(self, other: Mapping[str, Any]) -> "ValidationErrors":
        """Add every failure from ``other``. Existing keys are kept."""
        for key, value in other.items():
            self.setdefault(key, value)
        return self

    def add(self, key: str, message: Optional[str]) -> None:
        """Record ``message`` under ``key`` unless it is None."""
        if message is not None:
            self.setdefault(key, message)

    def __str__(self) -> str:
        if not self:
            return ""
        parts = []
        for key in sorted(self):
            value = self[key]
            if isinstance(value, ValidationErrors):
                parts.append(f"{key}: ({value.render_inner()})")
            else:
                parts.append(f"{key}: {value}")
        return "; ".join(parts) + "."

    def render_inner(self) -> str:
        return str(self).rstrip(".")


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset)):
        return len(value) == 0
    return False


def required(value: Any) -> Optional[str]:
    if _is_empty(value):
        return "cannot be blank"
    return None


def is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def is_dns_name(value: str) -> bool:
    if not value or len(value) > _MAX_DNS_NAME_LENGTH:
        return False
    if is_ip(value):
        return False
    return _DNS_NAME_PATTERN.match(value) is not None


def is_host(value: Any) -> Optional[str]:
    """Pass for an IP address or a DNS name. Empty values are left to ``required``."""
    if _is_empty(value):
        return None
    if isinstance(value, str) and (is_ip(value) or is_dns_name(value)):
        return None
    return "must be a valid IP address or DNS name"


def is_port(value: Any) -> Optional[str]:
    """Pass for an integer, or a string of digits, in 1..65535."""
    if _is_empty(value):
        return None
    if isinstance(value, bool):
        return "must be a valid port number"
    if isinstance(value, str):
        if not (value.isascii() and value.isdigit()):
            return "must be a valid port number"
        value = int(value)
    if not isinstance(value, int) or not 0 < value < 65536:
        return "must be a valid port number"
    return None


def one_of(choices: Iterable[Any]) -> Rule:
    """Build a rule passing only for members of ``choices``."""
    allowed = frozenset(choices)

    def rule(value: Any) -> Optional[str]:
        if isinstance(value, Hashable) and value in allowed:
            return None
        return "must be a valid value"

    return rule


def check(value: Any, *rules: Rule) -> Optional[str]:
    """Run ``rules`` against ``value`` and return the first failure message."""
    for rule in rules:
        message = rule(value)
        if message is not None:
            return message
    return None


def validate_entries(entries: Mapping[str, Any]) -> ValidationErrors:
    """
    Validate every entry of a named mapping.

    Entries expose ``errors()`` returning their own report; a failing entry is
    reported under its mapping key with its report nested.
    """
    report = ValidationErrors()
    for name in sorted(entries):
        entry = entries[name]
        if entry is None:
            continue
        entry_errors = entry.errors()
        if entry_errors:
            report[name] = entry_errors
    return report
