"""
Storage - Key Namespace.

============================================================
PURPOSE
============================================================
Builds every key the monitor writes, scoped to one host.

Metric keys:   <hostId>:<domain>:<kind>:<resource>
Read pattern:  <hostId>:<domain>:<kind>:*

Host id, domain and kind never contain ':' so that the first three
separators are unambiguous. The resource is the last component and
may contain ':' (per-field series use "<resource>:<field>").
No component may contain glob characters, so a pattern built for
one host can never match another host's keys.

Formatting is pure: no I/O, no shared state.

============================================================
"""

from dataclasses import dataclass
from typing import NamedTuple, Optional, Union

from core.constants import (
    ACTIVE_ALERTS_KEY,
    ALERT_DEDUPE_PREFIX,
    ALERT_HISTORY_PREFIX,
    ALERT_RECORD_PREFIX,
    GLOB_CHARACTERS,
    KEY_SEPARATOR,
    Domain,
    KeyKind,
)
from core.exceptions import ValidationError


# ============================================================
# HOST IDENTITY
# ============================================================

@dataclass(frozen=True)
class HostIdentity:
    """
    Identity of the monitored host.

    Built once at startup from configuration and never mutated.
    """

    id: str
    display_name: Optional[str] = None
    location: str = "unknown"

    def __post_init__(self) -> None:
        _check_component("host_id", self.id, allow_separator=False)
        if self.display_name is None:
            object.__setattr__(self, "display_name", self.id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "location": self.location,
        }


class ParsedKey(NamedTuple):
    host_id: str
    domain: str
    kind: KeyKind
    resource: str


DomainLike = Union[Domain, str]


# ============================================================
# VALIDATION
# ============================================================

def _as_text(value: Union[Domain, KeyKind, str]) -> str:
    if isinstance(value, (Domain, KeyKind)):
        return value.value
    return value


def _check_component(name: str, value: str, allow_separator: bool) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{name} must be a non-empty string", field_name=name, value=value)
    if not allow_separator and KEY_SEPARATOR in value:
        raise ValidationError(
            f"{name} must not contain '{KEY_SEPARATOR}'", field_name=name, value=value
        )
    if GLOB_CHARACTERS.intersection(value):
        raise ValidationError(
            f"{name} must not contain glob characters", field_name=name, value=value
        )
    return value


def _check_kind(kind: Union[KeyKind, str]) -> KeyKind:
    try:
        return KeyKind(_as_text(kind))
    except ValueError:
        raise ValidationError("unknown key kind", field_name="kind", value=kind)


# ============================================================
# KEY NAMESPACE
# ============================================================

class KeyNamespace:
    """Formats and parses metric keys for a single host."""

    def __init__(self, host: HostIdentity):
        self._host = host

    @property
    def host(self) -> HostIdentity:
        return self._host

    def format_key(
        self,
        domain: DomainLike,
        resource: str,
        kind: Union[KeyKind, str] = KeyKind.HISTORY,
    ) -> str:
        """
        Build the storage key for one resource.

        Raises:
            ValidationError: on empty or malformed components
        """
        domain_text = _check_component("domain", _as_text(domain), allow_separator=False)
        resource = _check_component("resource", resource, allow_separator=True)
        kind = _check_kind(kind)
        return KEY_SEPARATOR.join((self._host.id, domain_text, kind.value, resource))

    def format_pattern(
        self,
        domain: DomainLike,
        kind: Union[KeyKind, str] = KeyKind.HISTORY,
    ) -> str:
        """Wildcard pattern matching every resource of a domain on this host."""
        domain_text = _check_component("domain", _as_text(domain), allow_separator=False)
        kind = _check_kind(kind)
        return KEY_SEPARATOR.join((self._host.id, domain_text, kind.value, "*"))

    def owns(self, key: str) -> bool:
        return key.startswith(self._host.id + KEY_SEPARATOR)

    @staticmethod
    def parse_key(key: str) -> ParsedKey:
        """Split a metric key back into its components."""
        parts = key.split(KEY_SEPARATOR, 3) if isinstance(key, str) else []
        if len(parts) != 4 or not all(parts):
            raise ValidationError("not a metric key", field_name="key", value=key)
        host_id, domain, kind, resource = parts
        return ParsedKey(host_id, domain, _check_kind(kind), resource)


# ============================================================
# ALERT KEYS
# ============================================================

def alert_record_key(alert_id: str) -> str:
    return ALERT_RECORD_PREFIX + _check_component("alert_id", alert_id, allow_separator=False)


def alert_dedupe_key(dedupe_key: str) -> str:
    return ALERT_DEDUPE_PREFIX + _check_component("dedupe_key", dedupe_key, allow_separator=True)


def alert_history_key(source: str) -> str:
    return ALERT_HISTORY_PREFIX + _check_component("source", source, allow_separator=True)


def active_alerts_key() -> str:
    return ACTIVE_ALERTS_KEY


__all__ = [
    "HostIdentity",
    "ParsedKey",
    "KeyNamespace",
    "alert_record_key",
    "alert_dedupe_key",
    "alert_history_key",
    "active_alerts_key",
]
