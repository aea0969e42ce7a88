"""
Storage - Current Value Table.

Latest field snapshot per (domain, resource) for one host, stored
under <hostId>:<domain>:current:<resource>.

Each set() replaces the whole mapping; fields missing from the new
snapshot disappear. Values are stored as strings.
"""

from typing import Any, Dict, Mapping, Optional, Set
import logging

from core.constants import KeyKind
from core.exceptions import ValidationError
from storage.backends import StorageBackend
from storage.keys import DomainLike, KeyNamespace


logger = logging.getLogger(__name__)


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


class CurrentValueTable:
    """Per-host table of latest snapshots."""

    def __init__(self, namespace: KeyNamespace, backend: StorageBackend):
        self._namespace = namespace
        self._backend = backend

    @property
    def namespace(self) -> KeyNamespace:
        return self._namespace

    def set(self, domain: DomainLike, resource: str, fields: Mapping[str, Any]) -> None:
        """Replace the snapshot for one resource."""
        if not isinstance(fields, Mapping):
            raise ValidationError("fields must be a mapping", field_name="fields", value=fields)
        key = self._namespace.format_key(domain, resource, KeyKind.CURRENT)
        self._backend.hash_replace(key, {str(k): _to_text(v) for k, v in fields.items()})

    def get(self, domain: DomainLike, resource: str) -> Optional[Dict[str, str]]:
        key = self._namespace.format_key(domain, resource, KeyKind.CURRENT)
        fields = self._backend.hash_get(key)
        return fields or None

    def list_resources(self, domain: DomainLike) -> Set[str]:
        pattern = self._namespace.format_pattern(domain, KeyKind.CURRENT)
        resources = set()
        for key in self._backend.keys(pattern):
            try:
                resources.add(KeyNamespace.parse_key(key).resource)
            except ValidationError:
                logger.debug(f"Skipping unparseable key {key}")
        return resources

    def snapshot(self, domain: DomainLike) -> Dict[str, Dict[str, str]]:
        """All current snapshots of a domain, keyed by resource."""
        result = {}
        for resource in sorted(self.list_resources(domain)):
            fields = self.get(domain, resource)
            if fields:
                result[resource] = fields
        return result


__all__ = ["CurrentValueTable"]
