"""
Alert Rules.

============================================================
PURPOSE
============================================================
Static threshold rules evaluated against current values.

PRINCIPLES:
- Thresholds are explicit and configurable
- A rule emits Fire while its condition holds and Clear when
  a value is present but no longer breaches
- A missing or unparseable value emits nothing
- Deduplication is the alert store's job, not the engine's

============================================================
DEDUPE MODES
============================================================
global         reads one fixed resource, dedupe key = rule_id
per_resource   enumerates every resource of the domain,
               dedupe key = <rule_id>_<resource>

============================================================
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Set, Union

from core.constants import (
    DEFAULT_CPU_THRESHOLD,
    DEFAULT_DISK_THRESHOLD,
    DEFAULT_MEMORY_THRESHOLD,
    Domain,
)
from core.exceptions import ValidationError

from ..models import AlertLevel, AlertType


logger = logging.getLogger(__name__)


# domain -> resource -> field -> value
CurrentValues = Mapping[str, Mapping[str, Mapping[str, str]]]


# ============================================================
# COMPARATORS
# ============================================================

class Comparator(Enum):
    """Condition operator. Ordering operators are numeric, equality is textual."""

    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "=="
    NE = "!="

    @property
    def numeric(self) -> bool:
        return self in (Comparator.GT, Comparator.LT, Comparator.GE, Comparator.LE)

    def breaches(self, value: str, threshold: Union[float, str]) -> Optional[bool]:
        """
        Whether value breaches threshold.

        Returns None when value cannot be compared.
        """
        if value is None or value == "":
            return None

        if not self.numeric:
            left = str(value).strip().lower()
            right = str(threshold).strip().lower()
            return left == right if self == Comparator.EQ else left != right

        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        if number != number:  # NaN
            return None

        limit = float(threshold)
        if self == Comparator.GT:
            return number > limit
        if self == Comparator.LT:
            return number < limit
        if self == Comparator.GE:
            return number >= limit
        return number <= limit


# ============================================================
# TRANSITIONS
# ============================================================

@dataclass(frozen=True)
class Fire:
    dedupe_key: str
    message: str
    level: AlertLevel
    alert_type: AlertType
    source: str


@dataclass(frozen=True)
class Clear:
    dedupe_key: str


AlertTransition = Union[Fire, Clear]


# ============================================================
# THRESHOLD RULE
# ============================================================

class _TemplateFields(dict):
    def __missing__(self, key):
        return "{" + key + "}"


@dataclass
class ThresholdRule:
    """
    One threshold condition on one field of a domain.

    message_template may reference {resource}, {value}, {threshold},
    {field} and any other field of the resource's snapshot.
    """

    rule_id: str
    domain: str
    field: str
    comparator: Comparator
    threshold: Union[float, str]
    level: AlertLevel
    alert_type: AlertType
    message_template: str
    source: str
    per_resource: bool = False
    resource: Optional[str] = None
    enabled: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.domain, Domain):
            self.domain = self.domain.value
        if not self.rule_id:
            raise ValidationError("rule_id is required", field_name="rule_id")
        if not self.per_resource and not self.resource:
            raise ValidationError(
                "global rules need a fixed resource",
                field_name="resource",
                value=self.rule_id,
            )
        if self.comparator.numeric:
            try:
                self.threshold = float(self.threshold)
            except (TypeError, ValueError):
                raise ValidationError(
                    "numeric comparator needs a numeric threshold",
                    field_name="threshold",
                    value=self.threshold,
                )

    def dedupe_key(self, resource: str) -> str:
        if self.per_resource:
            return f"{self.rule_id}_{resource}"
        return self.rule_id

    def resources(self, values: CurrentValues) -> Iterable[str]:
        domain_values = values.get(self.domain, {})
        if self.per_resource:
            return sorted(domain_values)
        return [self.resource] if self.resource in domain_values else []

    def evaluate(self, values: CurrentValues) -> List[AlertTransition]:
        """Transitions for every resource this rule covers."""
        transitions: List[AlertTransition] = []
        domain_values = values.get(self.domain, {})

        for resource in self.resources(values):
            fields = domain_values.get(resource) or {}
            value = fields.get(self.field)
            breached = self.comparator.breaches(value, self.threshold)
            if breached is None:
                continue

            dedupe_key = self.dedupe_key(resource)
            if breached:
                transitions.append(Fire(
                    dedupe_key=dedupe_key,
                    message=self.render(resource, value, fields),
                    level=self.level,
                    alert_type=self.alert_type,
                    source=self.source,
                ))
            else:
                transitions.append(Clear(dedupe_key))

        return transitions

    def render(self, resource: str, value: str, fields: Mapping[str, str]) -> str:
        context = _TemplateFields(fields)
        context.update(
            resource=resource,
            value=value,
            threshold=_format_threshold(self.threshold),
            field=self.field,
        )
        return self.message_template.format_map(context)


def _format_threshold(threshold: Union[float, str]) -> str:
    if isinstance(threshold, float) and threshold.is_integer():
        return str(int(threshold))
    return str(threshold)


# ============================================================
# RULE ENGINE
# ============================================================

class AlertRuleEngine:
    """Evaluates a fixed rule table."""

    def __init__(self, rules: Optional[List[ThresholdRule]] = None):
        self._rules = list(rules) if rules is not None else get_default_rules()
        self._check_unique()

    def _check_unique(self) -> None:
        seen: Set[str] = set()
        for rule in self._rules:
            if rule.rule_id in seen:
                raise ValidationError("duplicate rule id", field_name="rule_id", value=rule.rule_id)
            seen.add(rule.rule_id)

    @property
    def rules(self) -> List[ThresholdRule]:
        return list(self._rules)

    def domains(self) -> Set[str]:
        """Domains the enabled rules read."""
        return {rule.domain for rule in self._rules if rule.enabled}

    def evaluate(self, values: CurrentValues) -> List[AlertTransition]:
        """
        Evaluate all enabled rules.

        A rule that raises is logged and skipped.
        """
        transitions: List[AlertTransition] = []
        for rule in self._rules:
            if not rule.enabled:
                continue
            try:
                transitions.extend(rule.evaluate(values))
            except Exception as e:
                logger.error(f"Error evaluating rule {rule.rule_id}: {e}")
        return transitions


# ============================================================
# RULE REGISTRY
# ============================================================

def get_default_rules(
    cpu_threshold: float = DEFAULT_CPU_THRESHOLD,
    memory_threshold: float = DEFAULT_MEMORY_THRESHOLD,
    disk_threshold: float = DEFAULT_DISK_THRESHOLD,
) -> List[ThresholdRule]:
    """Default rule table."""
    return [
        # System rules
        ThresholdRule(
            rule_id="HIGH_CPU_USAGE",
            domain=Domain.SYSTEM.value,
            resource="cpu",
            field="usage_percent",
            comparator=Comparator.GT,
            threshold=cpu_threshold,
            level=AlertLevel.WARNING,
            alert_type=AlertType.HIGH_CPU_USAGE,
            message_template="System CPU usage is high: {value}%",
            source="SYSTEM",
        ),
        ThresholdRule(
            rule_id="HIGH_MEMORY_USAGE",
            domain=Domain.SYSTEM.value,
            resource="memory",
            field="usage_percent",
            comparator=Comparator.GT,
            threshold=memory_threshold,
            level=AlertLevel.WARNING,
            alert_type=AlertType.HIGH_MEMORY_USAGE,
            message_template="System memory usage is high: {value}%",
            source="SYSTEM",
        ),

        # Storage rules
        ThresholdRule(
            rule_id="DISK_SPACE_LOW",
            domain=Domain.STORAGE.value,
            field="usage_percent",
            comparator=Comparator.GT,
            threshold=disk_threshold,
            level=AlertLevel.WARNING,
            alert_type=AlertType.DISK_SPACE_LOW,
            message_template="Disk {resource} usage is high: {value}%",
            source="STORAGE",
            per_resource=True,
        ),

        # Container rules
        ThresholdRule(
            rule_id="DOCKER_CONTAINER_DOWN",
            domain=Domain.DOCKER.value,
            field="simple_status",
            comparator=Comparator.NE,
            threshold="running",
            level=AlertLevel.ERROR,
            alert_type=AlertType.DOCKER_CONTAINER_DOWN,
            message_template="Docker container {name} is not running (status: {status})",
            source="DOCKER",
            per_resource=True,
        ),

        # Stream rules
        ThresholdRule(
            rule_id="RTSP_STREAM_DOWN",
            domain=Domain.RTSP.value,
            field="status",
            comparator=Comparator.EQ,
            threshold="disconnected",
            level=AlertLevel.ERROR,
            alert_type=AlertType.RTSP_STREAM_DOWN,
            message_template="RTSP stream {resource} is down",
            source="RTSP",
            per_resource=True,
        ),
    ]


__all__ = [
    "Comparator",
    "Fire",
    "Clear",
    "AlertTransition",
    "CurrentValues",
    "ThresholdRule",
    "AlertRuleEngine",
    "get_default_rules",
]
