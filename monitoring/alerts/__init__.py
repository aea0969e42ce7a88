"""
Alerts Package.

Threshold rules and the alert cycle.
"""

from .rules import (
    AlertRuleEngine,
    AlertTransition,
    Clear,
    Comparator,
    Fire,
    ThresholdRule,
    get_default_rules,
)
from .manager import AlertManager, EvaluationResult


__all__ = [
    "AlertRuleEngine",
    "AlertTransition",
    "Clear",
    "Comparator",
    "Fire",
    "ThresholdRule",
    "get_default_rules",
    "AlertManager",
    "EvaluationResult",
]
