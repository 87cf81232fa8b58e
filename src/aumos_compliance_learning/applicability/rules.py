"""Built-in framework applicability rules.

Each rule is an ordered list of weighted conditions over entity-profile
fields. The weights of a rule need not sum to 1; scores are normalised by
the total weight at evaluation time.
"""

from dataclasses import dataclass
from typing import Any, Literal

ConditionOperator = Literal["equals", "contains", "greater_than", "less_than", "in"]

_MID_TO_LARGE = ("medium", "large", "enterprise")


@dataclass(frozen=True)
class ApplicabilityCondition:
    """A weighted predicate over one profile field.

    Attributes:
        field: EntityProfile attribute name, e.g. "jurisdictions".
        operator: equals | contains | greater_than | less_than | in.
        value: Comparison operand. A tuple for the `in` operator.
        weight: Contribution to the score when satisfied.
    """

    field: str
    operator: ConditionOperator
    value: Any
    weight: float


@dataclass(frozen=True)
class ApplicabilityRule:
    """Weighted condition set for one catalog framework."""

    framework_id: str
    framework_name: str
    conditions: tuple[ApplicabilityCondition, ...]


BUILTIN_RULES: tuple[ApplicabilityRule, ...] = (
    ApplicabilityRule(
        framework_id="gdpr",
        framework_name="GDPR",
        conditions=(
            ApplicabilityCondition("jurisdictions", "contains", "eu", 0.5),
            ApplicabilityCondition("processes_personal_data", "equals", True, 0.5),
        ),
    ),
    ApplicabilityRule(
        framework_id="eu-ai-act",
        framework_name="EU AI Act",
        conditions=(
            ApplicabilityCondition("jurisdictions", "contains", "eu", 0.4),
            ApplicabilityCondition("uses_ai_systems", "equals", True, 0.6),
        ),
    ),
    ApplicabilityRule(
        framework_id="nis2",
        framework_name="NIS2 Directive",
        conditions=(
            ApplicabilityCondition("jurisdictions", "contains", "eu", 0.3),
            ApplicabilityCondition("is_critical_infrastructure", "equals", True, 0.4),
            ApplicabilityCondition("entity_size", "in", _MID_TO_LARGE, 0.3),
        ),
    ),
    ApplicabilityRule(
        framework_id="iso-27001",
        framework_name="ISO 27001:2022",
        conditions=(
            ApplicabilityCondition("entity_size", "in", _MID_TO_LARGE, 0.4),
            ApplicabilityCondition("processes_personal_data", "equals", True, 0.3),
            ApplicabilityCondition("is_publicly_traded", "equals", True, 0.3),
        ),
    ),
    ApplicabilityRule(
        framework_id="iso-27701",
        framework_name="ISO 27701",
        conditions=(
            ApplicabilityCondition("processes_personal_data", "equals", True, 0.6),
            ApplicabilityCondition("data_categories", "contains", "sensitive_personal_data", 0.4),
        ),
    ),
    ApplicabilityRule(
        framework_id="soc2",
        framework_name="SOC 2 Type II",
        conditions=(
            ApplicabilityCondition(
                "industry", "in", ("technology", "financial_services", "healthcare"), 0.4
            ),
            ApplicabilityCondition("entity_size", "in", ("small",) + _MID_TO_LARGE, 0.3),
            ApplicabilityCondition("jurisdictions", "contains", "us", 0.3),
        ),
    ),
    ApplicabilityRule(
        framework_id="hipaa",
        framework_name="HIPAA",
        conditions=(
            ApplicabilityCondition("industry", "equals", "healthcare", 0.4),
            ApplicabilityCondition("jurisdictions", "contains", "us", 0.3),
            ApplicabilityCondition("data_categories", "contains", "health_data", 0.3),
        ),
    ),
    ApplicabilityRule(
        framework_id="pci-dss",
        framework_name="PCI DSS",
        conditions=(
            ApplicabilityCondition("data_categories", "contains", "financial_data", 0.6),
            ApplicabilityCondition("industry", "in", ("financial_services", "retail"), 0.4),
        ),
    ),
)

_RULES_BY_FRAMEWORK: dict[str, ApplicabilityRule] = {rule.framework_id: rule for rule in BUILTIN_RULES}


def get_rule(framework_id: str) -> ApplicabilityRule | None:
    """Return the built-in rule for a framework, or None if it has none."""
    return _RULES_BY_FRAMEWORK.get(framework_id)
