"""Validation Rule Schema Definitions.

This module defines the validation rule models as a tagged union keyed on
``rule_type``. Each variant carries a typed ``conditions`` model holding only
the bounds relevant to that rule family, so the evaluator never performs
runtime key lookups on free-form dictionaries.

Rule documents arrive in the camelCase shape stored by the LIS front end::

    {
        "id": "r-glu-crit",
        "testCode": "GLU",
        "ruleType": "critical",
        "priority": 1,
        "conditions": {"criticalLow": 40, "criticalHigh": 500},
        "action": "notify",
        "requiresReview": true,
        "enabled": true
    }

Both the camelCase aliases and the snake_case field names are accepted.

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Parsing failures are reported through Result, never raised to loaders
    - Absent condition fields are no-ops; a variant with no effective
      condition at all is malformed and skipped by the evaluator
"""

import logging
import re
from typing import Annotated, Any, Iterable, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from src.domain.enums import DeltaType, RuleAction, RuleType
from src.domain.ports import Result, RuleDefinitionError

logger = logging.getLogger(__name__)


_CONDITION_CONFIG = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


# ============================================================================
# Condition models (one per rule family)
# ============================================================================

class RangeConditions(BaseModel):
    """Reference-range bounds (exclusive comparison)."""
    model_config = _CONDITION_CONFIG

    min_value: Optional[float] = Field(None, alias="minValue")
    max_value: Optional[float] = Field(None, alias="maxValue")


class CriticalConditions(BaseModel):
    """Critical-value thresholds (inclusive comparison)."""
    model_config = _CONDITION_CONFIG

    critical_low: Optional[float] = Field(None, alias="criticalLow")
    critical_high: Optional[float] = Field(None, alias="criticalHigh")


class AbsurdConditions(BaseModel):
    """Physiologically impossible limits."""
    model_config = _CONDITION_CONFIG

    absurd_low: Optional[float] = Field(None, alias="absurdLow")
    absurd_high: Optional[float] = Field(None, alias="absurdHigh")


class DeltaConditions(BaseModel):
    """Allowed change from the patient's previous final result.

    Older rule documents carry ``deltaPercentage`` instead of a threshold and
    type pair; it is read as a percentage threshold.
    """
    model_config = _CONDITION_CONFIG

    delta_threshold: Optional[float] = Field(None, alias="deltaThreshold")
    delta_type: DeltaType = Field(DeltaType.ABSOLUTE, alias="deltaType")

    @model_validator(mode="before")
    @classmethod
    def read_legacy_percentage(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("deltaPercentage") is not None:
            if data.get("deltaThreshold") is None and data.get("delta_threshold") is None:
                data = dict(data)
                data["deltaThreshold"] = data["deltaPercentage"]
                data["deltaType"] = DeltaType.PERCENTAGE.value
        return data


class PatternConditions(BaseModel):
    """Regular expression a text result must match (search semantics)."""
    model_config = _CONDITION_CONFIG

    pattern: Optional[str] = None

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: Optional[str]) -> Optional[str]:
        """Reject expressions that do not compile."""
        if v is None:
            return v
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid regular expression {v!r}: {e}")
        return v


# ============================================================================
# Rule variants
# ============================================================================

class RuleBase(BaseModel):
    """Fields shared by every rule family.

    Parameters:
        id: Unique rule identifier
        test_code: Test the rule applies to
        tenant_id: Owning tenant (optional for file-based rule sets)
        priority: Evaluation order, ascending (lower = evaluated first)
        action: warn | block | notify | flag
        requires_review: Forces human review when the rule fires
        enabled: Disabled rules are skipped entirely
        flag: Flag string appended when ``action`` is ``flag``
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str = Field(..., min_length=1)
    test_code: str = Field(..., alias="testCode", min_length=1)
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    name: Optional[str] = None
    priority: int = 0
    action: RuleAction = RuleAction.WARN
    requires_review: bool = Field(False, alias="requiresReview")
    enabled: bool = Field(True, validation_alias=AliasChoices("enabled", "isActive", "active"))
    flag: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def read_legacy_actions(cls, data: Any) -> Any:
        """Fold the older ``actions`` object into the flat action fields.

        Older documents describe behaviour as
        ``{"actions": {"flag": "H*", "requiresReview": true, "autoReject": true}}``.
        """
        if not isinstance(data, dict) or not isinstance(data.get("actions"), dict):
            return data
        data = dict(data)
        actions = data.pop("actions")
        if actions.get("requiresReview") and "requiresReview" not in data:
            data["requiresReview"] = True
        if actions.get("flag") and "flag" not in data:
            data["flag"] = actions["flag"]
        if "action" not in data:
            if actions.get("autoReject"):
                data["action"] = RuleAction.BLOCK.value
            elif actions.get("flag"):
                data["action"] = RuleAction.FLAG.value
            elif actions.get("notifyCritical"):
                data["action"] = RuleAction.NOTIFY.value
        return data

    def has_conditions(self) -> bool:
        """Whether at least one condition relevant to the rule family is set."""
        return True

    @property
    def requires_numeric(self) -> bool:
        """Whether the rule compares numbers (and so skips non-numeric values)."""
        return False

    def to_document(self) -> dict:
        """Serialize to the camelCase document shape."""
        return self.model_dump(mode="json", by_alias=True)


class RangeRule(RuleBase):
    rule_type: Literal["range"] = Field("range", alias="ruleType")
    conditions: RangeConditions = Field(default_factory=RangeConditions)

    def has_conditions(self) -> bool:
        return self.conditions.min_value is not None or self.conditions.max_value is not None

    @property
    def requires_numeric(self) -> bool:
        return True


class CriticalRule(RuleBase):
    rule_type: Literal["critical"] = Field("critical", alias="ruleType")
    conditions: CriticalConditions = Field(default_factory=CriticalConditions)

    def has_conditions(self) -> bool:
        return self.conditions.critical_low is not None or self.conditions.critical_high is not None

    @property
    def requires_numeric(self) -> bool:
        return True


class AbsurdRule(RuleBase):
    rule_type: Literal["absurd"] = Field("absurd", alias="ruleType")
    conditions: AbsurdConditions = Field(default_factory=AbsurdConditions)

    def has_conditions(self) -> bool:
        return self.conditions.absurd_low is not None or self.conditions.absurd_high is not None

    @property
    def requires_numeric(self) -> bool:
        return True


class DeltaRule(RuleBase):
    rule_type: Literal["delta"] = Field("delta", alias="ruleType")
    conditions: DeltaConditions = Field(default_factory=DeltaConditions)

    def has_conditions(self) -> bool:
        return self.conditions.delta_threshold is not None

    @property
    def requires_numeric(self) -> bool:
        return True


class PatternRule(RuleBase):
    rule_type: Literal["pattern"] = Field("pattern", alias="ruleType")
    conditions: PatternConditions = Field(default_factory=PatternConditions)

    def has_conditions(self) -> bool:
        return bool(self.conditions.pattern)


class ConsistencyRule(RuleBase):
    """Reserved family: accepted and stored, no behaviour in the core."""
    rule_type: Literal["consistency"] = Field("consistency", alias="ruleType")
    conditions: dict[str, Any] = Field(default_factory=dict)


class CalculatedRule(RuleBase):
    """Reserved family: accepted and stored, no behaviour in the core."""
    rule_type: Literal["calculated"] = Field("calculated", alias="ruleType")
    conditions: dict[str, Any] = Field(default_factory=dict)


def _rule_type_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        tag = value.get("rule_type", value.get("ruleType"))
    else:
        tag = getattr(value, "rule_type", None)
    if isinstance(tag, RuleType):
        return tag.value
    return tag


ValidationRule = Annotated[
    Union[
        Annotated[RangeRule, Tag(RuleType.RANGE.value)],
        Annotated[CriticalRule, Tag(RuleType.CRITICAL.value)],
        Annotated[AbsurdRule, Tag(RuleType.ABSURD.value)],
        Annotated[DeltaRule, Tag(RuleType.DELTA.value)],
        Annotated[PatternRule, Tag(RuleType.PATTERN.value)],
        Annotated[ConsistencyRule, Tag(RuleType.CONSISTENCY.value)],
        Annotated[CalculatedRule, Tag(RuleType.CALCULATED.value)],
    ],
    Discriminator(_rule_type_of),
]

_RULE_ADAPTER: TypeAdapter = TypeAdapter(ValidationRule)


# ============================================================================
# Parsing
# ============================================================================

def parse_rule(document: dict) -> Result[RuleBase]:
    """Parse one rule document into its typed variant.

    Parameters:
        document: Raw rule document (camelCase or snake_case keys)

    Returns:
        Result[RuleBase]: The typed rule, or a RuleDefinitionError failure
        carrying the rule id and the validation messages
    """
    rule_id = document.get("id") if isinstance(document, dict) else None
    try:
        return Result.success_result(_RULE_ADAPTER.validate_python(document))
    except PydanticValidationError as e:
        messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        return Result.failure_result(
            RuleDefinitionError(f"Malformed rule {rule_id!r}: {'; '.join(messages)}", rule_id=rule_id),
            error_type="RuleDefinitionError",
            error_details={"rule_id": rule_id, "errors": messages},
        )


def parse_rule_set(documents: Iterable[dict]) -> list[RuleBase]:
    """Parse rule documents, skipping (and logging) any that are malformed.

    A single bad rule never prevents the rest of the set from loading.
    """
    rules = []
    for document in documents:
        result = parse_rule(document)
        if result.is_success():
            rules.append(result.value)
        else:
            logger.warning(f"Skipping rule definition: {result.error}")
    return rules
