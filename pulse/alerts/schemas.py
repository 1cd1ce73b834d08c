"""
Pydantic Schemas for alert configuration bodies.
"""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

from pulse.alerts.models import (
    AlertChannelType,
    AlertCondition,
    ComparisonOperator,
    ConditionType,
)
from pulse.exceptions import AlertValidationError


DEFAULT_COOLDOWN_SECONDS = 300

_COOLDOWN_ALIASES = AliasChoices("cooldown", "cooldownSeconds", "cooldown_seconds")


# =============================================================
# CONDITION
# =============================================================

class AlertConditionSchema(BaseModel):
    """Condition body. metric.threshold requires operator and value."""

    model_config = ConfigDict(extra="ignore")

    type: ConditionType
    target: str = Field(min_length=1)
    operator: Optional[ComparisonOperator] = None
    value: Optional[float] = None
    duration: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _threshold_fields(self) -> "AlertConditionSchema":
        if self.type == ConditionType.METRIC_THRESHOLD:
            if self.operator is None or self.value is None:
                raise ValueError("metric.threshold requires operator and value")
        return self

    def to_condition(self) -> AlertCondition:
        return AlertCondition(
            type=self.type,
            target=self.target,
            operator=self.operator,
            value=self.value,
            duration=self.duration,
        )


# =============================================================
# CONFIG BODIES
# =============================================================

class AlertCreate(BaseModel):
    """POST /pulse/alerts body."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    condition: AlertConditionSchema
    channels: List[AlertChannelType]
    recipients: List[str] = Field(default_factory=list)
    cooldown_seconds: int = Field(default=DEFAULT_COOLDOWN_SECONDS, ge=0, validation_alias=_COOLDOWN_ALIASES)
    enabled: bool = True


class AlertUpdate(BaseModel):
    """PUT /pulse/alerts/{id} body. Every field is optional."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    condition: Optional[AlertConditionSchema] = None
    channels: Optional[List[AlertChannelType]] = None
    recipients: Optional[List[str]] = None
    cooldown_seconds: Optional[int] = Field(default=None, ge=0, validation_alias=_COOLDOWN_ALIASES)
    enabled: Optional[bool] = None

    def changes(self) -> Dict[str, Any]:
        """Fields explicitly present in the body, in storage form."""
        changes: Dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None and name != "description":
                continue
            if name == "condition" and value is not None:
                value = value.to_condition()
            changes[name] = value
        return changes


# =============================================================
# PARSING
# =============================================================

def _field_errors(error: ValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in e["loc"]) or "body",
            "message": e["msg"],
            "type": e["type"],
        }
        for e in error.errors()
    ]


def parse_alert_create(data: Any) -> AlertCreate:
    try:
        return AlertCreate.model_validate(data)
    except ValidationError as e:
        raise AlertValidationError(_field_errors(e)) from e


def parse_alert_update(data: Any) -> AlertUpdate:
    try:
        return AlertUpdate.model_validate(data)
    except ValidationError as e:
        raise AlertValidationError(_field_errors(e)) from e
