"""Pydantic schemas for the rule management API."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from verticals.delivery.rules import WILDCARD, TargetType


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _normalise_codes(codes: Optional[list[str]]) -> Optional[list[str]]:
    if codes is None:
        return None
    cleaned = []
    for code in codes:
        code = code.strip().upper()
        if not code:
            continue
        if code != WILDCARD and not (2 <= len(code) <= 3 and code.isalpha()):
            raise ValueError(f"Invalid country code: {code!r}")
        if code not in cleaned:
            cleaned.append(code)
    return cleaned


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class DeliveryRuleCreate(BaseModel):
    target_type: TargetType
    target_value: str = Field("", max_length=255)
    country_codes: list[str] = Field(default_factory=lambda: [WILDCARD])
    estimated_min_days: int = Field(..., ge=0)
    estimated_max_days: int = Field(..., ge=0)
    custom_message: Optional[str] = None
    rule_name: Optional[str] = Field(None, max_length=255)
    enabled: bool = True
    is_default: bool = False
    priority: int = 0

    @field_validator("target_type")
    @classmethod
    def known_target_type(cls, value: TargetType) -> TargetType:
        if value == TargetType.UNKNOWN:
            raise ValueError("Unknown target type")
        return value

    @field_validator("country_codes")
    @classmethod
    def upper_case_codes(cls, value: list[str]) -> list[str]:
        return _normalise_codes(value)

    @model_validator(mode="after")
    def min_not_above_max(self) -> "DeliveryRuleCreate":
        if self.estimated_min_days > self.estimated_max_days:
            raise ValueError("estimated_min_days must not exceed estimated_max_days")
        return self


class DeliveryRuleUpdate(BaseModel):
    target_type: Optional[TargetType] = None
    target_value: Optional[str] = Field(None, max_length=255)
    country_codes: Optional[list[str]] = None
    estimated_min_days: Optional[int] = Field(None, ge=0)
    estimated_max_days: Optional[int] = Field(None, ge=0)
    custom_message: Optional[str] = None
    rule_name: Optional[str] = Field(None, max_length=255)
    enabled: Optional[bool] = None
    is_default: Optional[bool] = None
    priority: Optional[int] = None

    @field_validator("target_type")
    @classmethod
    def known_target_type(cls, value: Optional[TargetType]) -> Optional[TargetType]:
        if value == TargetType.UNKNOWN:
            raise ValueError("Unknown target type")
        return value

    @field_validator("country_codes")
    @classmethod
    def upper_case_codes(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return _normalise_codes(value)

    @model_validator(mode="after")
    def min_not_above_max(self) -> "DeliveryRuleUpdate":
        low, high = self.estimated_min_days, self.estimated_max_days
        if low is not None and high is not None and low > high:
            raise ValueError("estimated_min_days must not exceed estimated_max_days")
        return self
