from enum import Enum

from pydantic import BaseModel, Field


class CustomerIdentifiers(BaseModel):
    type: str = Field(min_length=1, max_length=64)
    value: str = Field(min_length=1, max_length=255)


class ValidityUnit(str, Enum):
    DAYS = "DAYS"
    MONTHS = "MONTHS"
    YEARS = "YEARS"


class Validity(BaseModel):
    value: int = Field(gt=0)
    unit: ValidityUnit = ValidityUnit.DAYS


class Preference(BaseModel):
    purpose: str = Field(min_length=1, max_length=128)
    description: str | None = None
    is_mandatory: bool = False
    validity: Validity | None = None
