from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..services.fipe import parse_year_code


class VehicleCreate(BaseModel):
    """Add-vehicle form. Brand/model come from FIPE (with codes) or are typed in."""

    model_config = ConfigDict(coerce_numbers_to_str=True, protected_namespaces=())

    brand: str = Field(..., min_length=1, max_length=100)
    model: str = Field(..., min_length=1, max_length=150)
    brand_code: Optional[str] = None
    model_code: Optional[str] = None
    year_code: Optional[str] = None
    year: Optional[int] = Field(None, ge=1900, le=2100)
    plate: str = Field(..., min_length=1, max_length=10)
    mileage: int = Field(..., ge=0)
    color: Optional[str] = Field(None, max_length=50)
    vin: Optional[str] = Field(None, max_length=17)

    @field_validator("brand", "model")
    @classmethod
    def strip_label(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("plate")
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("mileage", mode="before")
    @classmethod
    def parse_mileage(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("vin")
    @classmethod
    def normalize_vin(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip().upper() or None

    @model_validator(mode="after")
    def resolve_year(self):
        if self.year is None:
            if not self.year_code:
                raise ValueError("year or year_code is required")
            self.year = parse_year_code(self.year_code)
        return self


class VehicleOut(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, from_attributes=True, protected_namespaces=())

    id: str
    user_id: str
    brand: str
    model: str
    plate: str
    year: int
    mileage: int
    color: Optional[str] = None
    vin: Optional[str] = None
    brand_code: Optional[str] = None
    model_code: Optional[str] = None
    created_at: Optional[datetime] = None
