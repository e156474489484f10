from pydantic import BaseModel, ConfigDict, Field, field_validator


class BrandIn(BaseModel):
    name: str = Field(..., max_length=100)

    @field_validator("name")
    @classmethod
    def require_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Brand name is required.")
        return v


class BrandOut(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    name: str


class ModelIn(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    name: str = Field(..., max_length=150)
    brand_id: str

    @field_validator("name", "brand_id")
    @classmethod
    def require_value(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class ModelOut(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    brand_id: str
    name: str
    brand_name: str = "Unknown brand"


class ImportResult(BaseModel):
    imported: int
    failed_brands: list[str] = []
    message: str
