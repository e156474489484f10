from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ReferenceItem(BaseModel):
    """A FIPE `{codigo, nome}` pair, whichever spelling the API used."""

    code: str = Field(validation_alias=AliasChoices("code", "codigo"))
    name: str = Field(validation_alias=AliasChoices("name", "nome"))

    @field_validator("code", mode="before")
    @classmethod
    def stringify_code(cls, v):
        return str(v) if v is not None else v


class VehiclePrice(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    price: str = Field(validation_alias=AliasChoices("price", "Valor", "valor"))
    brand: str = Field(validation_alias=AliasChoices("brand", "Marca", "marca"))
    model: str = Field(validation_alias=AliasChoices("model", "Modelo", "modelo"))
    model_year: int = Field(validation_alias=AliasChoices("model_year", "AnoModelo", "anoModelo"))
    fuel: str = Field(validation_alias=AliasChoices("fuel", "Combustivel", "combustivel"))
    fipe_code: str = Field(validation_alias=AliasChoices("fipe_code", "CodigoFipe", "codigoFipe"))
    reference_month: str = Field(validation_alias=AliasChoices("reference_month", "MesReferencia", "mesReferencia"))
    vehicle_type: int | None = Field(None, validation_alias=AliasChoices("vehicle_type", "TipoVeiculo", "tipoVeiculo"))
    fuel_acronym: str | None = Field(
        None, validation_alias=AliasChoices("fuel_acronym", "SiglaCombustivel", "siglaCombustivel")
    )
