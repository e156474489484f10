from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import get_fipe_client
from ..schemas.reference import ReferenceItem, VehiclePrice
from ..services.fipe import FipeClient, ReferenceDataError

router = APIRouter(prefix="/reference", tags=["reference"])


@router.get("/brands", response_model=list[ReferenceItem])
def list_brands(fipe: FipeClient = Depends(get_fipe_client)):
    try:
        return fipe.list_brands()
    except ReferenceDataError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.get("/brands/{brand_code}/models", response_model=list[ReferenceItem])
def list_models(brand_code: str, fipe: FipeClient = Depends(get_fipe_client)):
    try:
        return fipe.list_models(brand_code)
    except ReferenceDataError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.get("/brands/{brand_code}/models/{model_code}/years", response_model=list[ReferenceItem])
def list_years(brand_code: str, model_code: str, fipe: FipeClient = Depends(get_fipe_client)):
    try:
        return fipe.list_years(brand_code, model_code)
    except ReferenceDataError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.get("/brands/{brand_code}/models/{model_code}/years/{year_code}", response_model=VehiclePrice)
def get_vehicle_price(brand_code: str, model_code: str, year_code: str, fipe: FipeClient = Depends(get_fipe_client)):
    try:
        return fipe.get_vehicle(brand_code, model_code, year_code)
    except ReferenceDataError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
