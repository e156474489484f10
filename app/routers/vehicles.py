import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from ..dependencies import require_session
from ..schemas.vehicle import VehicleCreate, VehicleOut
from ..services.session_store import SessionStore
from ..supabase_client import BackendClient, BackendError, ErrorKind, get_backend

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vehicles", tags=["vehicles"])

VEHICLES_TABLE = "vehicles"


def list_user_vehicles(backend: BackendClient, user_id: str) -> list[dict]:
    response = backend.execute(
        backend.table(VEHICLES_TABLE)
        .select("*")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
    )
    return response.data or []


@router.get("", response_model=list[VehicleOut])
def list_vehicles(
    store: SessionStore = Depends(require_session),
    backend: BackendClient = Depends(get_backend),
):
    return list_user_vehicles(backend, store.user.id)


@router.post("", response_model=VehicleOut, status_code=201)
def create_vehicle(
    payload: VehicleCreate,
    store: SessionStore = Depends(require_session),
    backend: BackendClient = Depends(get_backend),
):
    """Add-vehicle form submission. The owner is always the signed-in user."""
    vehicle_data = {
        "user_id": store.user.id,
        "brand": payload.brand,
        "model": payload.model,
        "brand_code": payload.brand_code,
        "model_code": payload.model_code,
        "plate": payload.plate,
        "year": payload.year,
        "mileage": payload.mileage,
        "color": payload.color,
        "vin": payload.vin,
    }
    try:
        response = backend.execute(backend.table(VEHICLES_TABLE).insert(vehicle_data))
    except BackendError as exc:
        logger.error("Failed to register vehicle for %s: %s", store.user.id, exc.message)
        if exc.kind is ErrorKind.DUPLICATE:
            raise HTTPException(status_code=409, detail="A vehicle with this plate is already registered.") from exc
        if exc.is_connectivity:
            raise HTTPException(status_code=exc.http_status, detail=exc.message) from exc
        raise HTTPException(status_code=400, detail="Could not register the vehicle. Please try again.") from exc

    if not response.data:
        raise HTTPException(status_code=400, detail="Could not register the vehicle. Please try again.")
    return response.data[0]


@router.get("/{vehicle_id}", response_model=VehicleOut)
def get_vehicle(
    vehicle_id: str,
    store: SessionStore = Depends(require_session),
    backend: BackendClient = Depends(get_backend),
):
    response = backend.execute(
        backend.table(VEHICLES_TABLE).select("*").eq("id", vehicle_id).eq("user_id", store.user.id)
    )
    if not response.data:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return response.data[0]


@router.delete("/{vehicle_id}", status_code=204)
def delete_vehicle(
    vehicle_id: str,
    store: SessionStore = Depends(require_session),
    backend: BackendClient = Depends(get_backend),
):
    response = backend.execute(
        backend.table(VEHICLES_TABLE).delete().eq("id", vehicle_id).eq("user_id", store.user.id)
    )
    if not response.data:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return Response(status_code=204)
