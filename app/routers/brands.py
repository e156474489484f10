import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Response

from ..dependencies import require_admin
from ..schemas.catalog import BrandIn, BrandOut, ImportResult
from ..services.catalog_defaults import STANDARD_BRANDS
from ..services.session_store import SessionStore
from ..supabase_client import BackendClient, BackendError, ErrorKind, get_backend

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/brands", tags=["admin"], dependencies=[Depends(require_admin)])

BRANDS_TABLE = "brands"
DUPLICATE_BRAND = "Brand already exists."


@router.get("", response_model=list[BrandOut])
def list_brands(backend: BackendClient = Depends(get_backend)):
    response = backend.execute(backend.table(BRANDS_TABLE).select("*").order("name"))
    return response.data or []


@router.post("", response_model=BrandOut, status_code=201)
def create_brand(
    payload: BrandIn,
    store: SessionStore = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    try:
        response = backend.execute(backend.table(BRANDS_TABLE).insert({"name": payload.name}))
    except BackendError as exc:
        if exc.kind is ErrorKind.DUPLICATE:
            raise HTTPException(status_code=409, detail=DUPLICATE_BRAND) from exc
        raise

    brand = response.data[0]
    logger.info("Brand %s (%s) created by %s", brand["id"], payload.name, store.user.id)
    return brand


@router.put("/{brand_id}", response_model=BrandOut)
def update_brand(
    brand_id: str,
    payload: BrandIn,
    store: SessionStore = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    updates = {"name": payload.name, "updated_at": datetime.now(timezone.utc).isoformat()}
    try:
        response = backend.execute(backend.table(BRANDS_TABLE).update(updates).eq("id", brand_id))
    except BackendError as exc:
        if exc.kind is ErrorKind.DUPLICATE:
            raise HTTPException(status_code=409, detail=DUPLICATE_BRAND) from exc
        raise

    if not response.data:
        raise HTTPException(status_code=404, detail="Brand not found")
    logger.info("Brand %s renamed to %s by %s", brand_id, payload.name, store.user.id)
    return response.data[0]


@router.delete("/{brand_id}", status_code=204)
def delete_brand(
    brand_id: str,
    store: SessionStore = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    try:
        response = backend.execute(backend.table(BRANDS_TABLE).delete().eq("id", brand_id))
    except BackendError as exc:
        if exc.kind is ErrorKind.FOREIGN_KEY:
            raise HTTPException(
                status_code=409, detail="Could not delete the brand. Check that nothing still depends on it."
            ) from exc
        raise

    if not response.data:
        raise HTTPException(status_code=404, detail="Brand not found")
    logger.info("Brand %s deleted by %s", brand_id, store.user.id)
    return Response(status_code=204)


@router.post("/import-standard", response_model=ImportResult)
def import_standard_brands(backend: BackendClient = Depends(get_backend)):
    existing = backend.execute(backend.table(BRANDS_TABLE).select("name")).data or []
    existing_names = {row["name"] for row in existing}
    new_brands = [{"name": name} for name in STANDARD_BRANDS if name not in existing_names]

    if not new_brands:
        return ImportResult(imported=0, message="All standard brands are already registered.")

    response = backend.execute(backend.table(BRANDS_TABLE).insert(new_brands))
    imported = len(response.data or [])
    logger.info("Imported %d standard brands", imported)
    return ImportResult(imported=imported, message=f"Import finished. {imported} brands added.")
