import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from ..dependencies import require_admin
from ..schemas.catalog import ImportResult, ModelIn, ModelOut
from ..services.catalog_defaults import STANDARD_MODELS
from ..services.session_store import SessionStore
from ..supabase_client import BackendClient, BackendError, ErrorKind, get_backend

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/models", tags=["admin"], dependencies=[Depends(require_admin)])

MODELS_TABLE = "models"
DUPLICATE_MODEL = "Model already exists for this brand."


def _flatten_brand_name(models: list[dict]) -> list[dict]:
    """Extract the brand name from the nested brands object."""
    for item in models:
        brand = item.pop("brands", None)
        item["brand_name"] = brand.get("name") if brand else "Unknown brand"
    return models


def _raise_for_write(exc: BackendError) -> None:
    if exc.kind is ErrorKind.DUPLICATE:
        raise HTTPException(status_code=409, detail=DUPLICATE_MODEL) from exc
    if exc.kind is ErrorKind.FOREIGN_KEY:
        raise HTTPException(status_code=400, detail="The selected brand does not exist.") from exc
    raise exc


@router.get("", response_model=list[ModelOut])
def list_models(
    brand_id: str | None = Query(None, description="Only models of this brand"),
    backend: BackendClient = Depends(get_backend),
):
    query = backend.table(MODELS_TABLE).select("id, brand_id, name, brands(name)").order("name")
    if brand_id:
        query = query.eq("brand_id", brand_id)
    response = backend.execute(query)
    return _flatten_brand_name(response.data or [])


@router.post("", response_model=ModelOut, status_code=201)
def create_model(
    payload: ModelIn,
    store: SessionStore = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    try:
        response = backend.execute(
            backend.table(MODELS_TABLE).insert({"name": payload.name, "brand_id": payload.brand_id})
        )
    except BackendError as exc:
        _raise_for_write(exc)

    model = response.data[0]
    logger.info("Model %s (%s) created by %s", model["id"], payload.name, store.user.id)
    return model


@router.put("/{model_id}", response_model=ModelOut)
def update_model(
    model_id: str,
    payload: ModelIn,
    store: SessionStore = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    updates = {
        "name": payload.name,
        "brand_id": payload.brand_id,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    try:
        response = backend.execute(backend.table(MODELS_TABLE).update(updates).eq("id", model_id))
    except BackendError as exc:
        _raise_for_write(exc)

    if not response.data:
        raise HTTPException(status_code=404, detail="Model not found")
    logger.info("Model %s updated by %s", model_id, store.user.id)
    return response.data[0]


@router.delete("/{model_id}", status_code=204)
def delete_model(
    model_id: str,
    store: SessionStore = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    try:
        response = backend.execute(backend.table(MODELS_TABLE).delete().eq("id", model_id))
    except BackendError as exc:
        if exc.kind is ErrorKind.FOREIGN_KEY:
            raise HTTPException(
                status_code=409, detail="Could not delete the model. Check that nothing still depends on it."
            ) from exc
        raise

    if not response.data:
        raise HTTPException(status_code=404, detail="Model not found")
    logger.info("Model %s deleted by %s", model_id, store.user.id)
    return Response(status_code=204)


@router.post("/import-standard", response_model=ImportResult)
def import_standard_models(backend: BackendClient = Depends(get_backend)):
    """Adds the standard models of every registered brand that has a standard list."""
    brands = backend.execute(backend.table("brands").select("id, name")).data or []
    imported = 0
    failed: list[str] = []

    for brand in brands:
        standard = STANDARD_MODELS.get(brand["name"])
        if not standard:
            continue
        try:
            existing = backend.execute(
                backend.table(MODELS_TABLE).select("name").eq("brand_id", brand["id"])
            ).data or []
            existing_names = {row["name"] for row in existing}
            new_models = [{"brand_id": brand["id"], "name": name} for name in standard if name not in existing_names]
            if not new_models:
                continue
            response = backend.execute(backend.table(MODELS_TABLE).insert(new_models))
        except BackendError as exc:
            logger.error("Failed to import models for %s: %s", brand["name"], exc.message)
            failed.append(brand["name"])
            continue
        imported += len(response.data or [])

    message = f"Import finished. {imported} models added."
    if failed:
        message += f" {len(failed)} brands failed."
    logger.info("Imported %d standard models; failed brands: %s", imported, failed or "none")
    return ImportResult(imported=imported, failed_brands=failed, message=message)
