from fastapi import APIRouter, Depends

from ..dependencies import require_admin
from ..schemas.admin import AdminSummary
from ..services.session_store import PROFILES_TABLE
from ..supabase_client import BackendClient, get_backend

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _count(backend: BackendClient, table: str, **filters) -> int:
    query = backend.table(table).select("id", count="exact")
    for column, value in filters.items():
        query = query.eq(column, value)
    response = backend.execute(query)
    if response.count is not None:
        return response.count
    return len(response.data or [])


@router.get("/summary", response_model=AdminSummary)
def get_admin_summary(backend: BackendClient = Depends(get_backend)):
    return AdminSummary(
        total_users=_count(backend, PROFILES_TABLE),
        total_admins=_count(backend, PROFILES_TABLE, role="admin"),
        total_vehicles=_count(backend, "vehicles"),
        total_brands=_count(backend, "brands"),
        total_models=_count(backend, "models"),
    )
