from fastapi import APIRouter, Depends

from ..config import Settings, get_settings
from ..dependencies import require_session
from ..schemas.dashboard import DashboardOut
from ..services import maintenance
from ..services.maintenance import MaintenanceStatus
from ..services.session_store import SessionStore
from ..supabase_client import BackendClient, get_backend
from .vehicles import list_user_vehicles

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def _greeting_name(store: SessionStore) -> str:
    profile = store.profile
    if profile and profile.name:
        return profile.name
    email = (profile.email if profile else "") or store.user.email
    return email.split("@", 1)[0] if email else "User"


@router.get("", response_model=DashboardOut)
def get_dashboard(
    store: SessionStore = Depends(require_session),
    backend: BackendClient = Depends(get_backend),
    settings: Settings = Depends(get_settings),
):
    vehicles = list_user_vehicles(backend, store.user.id)

    schedule = [item for vehicle in vehicles for item in maintenance.schedule_for(vehicle)]
    pending = sum(1 for item in schedule if item.status in (MaintenanceStatus.DUE_SOON, MaintenanceStatus.OVERDUE))
    alerts = sum(1 for item in schedule if item.status is MaintenanceStatus.OVERDUE)

    upcoming = maintenance.upcoming(vehicles, limit=settings.DASHBOARD_UPCOMING_LIMIT)

    return {
        "greeting_name": _greeting_name(store),
        "vehicles": vehicles,
        "stats": {
            "total_vehicles": len(vehicles),
            "pending_maintenance": pending,
            "alerts": alerts,
        },
        "upcoming_maintenance": [
            {
                "vehicle_id": item.vehicle_id,
                "vehicle": item.vehicle,
                "service": item.service,
                "due_at_km": item.due_at_km,
                "remaining_km": item.remaining_km,
                "progress": item.progress,
                "status": item.status.value,
            }
            for item in upcoming
        ],
    }
