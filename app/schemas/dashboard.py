from pydantic import BaseModel

from .vehicle import VehicleOut


class MaintenanceOut(BaseModel):
    vehicle_id: str
    vehicle: str
    service: str
    due_at_km: int
    remaining_km: int
    progress: int
    status: str


class DashboardStats(BaseModel):
    total_vehicles: int
    pending_maintenance: int
    alerts: int


class DashboardOut(BaseModel):
    greeting_name: str
    vehicles: list[VehicleOut]
    stats: DashboardStats
    upcoming_maintenance: list[MaintenanceOut]
