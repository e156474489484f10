"""
Mileage-based maintenance schedule for the dashboard.

Each service has a fixed interval in km; progress is how much of the current
interval the odometer has covered since the last multiple of that interval.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

DUE_SOON_PERCENT = 80
OVERDUE_PERCENT = 95
ATTENTION_PERCENT = 60


class MaintenanceStatus(str, Enum):
    OK = "ok"
    ATTENTION = "attention"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class ServiceInterval:
    service: str
    interval_km: int


STANDARD_INTERVALS: tuple[ServiceInterval, ...] = (
    ServiceInterval("Oil change", 10_000),
    ServiceInterval("Tire rotation", 10_000),
    ServiceInterval("Air filter replacement", 15_000),
    ServiceInterval("Brake inspection", 20_000),
    ServiceInterval("Timing belt replacement", 60_000),
)


@dataclass(frozen=True)
class MaintenanceItem:
    vehicle_id: str
    vehicle: str
    service: str
    due_at_km: int
    remaining_km: int
    progress: int
    status: MaintenanceStatus


def status_for(progress: int) -> MaintenanceStatus:
    if progress >= OVERDUE_PERCENT:
        return MaintenanceStatus.OVERDUE
    if progress >= DUE_SOON_PERCENT:
        return MaintenanceStatus.DUE_SOON
    if progress > ATTENTION_PERCENT:
        return MaintenanceStatus.ATTENTION
    return MaintenanceStatus.OK


def schedule_for(vehicle: dict, intervals: Iterable[ServiceInterval] = STANDARD_INTERVALS) -> list[MaintenanceItem]:
    mileage = max(int(vehicle.get("mileage") or 0), 0)
    label = f"{vehicle.get('brand', '')} {vehicle.get('model', '')}".strip() or vehicle.get("plate", "")
    items = []
    for interval in intervals:
        covered = mileage % interval.interval_km
        due_at = mileage - covered + interval.interval_km
        progress = int(covered * 100 / interval.interval_km)
        items.append(
            MaintenanceItem(
                vehicle_id=str(vehicle.get("id", "")),
                vehicle=label,
                service=interval.service,
                due_at_km=due_at,
                remaining_km=due_at - mileage,
                progress=progress,
                status=status_for(progress),
            )
        )
    return items


def upcoming(vehicles: Iterable[dict], limit: int = 5) -> list[MaintenanceItem]:
    """Most urgent items across all vehicles, most advanced first."""
    items = [item for vehicle in vehicles for item in schedule_for(vehicle)]
    items.sort(key=lambda item: (-item.progress, item.remaining_km))
    return items[:limit]
