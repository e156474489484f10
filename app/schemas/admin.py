from pydantic import BaseModel


class AdminSummary(BaseModel):
    total_users: int
    total_admins: int
    total_vehicles: int
    total_brands: int
    total_models: int
