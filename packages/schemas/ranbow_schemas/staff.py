"""Staff dashboard schemas - aggregate counts polled by the staff views."""

from datetime import datetime
from typing import Any

from pydantic import Field, field_validator, model_validator

from ranbow_schemas.orders import WireModel


class StaffOverview(WireModel):
    """Response of GET /staff/overview."""

    pending_orders: int = 0
    preparing_orders: int = 0
    ready_orders: int = 0
    completed_today: int = 0
    revenue_today: float = 0
    last_updated: datetime | None = None

    # Everything the backend sent, including fields this client ignores.
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _keep_raw(cls, data: Any) -> Any:
        if isinstance(data, dict) and "raw" not in data:
            return {**data, "raw": dict(data)}
        return data


class StaffDashboard(WireModel):
    """Response of GET /staff/dashboard/{staffId}."""

    staff_id: str
    active_orders: int = 0
    completed_today: int = 0
    average_prep_minutes: float | None = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _keep_raw(cls, data: Any) -> Any:
        if isinstance(data, dict) and "raw" not in data:
            return {**data, "raw": dict(data)}
        return data

    @field_validator("staff_id", mode="before")
    @classmethod
    def _coerce_staff_id(cls, value: Any) -> str:
        return str(value)
