"""Sync - polling loops that keep order and dashboard views fresh."""

from apps.client.sync.poller import SyncPoller
from apps.client.sync.views import (
    CustomerOrderSync,
    OrderCollection,
    StaffDashboardSync,
)

__all__ = [
    "CustomerOrderSync",
    "OrderCollection",
    "StaffDashboardSync",
    "SyncPoller",
]
