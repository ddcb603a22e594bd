"""Cart - totals and the per-session cart."""

from apps.client.cart.calculator import calculate_totals, round_half_up
from apps.client.cart.session import (
    CartSession,
    FileSessionStore,
    MemorySessionStore,
    SessionStore,
)

__all__ = [
    "CartSession",
    "FileSessionStore",
    "MemorySessionStore",
    "SessionStore",
    "calculate_totals",
    "round_half_up",
]
