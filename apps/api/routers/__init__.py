"""Routers package."""

from . import (
    health,
    audit,
    notifications,
)
