"""Public analysis module contracts."""

from services.modules.types import (
    CheckReport,
    Issue,
    ModuleDetails,
    ModuleId,
    ModuleResult,
)

__all__ = [
    "CheckReport",
    "Issue",
    "ModuleDetails",
    "ModuleId",
    "ModuleResult",
]
