"""Fixed, ordered module registry resolved once at import time."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple, Type

from services.modules.accessibility import AccessibilityModule
from services.modules.analytics import AnalyticsModule
from services.modules.base import BaseAuditModule
from services.modules.chatbot import ChatbotModule
from services.modules.content import ContentModule
from services.modules.cross_browser import CrossBrowserModule
from services.modules.mobile import MobileModule
from services.modules.performance import PerformanceModule
from services.modules.security import SecurityModule
from services.modules.seo import SeoModule
from services.modules.types import ModuleId

# Mobile runs before cross_browser so its viewport hint is available.
MODULE_CLASSES: Tuple[Type[BaseAuditModule], ...] = (
    SeoModule,
    PerformanceModule,
    AccessibilityModule,
    SecurityModule,
    MobileModule,
    ContentModule,
    CrossBrowserModule,
    AnalyticsModule,
    ChatbotModule,
)

MODULE_ORDER: Tuple[ModuleId, ...] = tuple(cls.module_id for cls in MODULE_CLASSES)


class ModuleRegistry:
    def __init__(self, modules: Iterable[BaseAuditModule]):
        self._modules: Dict[ModuleId, BaseAuditModule] = {}
        for module in modules:
            if module.module_id in self._modules:
                raise ValueError(f"Duplicate module registered: {module.module_id.value}")
            self._modules[module.module_id] = module

    def __contains__(self, module_id: ModuleId) -> bool:
        return module_id in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def get(self, module_id: ModuleId) -> BaseAuditModule:
        try:
            return self._modules[module_id]
        except KeyError:
            raise KeyError(f"Unknown audit module: {module_id}") from None

    def ordered(self, enabled: Optional[Iterable[ModuleId]] = None) -> List[BaseAuditModule]:
        """Registered modules in registry order, restricted to ``enabled`` when given."""
        if enabled is None:
            return list(self._modules.values())
        wanted = set(enabled)
        return [module for module_id, module in self._modules.items() if module_id in wanted]


def build_default_registry() -> ModuleRegistry:
    return ModuleRegistry(cls() for cls in MODULE_CLASSES)


default_registry = build_default_registry()


def get_module(module_id: ModuleId) -> BaseAuditModule:
    return default_registry.get(module_id)
