"""Module adapter base: one uniform, failure-isolated analyze() per module."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Union

from config import settings
from services.fetcher import FetchedPage, TargetFetcher
from services.modules.types import FailedDetails, Issue, ModuleDetails, ModuleId, ModuleResult
from services.records import AuditRequest
from services.scoring import clamp_score

logger = logging.getLogger(__name__)


class AuditContext:
    """Per-audit state shared by the modules of one run.

    The page is fetched lazily and at most once; a fetch failure is replayed to
    every later module that asks for the page so each fails on its own.
    ``hints`` carries outputs one module leaves for modules that run after it.
    """

    def __init__(self, request: AuditRequest, fetcher: Optional[TargetFetcher] = None):
        self.request = request
        self.fetcher = fetcher or TargetFetcher()
        self.hints: Dict[str, Any] = {}
        self._page: Optional[FetchedPage] = None
        self._page_error: Optional[Exception] = None

    @property
    def target(self) -> str:
        return self.request.target

    def option(self, module: ModuleId, key: str, default: Any = None) -> Any:
        module_options = self.request.options.get(module.value) or {}
        if isinstance(module_options, dict):
            return module_options.get(key, default)
        return default

    async def page(self) -> FetchedPage:
        if self._page is not None:
            return self._page
        if self._page_error is not None:
            raise self._page_error
        try:
            self._page = await self.fetcher.fetch(self.target)
        except Exception as exc:
            self._page_error = exc
            raise
        return self._page


IssueInput = Union[str, Issue]


class BaseAuditModule(ABC):
    module_id: ModuleId
    label: str
    progress_message: str

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds or settings.MODULE_TIMEOUT_SECONDS

    @abstractmethod
    async def run(self, context: AuditContext) -> ModuleResult:
        raise NotImplementedError

    async def analyze(self, context: AuditContext) -> ModuleResult:
        """Run the module; never raises, failures come back as a zero-score result."""
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(self.run(context), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("%s module timed out after %ss for %s", self.label, self.timeout_seconds, context.target)
            return self.failed_result(
                TimeoutError(f"timed out after {self.timeout_seconds:g}s"),
                _elapsed_ms(started),
            )
        except Exception as exc:
            logger.exception("%s module failed for %s", self.label, context.target)
            return self.failed_result(exc, _elapsed_ms(started))
        return result.model_copy(update={"duration_ms": _elapsed_ms(started)})

    def issue(self, description: str, severity: Optional[str] = None) -> Issue:
        return Issue(description=description, severity=severity, category=self.label)

    def build_result(self, score: float, issues: Iterable[IssueInput], details: ModuleDetails) -> ModuleResult:
        normalized: List[Issue] = [
            item if isinstance(item, Issue) else self.issue(item) for item in issues
        ]
        return ModuleResult(
            module=self.module_id,
            score=clamp_score(score),
            issues=normalized,
            details=details,
            status="ok",
        )

    def failed_result(self, exc: BaseException, duration_ms: int = 0) -> ModuleResult:
        message = str(exc) or exc.__class__.__name__
        return ModuleResult(
            module=self.module_id,
            score=0,
            issues=[self.issue(f"{self.label} analysis failed: {message}", "major")],
            details=FailedDetails(error_type=exc.__class__.__name__, error=message),
            status="failed",
            duration_ms=duration_ms,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
