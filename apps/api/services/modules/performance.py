"""Page performance module.

Lab metrics (for example from a Lighthouse run performed elsewhere) can be
passed through the audit options as ``{"performance": {"lab_metrics": {...}}}``
with values in milliseconds, CLS unitless. Without them the module estimates
what it can from the fetch itself: server response time, transfer size and
render-blocking resources.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from analysis.text import parse_html
from services.fetcher import FetchedPage
from services.modules.base import AuditContext, BaseAuditModule
from services.modules.types import CoreWebVitals, ModuleId, ModuleResult, PerformanceDetails, VitalMetric
from services.scoring import clamp_score, weighted_average

# metric -> (good threshold, poor threshold, unit)
VITAL_THRESHOLDS: Dict[str, Tuple[float, float, str]] = {
    "lcp": (2500.0, 4000.0, "ms"),
    "fid": (100.0, 300.0, "ms"),
    "cls": (0.1, 0.25, ""),
    "ttfb": (800.0, 1800.0, "ms"),
    "inp": (200.0, 500.0, "ms"),
}
VITAL_WEIGHTS: Dict[str, float] = {"lcp": 2.5, "fid": 1.5, "cls": 2.5, "ttfb": 1.0, "inp": 1.5}
DIAGNOSTICS_WEIGHT = 1.5

HEAVY_PAGE_BYTES = 2 * 1024 * 1024
MANY_REQUESTS = 80
LARGE_DOM_ELEMENTS = 1500
BLOCKING_RESOURCE_COST_MS = 250.0
BYTES_PER_MS = 200.0  # ~1.6 Mbit/s effective throughput


def vital_score(metric: str, value: float) -> int:
    """100 at or under the good threshold, 50 at the poor threshold, 0 at twice poor."""
    good, poor, _ = VITAL_THRESHOLDS[metric]
    if value <= good:
        return 100
    if value <= poor:
        return clamp_score(100 - 50 * (value - good) / (poor - good))
    return clamp_score(50 - 50 * (value - poor) / poor)


def _vital(metric: str, value: Optional[float]) -> Optional[VitalMetric]:
    if value is None:
        return None
    unit = VITAL_THRESHOLDS[metric][2]
    return VitalMetric(value=round(float(value), 3), unit=unit, score=vital_score(metric, float(value)))


def _page_resources(html: str) -> Dict[str, int]:
    soup = parse_html(html)
    head = soup.head or soup
    blocking_scripts = [
        tag for tag in head.find_all("script", src=True)
        if not tag.has_attr("async") and not tag.has_attr("defer") and tag.get("type") != "module"
    ]
    blocking_styles = [
        tag for tag in head.find_all("link", rel="stylesheet")
        if (tag.get("media") or "all") in ("all", "screen")
    ]
    return {
        "scripts": len(soup.find_all("script", src=True)),
        "stylesheets": len(soup.find_all("link", rel="stylesheet")),
        "images": len(soup.find_all("img")),
        "iframes": len(soup.find_all("iframe")),
        "render_blocking": len(blocking_scripts) + len(blocking_styles),
        "dom_elements": len(soup.find_all(True)),
        "lazy_images": len(soup.find_all("img", attrs={"loading": "lazy"})),
    }


class PerformanceModule(BaseAuditModule):
    module_id = ModuleId.PERFORMANCE
    label = "Performance"
    progress_message = "Analyzing performance..."

    async def run(self, context: AuditContext) -> ModuleResult:
        page = await context.page()
        lab = context.option(self.module_id, "lab_metrics") or {}
        return await asyncio.to_thread(self.evaluate, page, lab)

    def evaluate(self, page: FetchedPage, lab_metrics: Optional[Dict[str, Any]] = None) -> ModuleResult:
        lab = {key: float(value) for key, value in (lab_metrics or {}).items() if value is not None}
        resources = _page_resources(page.html)
        requests = 1 + resources["scripts"] + resources["stylesheets"] + resources["images"] + resources["iframes"]

        ttfb = lab.get("ttfb", page.elapsed_ms)
        if "lcp" in lab:
            lcp = lab["lcp"]
        else:
            lcp = ttfb + resources["render_blocking"] * BLOCKING_RESOURCE_COST_MS + page.content_bytes / BYTES_PER_MS
        vitals = CoreWebVitals(
            lcp=_vital("lcp", lcp),
            fid=_vital("fid", lab.get("fid")),
            cls=_vital("cls", lab.get("cls")),
            ttfb=_vital("ttfb", ttfb),
            inp=_vital("inp", lab.get("inp")),
        )

        opportunities: List[str] = []
        diagnostics: List[str] = []
        diagnostics_score = 100
        if resources["render_blocking"]:
            opportunities.append(
                f"Eliminate {resources['render_blocking']} render-blocking resource(s) in the document head"
            )
            diagnostics_score -= min(30, resources["render_blocking"] * 5)
        if page.content_bytes > HEAVY_PAGE_BYTES:
            opportunities.append("Reduce HTML payload size; the document exceeds 2 MB")
            diagnostics_score -= 20
        encoding = (page.header("content-encoding") or "").lower()
        if page.content_bytes > 10 * 1024 and not encoding:
            opportunities.append("Enable text compression (gzip or brotli) for HTML responses")
            diagnostics_score -= 10
        unlazy_images = resources["images"] - resources["lazy_images"]
        if unlazy_images > 10:
            opportunities.append(f"Lazy-load offscreen images ({unlazy_images} images load eagerly)")
            diagnostics_score -= 10
        if requests > MANY_REQUESTS:
            diagnostics.append(f"High number of referenced resources ({requests})")
            diagnostics_score -= 10
        if resources["dom_elements"] > LARGE_DOM_ELEMENTS:
            diagnostics.append(f"Excessive DOM size ({resources['dom_elements']} elements)")
            diagnostics_score -= 15

        pairs = [
            (getattr(vitals, name).score, weight)
            for name, weight in VITAL_WEIGHTS.items()
            if getattr(vitals, name) is not None
        ]
        pairs.append((clamp_score(diagnostics_score), DIAGNOSTICS_WEIGHT))
        score = lab["score"] if "score" in lab else weighted_average(pairs)

        issues = []
        labels = {"lcp": "Largest Contentful Paint", "fid": "First Input Delay", "cls": "Cumulative Layout Shift",
                  "ttfb": "Time to First Byte", "inp": "Interaction to Next Paint"}
        for name, label in labels.items():
            vital = getattr(vitals, name)
            if vital is not None and vital.score < 50:
                issues.append(self.issue(f"Slow {label} ({vital.value:g}{vital.unit}) hurts page performance"))
            elif vital is not None and vital.score < 90:
                issues.append(self.issue(f"{label} needs improvement ({vital.value:g}{vital.unit})", "minor"))
        issues.extend(self.issue(item, "minor") for item in opportunities + diagnostics)

        details = PerformanceDetails(
            source="lab" if lab else "estimated",
            core_web_vitals=vitals,
            metrics={
                "ttfb_ms": round(ttfb, 1),
                "transfer_bytes": float(page.content_bytes),
                "requests": float(requests),
                "render_blocking_resources": float(resources["render_blocking"]),
                "dom_elements": float(resources["dom_elements"]),
            },
            opportunities=opportunities,
            diagnostics=diagnostics,
        )
        return self.build_result(score, issues, details)
