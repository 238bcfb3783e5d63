"""Mobile UX module: viewport, touch targets, font sizes and responsiveness."""

from __future__ import annotations

import asyncio
import re
from typing import Dict, List, Optional

from bs4 import BeautifulSoup

from analysis.text import parse_html
from services.fetcher import FetchedPage
from services.modules.base import AuditContext, BaseAuditModule
from services.modules.types import CheckReport, MobileDetails, ModuleId, ModuleResult, ViewportReport
from services.scoring import clamp_score, weighted_average

MIN_TOUCH_TARGET_PX = 44
MIN_FONT_PX = 16
MAX_FIXED_WIDTH_PX = 480

CHECK_WEIGHTS = {
    "viewport": 1.5,
    "touch_targets": 2.0,
    "font_sizes": 1.5,
    "content_width": 1.5,
    "responsive": 2.0,
}

_PX_RE = r"(\d+(?:\.\d+)?)px"
_FONT_SIZE_RE = re.compile(r"font-size\s*:\s*" + _PX_RE, re.IGNORECASE)
_WIDTH_RE = re.compile(r"(?<![-\w])(?:min-)?width\s*:\s*" + _PX_RE, re.IGNORECASE)
_HEIGHT_RE = re.compile(r"(?<![-\w])(?:min-)?height\s*:\s*" + _PX_RE, re.IGNORECASE)
_MEDIA_QUERY_RE = re.compile(r"@media[^{]*\((?:max|min)-width", re.IGNORECASE)

INTERACTIVE_SELECTOR = "a[href], button, input:not([type=hidden]), select, textarea, [role=button]"


def parse_viewport(content: str) -> Dict[str, str]:
    """Split a viewport meta ``content`` attribute into lowercase key/value pairs."""
    directives: Dict[str, str] = {}
    for part in re.split(r"[,;]", content or ""):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        directives[key.strip().lower()] = value.strip().lower()
    return directives


def zoom_disabled(directives: Dict[str, str]) -> bool:
    if directives.get("user-scalable") in ("no", "0"):
        return True
    try:
        return float(directives.get("maximum-scale", "10")) <= 1.0
    except ValueError:
        return False


def analyze_viewport(soup: BeautifulSoup) -> ViewportReport:
    tag = soup.find("meta", attrs={"name": "viewport"})
    content = (tag.get("content") or "").strip() if tag else ""
    if not content:
        return ViewportReport(present=False, issues=["Missing viewport meta tag"], score=0)

    directives = parse_viewport(content)
    issues: List[str] = []
    width_ok = directives.get("width") == "device-width"
    scale_ok = directives.get("initial-scale") in ("1", "1.0")
    if not width_ok:
        issues.append("Viewport meta tag missing width=device-width")
    if not scale_ok:
        issues.append("Viewport meta tag missing initial-scale=1")
    blocked = zoom_disabled(directives)
    if blocked:
        issues.append("Viewport prevents zooming, which harms accessibility")
    configured = width_ok and scale_ok
    return ViewportReport(
        present=True,
        content=content,
        configured=configured,
        zoom_disabled=blocked,
        issues=issues,
        score=100 if configured else 60,
    )


def _stylesheet_text(soup: BeautifulSoup) -> str:
    return "\n".join(style.get_text() for style in soup.find_all("style"))


def analyze_touch_targets(soup: BeautifulSoup) -> CheckReport:
    targets = soup.select(INTERACTIVE_SELECTOR)
    undersized = 0
    for target in targets:
        style = target.get("style") or ""
        sizes = [float(value) for value in _WIDTH_RE.findall(style) + _HEIGHT_RE.findall(style)]
        if sizes and min(sizes) < MIN_TOUCH_TARGET_PX:
            undersized += 1
    issues = []
    if undersized:
        issues.append(
            f"{undersized} interactive elements have touch targets smaller than "
            f"{MIN_TOUCH_TARGET_PX}x{MIN_TOUCH_TARGET_PX} pixels"
        )
    score = (len(targets) - undersized) / len(targets) * 100 if targets else 100
    return CheckReport(score=clamp_score(score), issues=issues, stats={"targets": len(targets), "undersized": undersized})


def analyze_font_sizes(soup: BeautifulSoup) -> CheckReport:
    inline = " ".join(tag.get("style") or "" for tag in soup.find_all(style=True))
    sizes = [float(value) for value in _FONT_SIZE_RE.findall(_stylesheet_text(soup) + " " + inline)]
    small = sum(1 for size in sizes if size < MIN_FONT_PX)
    issues = []
    if small:
        issues.append(f"{small} text elements have font size smaller than {MIN_FONT_PX}px")
    score = (len(sizes) - small) / len(sizes) * 100 if sizes else 100
    return CheckReport(score=clamp_score(score), issues=issues, stats={"declarations": len(sizes), "small": small})


def analyze_content_width(soup: BeautifulSoup) -> CheckReport:
    fixed = 0
    for tag in soup.find_all(style=True):
        style = tag.get("style") or ""
        if "max-width" in style.lower():
            continue
        if any(float(value) > MAX_FIXED_WIDTH_PX for value in _WIDTH_RE.findall(style)):
            fixed += 1
    fixed += sum(1 for tag in soup.find_all(["img", "table", "iframe"], width=True)
                 if str(tag.get("width")).isdigit() and int(tag.get("width")) > MAX_FIXED_WIDTH_PX)
    issues = []
    if fixed:
        issues.append(f"{fixed} elements use fixed widths over {MAX_FIXED_WIDTH_PX}px and may cause horizontal scrolling")
    return CheckReport(score=clamp_score(100 - min(60, fixed * 15)), issues=issues, stats={"fixed_width_elements": fixed})


def analyze_responsive(soup: BeautifulSoup, viewport: ViewportReport) -> CheckReport:
    media_queries = len(_MEDIA_QUERY_RE.findall(_stylesheet_text(soup)))
    media_queries += sum(1 for link in soup.find_all("link", rel="stylesheet") if "width" in (link.get("media") or ""))
    images = soup.find_all("img")
    responsive_images = sum(1 for img in images if img.has_attr("srcset") or img.find_parent("picture"))
    signals = [
        viewport.configured,
        not images or responsive_images > 0,
        media_queries > 0 or viewport.configured,
    ]
    issues = []
    if media_queries == 0:
        issues.append("No media queries detected, site may not be responsive")
    if images and not responsive_images:
        issues.append("Images do not provide srcset or <picture> alternatives for small screens")
    score = sum(signals) / len(signals) * 70 + (30 if media_queries else 0)
    return CheckReport(
        score=clamp_score(score),
        issues=issues,
        stats={"media_queries": media_queries, "responsive_images": responsive_images, "images": len(images)},
    )


class MobileModule(BaseAuditModule):
    module_id = ModuleId.MOBILE
    label = "Mobile"
    progress_message = "Analyzing mobile UX..."

    async def run(self, context: AuditContext) -> ModuleResult:
        page = await context.page()
        result = await asyncio.to_thread(self.evaluate, page)
        if result.details.kind == "mobile":
            context.hints["mobile.viewport_configured"] = result.details.viewport.configured
        return result

    def evaluate(self, page: FetchedPage, soup: Optional[BeautifulSoup] = None) -> ModuleResult:
        soup = soup or parse_html(page.html)
        viewport = analyze_viewport(soup)
        checks = {
            "touch_targets": analyze_touch_targets(soup),
            "font_sizes": analyze_font_sizes(soup),
            "content_width": analyze_content_width(soup),
            "responsive": analyze_responsive(soup, viewport),
        }
        sub_scores = {"viewport": viewport.score, **{name: check.score for name, check in checks.items()}}
        score = weighted_average((sub_scores[name], weight) for name, weight in CHECK_WEIGHTS.items())

        issues = list(viewport.issues)
        for check in checks.values():
            issues.extend(check.issues)
        return self.build_result(score, issues, MobileDetails(viewport=viewport, checks=checks))
