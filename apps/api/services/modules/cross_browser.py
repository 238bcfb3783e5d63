"""Cross-browser compatibility heuristics over the served markup and inline CSS/JS."""

from __future__ import annotations

import asyncio
import re
from typing import Dict, List, Optional

from bs4 import BeautifulSoup, Comment, Doctype

from analysis.text import parse_html
from services.fetcher import FetchedPage
from services.modules.base import AuditContext, BaseAuditModule
from services.modules.mobile import analyze_viewport
from services.modules.types import CheckReport, CrossBrowserDetails, ModuleId, ModuleResult
from services.scoring import clamp_score, weighted_average

CHECK_WEIGHTS = {"browsers": 2.5, "visual": 2.0, "features": 2.5, "responsive": 3.0}
PER_FINDING_PENALTY = 10

LEGACY_APIS = {
    "document.all": re.compile(r"\bdocument\.all\b"),
    "attachEvent": re.compile(r"\battachEvent\s*\("),
    "ActiveXObject": re.compile(r"\bActiveXObject\b"),
    "showModalDialog": re.compile(r"\bshowModalDialog\s*\("),
    "document.write": re.compile(r"\bdocument\.write(?:ln)?\s*\("),
}
DEPRECATED_TAGS = ("center", "font", "marquee", "blink", "frameset", "big", "strike", "tt")

POLYFILL_PATTERNS = {
    "polyfill.io": re.compile(r"polyfill\.io", re.IGNORECASE),
    "core-js": re.compile(r"core-js", re.IGNORECASE),
    "babel-polyfill": re.compile(r"babel-polyfill|@babel/polyfill", re.IGNORECASE),
    "html5shiv": re.compile(r"html5shiv", re.IGNORECASE),
    "respond.js": re.compile(r"respond(?:\.min)?\.js", re.IGNORECASE),
}

FEATURE_PATTERNS = {
    "Flexbox": re.compile(r"display\s*:\s*(?:inline-)?flex", re.IGNORECASE),
    "Grid": re.compile(r"display\s*:\s*(?:inline-)?grid", re.IGNORECASE),
    "CSS Variables": re.compile(r"var\(\s*--", re.IGNORECASE),
    "Container Queries": re.compile(r"@container\b", re.IGNORECASE),
    ":has() selector": re.compile(r":has\(", re.IGNORECASE),
}

_VENDOR_PROPERTY_RE = re.compile(r"(?<![\w-])-(webkit|moz|ms|o)-([a-z-]+)\s*:", re.IGNORECASE)
_PROPERTY_RE = re.compile(r"(?<![\w-])([a-z][a-z-]*)\s*:", re.IGNORECASE)


def inline_css(soup: BeautifulSoup) -> str:
    blocks = [style.get_text() for style in soup.find_all("style")]
    blocks.extend(tag["style"] for tag in soup.find_all(style=True))
    return "\n".join(blocks)


def inline_scripts(soup: BeautifulSoup) -> str:
    return "\n".join(script.get_text() for script in soup.find_all("script") if not script.get("src"))


def _has_html5_doctype(soup: BeautifulSoup) -> bool:
    for item in soup.contents:
        if isinstance(item, Doctype):
            return item.strip().lower() == "html"
    return False


def analyze_browser_support(soup: BeautifulSoup, scripts: str) -> CheckReport:
    issues: List[str] = []
    if not _has_html5_doctype(soup):
        issues.append("Missing HTML5 doctype, browsers may render in quirks mode")
    legacy = [name for name, pattern in LEGACY_APIS.items() if pattern.search(scripts)]
    for name in legacy:
        issues.append(f"Uses legacy browser API {name}")
    conditional = [
        comment for comment in soup.find_all(string=lambda value: isinstance(value, Comment))
        if "[if " in comment.lower()
    ]
    if conditional:
        issues.append("Uses Internet Explorer conditional comments")
    return CheckReport(
        score=clamp_score(100 - PER_FINDING_PENALTY * len(issues)),
        issues=issues,
        stats={"legacy_apis": legacy, "conditional_comments": len(conditional)},
    )


def unprefixed_gaps(css: str) -> List[str]:
    """Vendor-prefixed properties whose standard form never appears."""
    standard = {match.group(1).lower() for match in _PROPERTY_RE.finditer(css) if not match.group(1).startswith("-")}
    missing = {
        match.group(2).lower()
        for match in _VENDOR_PROPERTY_RE.finditer(css)
        if match.group(2).lower() not in standard
    }
    return sorted(missing)


def analyze_visual_consistency(soup: BeautifulSoup, css: str) -> CheckReport:
    issues: List[str] = []
    gaps = unprefixed_gaps(css)
    for prop in gaps:
        issues.append(f"Vendor-prefixed {prop} without a standard fallback")
    deprecated = sorted({tag.name for tag in soup.find_all(DEPRECATED_TAGS)})
    for name in deprecated:
        issues.append(f"Deprecated <{name}> element renders inconsistently across browsers")
    return CheckReport(
        score=clamp_score(100 - PER_FINDING_PENALTY * len(issues)),
        issues=issues,
        stats={"prefix_only_properties": gaps, "deprecated_elements": deprecated},
    )


def analyze_feature_compatibility(soup: BeautifulSoup, css: str) -> CheckReport:
    features = [name for name, pattern in FEATURE_PATTERNS.items() if pattern.search(css)]
    script_sources = " ".join(script.get("src") or "" for script in soup.find_all("script"))
    polyfills = [name for name, pattern in POLYFILL_PATTERNS.items() if pattern.search(script_sources)]

    issues: List[str] = []
    module_scripts = soup.find_all("script", attrs={"type": "module"})
    if module_scripts:
        features.append("ES Modules")
        if not soup.find("script", attrs={"nomodule": True}):
            issues.append("ES module scripts have no nomodule fallback for older browsers")

    webp_images = [img for img in soup.find_all("img") if (img.get("src") or "").lower().endswith(".webp")]
    if webp_images:
        features.append("WebP")
        unwrapped = [img for img in webp_images if img.find_parent("picture") is None]
        if unwrapped:
            issues.append(f"{len(unwrapped)} WebP image{'s' if len(unwrapped) != 1 else ''} without a <picture> fallback")

    if "polyfill.io" in polyfills:
        issues.append("Loads polyfills from polyfill.io, which is no longer a trusted CDN")

    for name in (":has() selector", "Container Queries"):
        if name in features:
            issues.append(f"{name} is not supported by older browsers")

    return CheckReport(
        score=clamp_score(100 - PER_FINDING_PENALTY * len(issues)),
        issues=issues,
        stats={"features": features, "polyfills": polyfills},
    )


def analyze_responsive_consistency(css: str, viewport_configured: bool) -> CheckReport:
    has_media_queries = "@media" in css.lower()
    issues: List[str] = []
    if not viewport_configured:
        issues.append("Viewport is not configured, layouts will differ between desktop and mobile browsers")
    if not has_media_queries:
        issues.append("No media queries found for adapting layout across screen sizes")
    if viewport_configured and has_media_queries:
        score = 100
    elif viewport_configured:
        score = 80
    elif has_media_queries:
        score = 60
    else:
        score = 30
    return CheckReport(
        score=score,
        issues=issues,
        stats={"viewport_configured": viewport_configured, "media_queries": has_media_queries},
    )


class CrossBrowserModule(BaseAuditModule):
    module_id = ModuleId.CROSS_BROWSER
    label = "Cross-browser"
    progress_message = "Checking cross-browser compatibility..."

    async def run(self, context: AuditContext) -> ModuleResult:
        page = await context.page()
        viewport_configured = context.hints.get("mobile.viewport_configured")
        return await asyncio.to_thread(self.evaluate, page, viewport_configured)

    def evaluate(self, page: FetchedPage, viewport_configured: Optional[bool] = None) -> ModuleResult:
        soup = parse_html(page.html)
        if viewport_configured is None:
            viewport_configured = analyze_viewport(soup).configured
        css = inline_css(soup)
        checks: Dict[str, CheckReport] = {
            "browsers": analyze_browser_support(soup, inline_scripts(soup)),
            "visual": analyze_visual_consistency(soup, css),
            "features": analyze_feature_compatibility(soup, css),
            "responsive": analyze_responsive_consistency(css, viewport_configured),
        }
        score = weighted_average((checks[name].score, weight) for name, weight in CHECK_WEIGHTS.items())
        issues: List[str] = []
        for check in checks.values():
            issues.extend(check.issues)
        details = CrossBrowserDetails(checks=checks, features=checks["features"].stats["features"])
        return self.build_result(score, issues, details)
