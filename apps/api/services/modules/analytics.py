"""Analytics integration module: trackers, data layer, event tracking and consent."""

from __future__ import annotations

import asyncio
import re
from typing import Dict, List, Tuple

from bs4 import BeautifulSoup

from analysis.text import element_text, parse_html
from services.fetcher import FetchedPage
from services.modules.base import AuditContext, BaseAuditModule
from services.modules.types import AnalyticsDetails, CheckReport, ModuleId, ModuleResult
from services.scoring import clamp_score

TRACKER_PATTERNS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("Google Analytics", re.compile(r"\bga\s*\(|gtag|google-analytics|analytics\.js", re.IGNORECASE)),
    ("Google Tag Manager", re.compile(r"googletagmanager\.com", re.IGNORECASE)),
    ("Facebook Pixel", re.compile(r"fbq\s*\(|facebook-pixel|facebook\.com/tr|fbevents\.js", re.IGNORECASE)),
    ("Hotjar", re.compile(r"hotjar", re.IGNORECASE)),
    ("Microsoft Clarity", re.compile(r"clarity\.ms|\bclarity\s*\(", re.IGNORECASE)),
    ("Segment", re.compile(r"segment\.(?:com|io)|analytics\.load\s*\(", re.IGNORECASE)),
    ("Mixpanel", re.compile(r"mixpanel", re.IGNORECASE)),
    ("Amplitude", re.compile(r"amplitude", re.IGNORECASE)),
    ("Matomo/Piwik", re.compile(r"matomo|piwik", re.IGNORECASE)),
    ("Plausible", re.compile(r"plausible", re.IGNORECASE)),
    ("Fathom", re.compile(r"usefathom\.com|fathom", re.IGNORECASE)),
    ("Adobe Analytics", re.compile(r"adobe.*analytics|omniture|sitecatalyst", re.IGNORECASE)),
    ("Kissmetrics", re.compile(r"kissmetrics", re.IGNORECASE)),
    ("Crazy Egg", re.compile(r"crazyegg", re.IGNORECASE)),
    ("Optimizely", re.compile(r"optimizely", re.IGNORECASE)),
    ("FullStory", re.compile(r"fullstory", re.IGNORECASE)),
)

EVENT_PATTERNS = tuple(
    re.compile(pattern)
    for pattern in (
        r"\.addEventListener\s*\(",
        r"gtag\s*\(\s*['\"]event",
        r"\bga\s*\(\s*['\"]send",
        r"fbq\s*\(\s*['\"]track",
        r"analytics\.track",
        r"mixpanel\.track",
        r"amplitude\.track",
        r"dataLayer\.push\s*\(\s*\{[^}]*['\"]?event",
    )
)
CONSENT_SCRIPT_RE = re.compile(
    r"cookieconsent|gdpr|consent|cookiebot|onetrust|trustarc|cookiehub|osano|cookie-script",
    re.IGNORECASE,
)
CONSENT_TEXT_RE = re.compile(
    r"we use cookies|cookie policy|accept cookies|cookie preferences|cookie settings",
    re.IGNORECASE,
)
CONSENT_SELECTOR = (
    '[class*="cookie"], [class*="consent"], [class*="gdpr"], '
    '[id*="cookie"], [id*="consent"], [id*="gdpr"]'
)
DATA_LAYER_RE = re.compile(r"\bdataLayer\b")
TOO_MANY_TOOLS = 3


def detect_tools(soup: BeautifulSoup) -> Dict[str, str]:
    """Tool name to how it was found: ``external`` script src or ``inline`` code."""
    tools: Dict[str, str] = {}
    for script in soup.find_all("script"):
        src = script.get("src") or ""
        content = script.get_text()
        for name, pattern in TRACKER_PATTERNS:
            if name in tools:
                continue
            if src and pattern.search(src):
                tools[name] = "external"
            elif pattern.search(content):
                tools[name] = "inline"
    for frame in soup.find_all(["iframe", "img"], src=True):
        for name, pattern in TRACKER_PATTERNS:
            if name not in tools and pattern.search(frame["src"]):
                tools[name] = "pixel"
    return tools


def has_event_tracking(soup: BeautifulSoup) -> bool:
    if soup.select("[onclick], [onsubmit], [onchange]"):
        return True
    scripts = "\n".join(script.get_text() for script in soup.find_all("script"))
    return any(pattern.search(scripts) for pattern in EVENT_PATTERNS)


def has_consent_management(soup: BeautifulSoup) -> bool:
    if soup.select(CONSENT_SELECTOR):
        return True
    for script in soup.find_all("script"):
        if CONSENT_SCRIPT_RE.search(script.get("src") or "") or CONSENT_SCRIPT_RE.search(script.get_text()):
            return True
    return bool(CONSENT_TEXT_RE.search(element_text(soup.body or soup)))


def has_data_layer(soup: BeautifulSoup) -> bool:
    return any(DATA_LAYER_RE.search(script.get_text()) for script in soup.find_all("script"))


def analytics_score(tool_count: int, events: bool, consent: bool, data_layer: bool) -> int:
    score = 60 if tool_count else 0
    score += 15 if events else 0
    score += 15 if consent else 0
    score += 10 if data_layer else 0
    if tool_count > TOO_MANY_TOOLS:
        score -= 10
    return clamp_score(score)


class AnalyticsModule(BaseAuditModule):
    module_id = ModuleId.ANALYTICS
    label = "Analytics"
    progress_message = "Detecting analytics integrations..."

    async def run(self, context: AuditContext) -> ModuleResult:
        page = await context.page()
        return await asyncio.to_thread(self.evaluate, page)

    def evaluate(self, page: FetchedPage) -> ModuleResult:
        soup = parse_html(page.html)
        tools = detect_tools(soup)
        events = has_event_tracking(soup)
        consent = has_consent_management(soup)
        data_layer = has_data_layer(soup)

        issues: List[str] = []
        recommendations: List[str] = []
        if not tools:
            issues.append("No analytics tools detected")
            recommendations.append("Implement an analytics solution to track user behavior and site performance")
        if len(tools) > TOO_MANY_TOOLS:
            issues.append(f"Multiple analytics tools detected ({len(tools)}), which may impact page performance")
            recommendations.append("Consider consolidating analytics tools to reduce page load impact")
        if tools and not events:
            issues.append("Analytics tools detected but no event tracking found")
            recommendations.append("Implement event tracking for user interactions to gather more valuable data")
        if tools and not consent:
            issues.append("No consent management detected for analytics cookies")
            recommendations.append("Implement a consent management solution to comply with privacy regulations")
        if tools and not data_layer:
            issues.append("No data layer detected")
            recommendations.append("Implement a data layer for more structured analytics")

        score = analytics_score(len(tools), events, consent, data_layer)
        details = AnalyticsDetails(
            tools=list(tools),
            data_layer=data_layer,
            event_tracking=events,
            consent_management=consent,
            checks={
                "integration": CheckReport(
                    score=score,
                    issues=issues,
                    stats={"implementations": tools, "recommendations": recommendations},
                )
            },
        )
        return self.build_result(score, [self.issue(text, "minor") for text in issues], details)
