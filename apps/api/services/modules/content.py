"""Content quality module built on the linguistic analyzers."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from bs4 import BeautifulSoup

from analysis.grammar import GrammarAnalyzer
from analysis.readability import ReadabilityAnalyzer
from analysis.structure import StructureAnalyzer
from analysis.text import count_words, element_text, extract_main_content, parse_html
from services.fetcher import FetchedPage
from services.modules.base import AuditContext, BaseAuditModule
from services.modules.types import CheckReport, ContentDetails, ModuleId, ModuleResult
from services.scoring import clamp_score, weighted_average

ANALYZER_WEIGHTS = {"readability": 2.0, "grammar": 1.5, "structure": 2.0}

PUBLISH_DATE_SELECTORS = (
    'meta[property="article:published_time"]',
    "time[datetime]",
    ".published-date",
    ".post-date",
    ".entry-date",
    ".date",
)
UPDATE_DATE_SELECTORS = (
    'meta[property="article:modified_time"]',
    ".updated-date",
    ".modified-date",
    ".update-date",
)
VIDEO_SELECTOR = 'video, iframe[src*="youtube"], iframe[src*="vimeo"], iframe[src*="wistia"], .video-container'
INTERACTIVE_SELECTOR = (
    'button, .button, [role="button"], details, summary, .accordion, .tabs, '
    ".interactive, [data-interactive], form, input, select, textarea"
)
STALE_AFTER = timedelta(days=365)


def parse_date(value: str) -> Optional[datetime]:
    value = (value or "").strip()
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _first_date(soup: BeautifulSoup, selectors: Sequence[str]) -> Optional[datetime]:
    for selector in selectors:
        element = soup.select_one(selector)
        if element is None:
            continue
        raw = element.get("content") or element.get("datetime") or element_text(element)
        parsed = parse_date(raw)
        if parsed is not None:
            return parsed
    return None


def analyze_freshness(soup: BeautifulSoup, now: Optional[datetime] = None) -> CheckReport:
    now = now or datetime.now(timezone.utc)
    published = _first_date(soup, PUBLISH_DATE_SELECTORS)
    updated = _first_date(soup, UPDATE_DATE_SELECTORS)
    latest = updated or published
    recent = latest is not None and latest > now - STALE_AFTER

    issues = []
    score = 100
    if published is None:
        issues.append("No publish date found, consider adding one for better user experience")
        score -= 20
    if latest is not None and not recent:
        issues.append("Content may be outdated (older than one year), consider updating")
        score -= 30
        if updated is None and published is not None:
            score -= 15
    return CheckReport(
        score=clamp_score(score),
        issues=issues,
        stats={
            "has_publish_date": published is not None,
            "has_update_date": updated is not None,
            "is_recent": recent,
        },
    )


def _is_content_image(img) -> bool:
    if not img.get("src"):
        return False
    for attribute in ("width", "height"):
        raw = (img.get(attribute) or "").strip()
        if raw and raw.isdigit() and int(raw) <= 100:
            return False
    return True


def analyze_engagement(soup: BeautifulSoup) -> CheckReport:
    all_images = soup.find_all("img")
    images = [img for img in all_images if _is_content_image(img)]
    videos = soup.select(VIDEO_SELECTOR)
    interactive = soup.select(INTERACTIVE_SELECTOR)
    media_count = len(images) + len(videos)

    issues = []
    if not images and not videos:
        issues.append("No visual media found, consider adding images or videos to improve engagement")
    if images:
        missing_alt = sum(1 for img in all_images if not (img.get("alt") or "").strip())
        if missing_alt:
            issues.append(
                f"{missing_alt} image{'s' if missing_alt != 1 else ''} missing alt text, add for accessibility"
            )

    content_length = sum(len(p.get_text()) for p in soup.find_all("p"))
    media_density = media_count * 1000 / content_length if content_length else 0.0
    if content_length > 3000 and media_density < 1:
        issues.append("Low media density for long content, consider adding more visual elements")

    score = 70 + 10 * sum(bool(group) for group in (images, videos, interactive))
    if content_length > 1000:
        if media_density >= 2:
            score += 10
        elif media_density >= 1:
            score += 5
        elif media_density < 0.5:
            score -= 10
    score -= 5 * len(issues)
    return CheckReport(
        score=clamp_score(score),
        issues=issues,
        stats={
            "images": len(images),
            "videos": len(videos),
            "interactive_elements": len(interactive),
            "media_density": round(media_density, 2),
        },
    )


class ContentModule(BaseAuditModule):
    """Readability, grammar and structure drive the score; freshness and engagement are advisory."""

    module_id = ModuleId.CONTENT
    label = "Content"
    progress_message = "Analyzing content quality..."

    def __init__(self, timeout_seconds=None):
        super().__init__(timeout_seconds)
        self.readability = ReadabilityAnalyzer()
        self.grammar = GrammarAnalyzer()
        self.structure = StructureAnalyzer()

    async def run(self, context: AuditContext) -> ModuleResult:
        page = await context.page()
        return await asyncio.to_thread(self.evaluate, page)

    def evaluate(self, page: FetchedPage, now: Optional[datetime] = None) -> ModuleResult:
        text = extract_main_content(page.html)
        readability = self.readability.analyze(text)
        grammar = self.grammar.analyze(text)
        structure = self.structure.analyze(page.html)

        soup = parse_html(page.html)
        freshness = analyze_freshness(soup, now)
        engagement = analyze_engagement(soup)

        score = weighted_average(
            [
                (readability.score, ANALYZER_WEIGHTS["readability"]),
                (grammar.score, ANALYZER_WEIGHTS["grammar"]),
                (structure.score, ANALYZER_WEIGHTS["structure"]),
            ]
        )
        issues = [
            *readability.issues,
            *grammar.issues,
            *structure.issues,
        ]
        issues.extend(self.issue(text, "minor") for text in freshness.issues + engagement.issues)
        details = ContentDetails(
            word_count=count_words(text),
            readability=readability,
            grammar=grammar,
            structure=structure,
            freshness=freshness,
            engagement=engagement,
        )
        return self.build_result(score, issues, details)
