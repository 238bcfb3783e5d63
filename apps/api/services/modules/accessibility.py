"""Static WCAG checks producing axe-style violations."""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple

from bs4 import BeautifulSoup, Tag

from analysis.text import element_text, parse_html
from services.fetcher import FetchedPage
from services.modules.base import AuditContext, BaseAuditModule
from services.modules.mobile import parse_viewport, zoom_disabled
from services.modules.types import (
    AccessibilityDetails,
    AccessibilityViolation,
    ModuleId,
    ModuleResult,
    WcagCompliance,
)
from services.scoring import clamp_score, round_half_up

IMPACT_WEIGHTS = {"critical": 4, "serious": 3, "moderate": 2, "minor": 1}
POINTS_PER_WEIGHTED_NODE = 5
MANY_CRITICAL_VIOLATIONS = 5
MANY_CRITICAL_PENALTY = 10

# Approximate WCAG 2.1 success criteria per conformance level.
CRITERIA_TOTALS = {"a": 30, "aa": 20, "aaa": 28}

HELP_URL = "https://dequeuniversity.com/rules/axe/4.8/{rule}"

LABELLED_INPUT_TYPES_EXEMPT = {"hidden", "submit", "button", "image", "reset"}


@dataclass(frozen=True)
class Rule:
    id: str
    impact: str
    description: str
    level: str
    criteria: Tuple[str, ...]
    find: Callable[[BeautifulSoup], int]


def _has_accessible_name(tag: Tag) -> bool:
    if (tag.get("aria-label") or "").strip() or (tag.get("aria-labelledby") or "").strip():
        return True
    if (tag.get("title") or "").strip():
        return True
    if element_text(tag):
        return True
    return any((img.get("alt") or "").strip() for img in tag.find_all("img"))


def _images_without_alt(soup: BeautifulSoup) -> int:
    return sum(
        1 for img in soup.find_all("img")
        if not img.has_attr("alt") and img.get("role") not in ("presentation", "none")
    )


def _missing_lang(soup: BeautifulSoup) -> int:
    html = soup.find("html")
    return 0 if html is not None and (html.get("lang") or "").strip() else 1


def _missing_title(soup: BeautifulSoup) -> int:
    return 0 if element_text(soup.title) else 1


def _unlabelled_inputs(soup: BeautifulSoup) -> int:
    labelled_ids = {label.get("for") for label in soup.find_all("label") if label.get("for")}
    count = 0
    for field in soup.find_all(["input", "select", "textarea"]):
        if field.name == "input" and (field.get("type") or "text").lower() in LABELLED_INPUT_TYPES_EXEMPT:
            continue
        if field.get("id") and field.get("id") in labelled_ids:
            continue
        if field.find_parent("label") is not None:
            continue
        if (field.get("aria-label") or field.get("aria-labelledby") or field.get("title") or "").strip():
            continue
        count += 1
    return count


def _unnamed_buttons(soup: BeautifulSoup) -> int:
    buttons = {id(tag): tag for tag in soup.find_all("button") + soup.find_all(attrs={"role": "button"})}.values()
    return sum(1 for button in buttons if not _has_accessible_name(button))


def _unnamed_links(soup: BeautifulSoup) -> int:
    return sum(1 for anchor in soup.find_all("a", href=True) if not _has_accessible_name(anchor))


def _untitled_frames(soup: BeautifulSoup) -> int:
    return sum(1 for frame in soup.find_all(["iframe", "frame"]) if not (frame.get("title") or "").strip())


def _zoom_blocked(soup: BeautifulSoup) -> int:
    tag = soup.find("meta", attrs={"name": "viewport"})
    if tag is None:
        return 0
    return 1 if zoom_disabled(parse_viewport(tag.get("content") or "")) else 0


def _missing_main(soup: BeautifulSoup) -> int:
    return 0 if soup.find("main") or soup.find(attrs={"role": "main"}) else 1


def _missing_h1(soup: BeautifulSoup) -> int:
    return 0 if soup.find("h1") else 1


def _empty_headings(soup: BeautifulSoup) -> int:
    return sum(1 for heading in soup.select("h1, h2, h3, h4, h5, h6") if not element_text(heading))


def _duplicate_ids(soup: BeautifulSoup) -> int:
    ids = Counter(tag.get("id") for tag in soup.find_all(id=True))
    return sum(1 for count in ids.values() if count > 1)


def _positive_tabindex(soup: BeautifulSoup) -> int:
    count = 0
    for tag in soup.find_all(attrs={"tabindex": True}):
        try:
            if int(tag["tabindex"]) > 0:
                count += 1
        except (TypeError, ValueError):
            continue
    return count


RULES: Tuple[Rule, ...] = (
    Rule("image-alt", "critical", "Images must have alternate text", "a", ("wcag111",), _images_without_alt),
    Rule("label", "critical", "Form elements must have labels", "a", ("wcag131", "wcag412"), _unlabelled_inputs),
    Rule("button-name", "critical", "Buttons must have discernible text", "a", ("wcag412",), _unnamed_buttons),
    Rule("meta-viewport", "critical", "Zooming and scaling must not be disabled", "aa", ("wcag144",), _zoom_blocked),
    Rule("html-has-lang", "serious", "<html> element must have a lang attribute", "a", ("wcag311",), _missing_lang),
    Rule("document-title", "serious", "Documents must have <title> element to aid in navigation", "a", ("wcag242",), _missing_title),
    Rule("link-name", "serious", "Links must have discernible text", "a", ("wcag244", "wcag412"), _unnamed_links),
    Rule("frame-title", "serious", "Frames must have an accessible name", "a", ("wcag412",), _untitled_frames),
    Rule("tabindex", "serious", "Elements should not have tabindex greater than zero", "a", ("wcag243",), _positive_tabindex),
    Rule("landmark-one-main", "moderate", "Document should have one main landmark", "a", ("wcag131",), _missing_main),
    Rule("page-has-heading-one", "moderate", "Page should contain a level-one heading", "a", ("wcag131",), _missing_h1),
    Rule("empty-heading", "minor", "Headings should not be empty", "a", ("wcag131",), _empty_headings),
    Rule("duplicate-id", "minor", "id attribute values must be unique", "a", ("wcag411",), _duplicate_ids),
)


def wcag_compliance(violations: List[AccessibilityViolation], rules: Dict[str, Rule]) -> WcagCompliance:
    violated: Dict[str, set] = {level: set() for level in CRITERIA_TOTALS}
    for violation in violations:
        rule = rules[violation.id]
        violated[rule.level].update(rule.criteria)
    percentages = {
        level: max(0, round_half_up((total - len(violated[level])) / total * 100))
        for level, total in CRITERIA_TOTALS.items()
    }
    return WcagCompliance(**percentages)


def accessibility_score(violations: List[AccessibilityViolation]) -> int:
    weighted = sum(IMPACT_WEIGHTS[violation.impact] * violation.nodes for violation in violations)
    score = 100 - POINTS_PER_WEIGHTED_NODE * weighted
    critical = sum(1 for violation in violations if violation.impact == "critical")
    if critical > MANY_CRITICAL_VIOLATIONS:
        score -= MANY_CRITICAL_PENALTY
    return clamp_score(score)


class AccessibilityModule(BaseAuditModule):
    module_id = ModuleId.ACCESSIBILITY
    label = "Accessibility"
    progress_message = "Analyzing accessibility..."

    def __init__(self, timeout_seconds=None, rules: Tuple[Rule, ...] = RULES):
        super().__init__(timeout_seconds)
        self.rules = rules

    async def run(self, context: AuditContext) -> ModuleResult:
        page = await context.page()
        return await asyncio.to_thread(self.evaluate, page)

    def evaluate(self, page: FetchedPage) -> ModuleResult:
        soup = parse_html(page.html)
        violations: List[AccessibilityViolation] = []
        passes: List[str] = []
        for rule in self.rules:
            nodes = rule.find(soup)
            if not nodes:
                passes.append(rule.id)
                continue
            violations.append(
                AccessibilityViolation(
                    id=rule.id,
                    impact=rule.impact,
                    description=rule.description,
                    help_url=HELP_URL.format(rule=rule.id),
                    nodes=nodes,
                    wcag_criteria=[f"wcag2{rule.level}", *rule.criteria],
                )
            )

        impacts = Counter(violation.impact for violation in violations)
        summary = {
            "total_violations": len(violations),
            "critical": impacts["critical"],
            "serious": impacts["serious"],
            "moderate": impacts["moderate"],
            "minor": impacts["minor"],
            "passes": len(passes),
        }
        issues = [
            self.issue(
                f"{violation.description} ({violation.nodes} element{'s' if violation.nodes != 1 else ''})",
                "critical" if violation.impact == "critical" else "major" if violation.impact == "serious" else "minor",
            )
            for violation in violations
        ]
        details = AccessibilityDetails(
            violations=violations,
            passes=passes,
            summary=summary,
            wcag_compliance=wcag_compliance(violations, {rule.id: rule for rule in self.rules}),
        )
        return self.build_result(accessibility_score(violations), issues, details)
