"""
Document structure heuristics over raw HTML.
"""

import re
from typing import List

from bs4 import BeautifulSoup

from services.scoring import clamp_score, weighted_average

from .models import StructureCheck, StructureResult
from .text import count_words, element_text, parse_html

HEADING_SELECTOR = "h1, h2, h3, h4, h5, h6"
SECTION_SELECTOR = 'section, article, div[class*="section"], div[id*="section"]'
SECTION_CONTENT_SELECTOR = "p, ul, ol, table, img"

LONG_PARAGRAPH_WORDS = 150
SHORT_PARAGRAPH_WORDS = 20
LONG_LIST_ITEM_WORDS = 50
MIN_BOOKEND_CHARS = 50
MAX_HEADINGS = 20

TRANSITION_WORDS = (
    "additionally", "consequently", "furthermore", "however", "moreover",
    "nevertheless", "therefore", "thus", "in conclusion", "in summary",
    "first", "second", "third", "finally", "lastly", "next", "then",
    "in addition", "as a result", "for example", "for instance",
    "in contrast", "on the other hand", "similarly", "in fact",
)

WEIGHTS = {
    "headings": 2.5,
    "paragraphs": 2.0,
    "lists": 1.5,
    "sections": 2.0,
    "organization": 2.0,
}

_NUMBERED_PARAGRAPH_RE = re.compile(r"^\d+\.\s")


class StructureAnalyzer:
    """Checks heading hierarchy, paragraph sizing, lists, sections and flow."""

    def analyze(self, html: str) -> StructureResult:
        soup = parse_html(html)
        checks = {
            "headings": self._headings(soup),
            "paragraphs": self._paragraphs(soup),
            "lists": self._lists(soup),
            "sections": self._sections(soup),
            "organization": self._organization(soup),
        }
        issues: List[str] = []
        for check in checks.values():
            issues.extend(check.issues)
        score = weighted_average((checks[name].score, weight) for name, weight in WEIGHTS.items())
        return StructureResult(**checks, issues=issues, score=score)

    def _headings(self, soup: BeautifulSoup) -> StructureCheck:
        counts = {f"h{level}": 0 for level in range(1, 7)}
        issues: List[str] = []
        proper_hierarchy = True
        last_level = 0
        for heading in soup.select(HEADING_SELECTOR):
            level = int(heading.name[1])
            counts[heading.name] += 1
            if last_level and level > last_level + 1:
                proper_hierarchy = False
                issues.append(f"Heading hierarchy skips from h{last_level} to h{level}")
            last_level = level

        total = sum(counts.values())
        score = 100
        if counts["h1"] > 1:
            issues.append(f"Multiple h1 tags found ({counts['h1']}), should have only one for SEO")
            score -= 20
        if counts["h1"] == 0:
            issues.append("No h1 tag found, main heading is missing")
            score -= 30
        if total > MAX_HEADINGS:
            issues.append(f"Too many headings ({total}), consider consolidating content")
            score -= 15
        if not proper_hierarchy:
            score -= 25
        return StructureCheck(
            score=clamp_score(score),
            issues=issues,
            stats={"heading_count": counts, "proper_hierarchy": proper_hierarchy},
        )

    def _paragraphs(self, soup: BeautifulSoup) -> StructureCheck:
        word_counts = [count_words(element_text(p)) for p in soup.find_all("p")]
        paragraph_count = len(word_counts)
        long_count = sum(1 for words in word_counts if words > LONG_PARAGRAPH_WORDS)
        short_count = sum(1 for words in word_counts if 0 < words < SHORT_PARAGRAPH_WORDS)
        average = sum(word_counts) / paragraph_count if paragraph_count else 0.0
        too_many_short = paragraph_count > 5 and short_count > paragraph_count * 0.5

        issues: List[str] = []
        score = 100.0
        if long_count:
            plural = "" if long_count == 1 else "s"
            issues.append(f"{long_count} paragraph{plural} exceed 150 words, consider breaking them up")
            score -= min(30, long_count / paragraph_count * 100)
        if too_many_short:
            issues.append("Too many short paragraphs, consider combining related ideas")
            score -= 15
        if average > 100:
            issues.append(f"Average paragraph length ({round(average)} words) is too long, aim for 40-80 words")
            score -= min(25, (average - 100) / 2)
        return StructureCheck(
            score=clamp_score(score),
            issues=issues,
            stats={
                "paragraph_count": paragraph_count,
                "average_paragraph_length": round(average, 2),
                "long_paragraphs": long_count,
                "short_paragraphs": short_count,
            },
        )

    def _lists(self, soup: BeautifulSoup) -> StructureCheck:
        lists = soup.find_all(["ul", "ol"])
        issues: List[str] = []
        improper = 0
        for list_el in lists:
            items = list_el.find_all("li")
            if not items:
                improper += 1
                issues.append("Empty list found")
            elif len(items) == 1:
                improper += 1
                issues.append("List with only one item found, consider using a paragraph instead")
            long_items = sum(1 for li in items if count_words(element_text(li)) > LONG_LIST_ITEM_WORDS)
            if len(items) > 3 and long_items > len(items) * 0.5:
                improper += 1
                issues.append("List contains many long items, consider restructuring")

        paragraphs = [element_text(p) for p in soup.find_all("p")]
        manual_numbering = sum(
            1
            for previous, current in zip(paragraphs, paragraphs[1:])
            if _NUMBERED_PARAGRAPH_RE.match(current) and _NUMBERED_PARAGRAPH_RE.match(previous)
        )
        if manual_numbering:
            issues.append(
                f"{manual_numbering} manually numbered paragraphs found, consider using proper ordered lists (<ol>)"
            )

        score = 100.0
        if lists:
            score -= min(50, improper / len(lists) * 100)
        if manual_numbering:
            score -= min(30, manual_numbering * 10)
        return StructureCheck(
            score=clamp_score(score),
            issues=issues,
            stats={"list_count": len(lists), "improper_lists": improper, "manual_numbering": manual_numbering},
        )

    def _sections(self, soup: BeautifulSoup) -> StructureCheck:
        sections = soup.select(SECTION_SELECTOR)
        issues: List[str] = []
        poor = 0
        for section in sections:
            has_heading = bool(section.select(HEADING_SELECTOR))
            has_content = bool(section.select(SECTION_CONTENT_SELECTOR))
            if has_content and not has_heading:
                poor += 1
                issues.append("Section without heading found")
            elif has_heading and not has_content:
                poor += 1
                issues.append("Heading without content found")

        orphaned = len(soup.select("body > p"))
        score = 100.0
        if sections:
            score -= min(50, poor / len(sections) * 100)
            if orphaned > 3:
                issues.append(
                    f"{orphaned} paragraphs found outside of sections, consider organizing content better"
                )
                score -= min(30, orphaned * 5)
        return StructureCheck(
            score=clamp_score(score),
            issues=issues,
            stats={"section_count": len(sections), "poor_sections": poor, "orphaned_paragraphs": orphaned},
        )

    def _organization(self, soup: BeautifulSoup) -> StructureCheck:
        paragraphs = [element_text(p) for p in soup.find_all("p")]
        first = paragraphs[0] if paragraphs else ""
        last = paragraphs[-1] if paragraphs else ""
        has_introduction = len(first) > MIN_BOOKEND_CHARS
        has_conclusion = len(last) > MIN_BOOKEND_CHARS and len(paragraphs) > 1 and last != first

        with_transitions = sum(
            1 for text in paragraphs if any(word in text.lower() for word in TRANSITION_WORDS)
        )
        judged_flow = len(paragraphs) > 3
        logical_flow = not judged_flow or with_transitions >= len(paragraphs) * 0.25

        issues: List[str] = []
        score = 100
        if not has_introduction:
            issues.append("No clear introduction found, consider adding one")
            score -= 25
        if not has_conclusion:
            issues.append("No clear conclusion found, consider adding one")
            score -= 25
        if not logical_flow:
            issues.append("Few transition words found, consider improving content flow")
            score -= 20
        return StructureCheck(
            score=clamp_score(score),
            issues=issues,
            stats={
                "has_introduction": has_introduction,
                "has_conclusion": has_conclusion,
                "logical_flow": logical_flow,
                "paragraphs_with_transitions": with_transitions,
            },
        )
