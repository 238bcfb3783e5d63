"""On-page SEO module."""

from __future__ import annotations

import asyncio
import re
from collections import Counter
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from analysis.text import count_words, element_text, parse_html
from services.fetcher import FetchedPage
from services.modules.base import AuditContext, BaseAuditModule
from services.modules.types import CheckReport, MetaReport, ModuleId, ModuleResult, SeoDetails
from services.scoring import clamp_score, weighted_average

STOP_WORDS = frozenset(
    "a an the and or but in on at to for with by about as of is are was were".split()
)

CHECK_WEIGHTS: Dict[str, float] = {
    "meta": 1.5,
    "headings": 1.2,
    "keywords": 1.5,
    "links": 1.2,
    "images": 1.0,
    "schema": 1.0,
    "canonical": 1.0,
    "social": 0.8,
    "indexability": 1.3,
}


def _deducted(issues: List[str], per_issue: int) -> int:
    return clamp_score(100 - per_issue * len(issues))


def analyze_meta(soup: BeautifulSoup) -> MetaReport:
    issues: List[str] = []
    title = element_text(soup.title)
    if not title:
        issues.append("Missing page title")
    elif len(title) < 10:
        issues.append("Title is too short (less than 10 characters)")
    elif len(title) > 60:
        issues.append("Title is too long (more than 60 characters)")

    description_tag = soup.find("meta", attrs={"name": "description"})
    description = (description_tag.get("content") or "").strip() if description_tag else ""
    if not description:
        issues.append("Missing meta description")
    elif len(description) < 50:
        issues.append("Meta description is too short (less than 50 characters)")
    elif len(description) > 160:
        issues.append("Meta description is too long (more than 160 characters)")

    robots_tag = soup.find("meta", attrs={"name": "robots"})
    robots = (robots_tag.get("content") or "").strip().lower() if robots_tag else ""
    if "noindex" in robots or "none" in robots:
        issues.append("Page is set to noindex, which prevents search engines from indexing it")

    has_viewport = soup.find("meta", attrs={"name": "viewport"}) is not None
    if not has_viewport:
        issues.append("Missing viewport meta tag for responsive design")

    canonical_tag = soup.find("link", rel="canonical")
    canonical = (canonical_tag.get("href") or "").strip() if canonical_tag else ""
    if not canonical:
        issues.append("Missing canonical URL tag")

    return MetaReport(
        title=title or None,
        description=description or None,
        robots=robots or None,
        canonical=canonical or None,
        has_viewport=has_viewport,
        issues=issues,
        score=_deducted(issues, 20),
    )


def analyze_headings(soup: BeautifulSoup) -> CheckReport:
    headings = [(tag.name, element_text(tag)) for tag in soup.select("h1, h2, h3, h4, h5, h6")]
    counts = Counter(name for name, _ in headings)
    issues: List[str] = []
    if counts["h1"] == 0:
        issues.append("Missing H1 heading")
    elif counts["h1"] > 1:
        issues.append(f"Multiple H1 headings ({counts['h1']}) found - should have only one")
    if counts["h3"] and not counts["h2"]:
        issues.append("H3 headings found without H2 headings - improper hierarchy")
    if counts["h4"] and not counts["h3"]:
        issues.append("H4 headings found without H3 headings - improper hierarchy")

    empty = sum(1 for _, text in headings if not text)
    seen = Counter((name, text.lower()) for name, text in headings if text)
    duplicates = sum(count - 1 for count in seen.values() if count > 1)
    if empty:
        issues.append(f"{empty} empty heading{'s' if empty != 1 else ''} found")
    if duplicates:
        issues.append(f"{duplicates} duplicate heading{'s' if duplicates != 1 else ''} found")
    return CheckReport(
        score=_deducted(issues, 15),
        issues=issues,
        stats={"counts": dict(counts), "total": len(headings)},
    )


def extract_primary_keyword(title: str, description: str, h1: str) -> Optional[str]:
    words = f"{title} {description} {h1}".lower().split()
    frequency = Counter(word for word in words if len(word) > 2 and word not in STOP_WORDS)
    if not frequency:
        return None
    return frequency.most_common(1)[0][0]


def analyze_keywords(soup: BeautifulSoup, url: str, keyword: Optional[str]) -> Tuple[CheckReport, Optional[str]]:
    body = soup.body or soup
    page_text = " ".join(
        fragment.strip()
        for fragment in body.find_all(string=True)
        if fragment.parent.name not in ("script", "style") and fragment.strip()
    )
    word_count = count_words(page_text)
    title = element_text(soup.title)
    description_tag = soup.find("meta", attrs={"name": "description"})
    description = (description_tag.get("content") or "") if description_tag else ""
    h1 = element_text(soup.find("h1"))

    keyword = (keyword or "").strip() or extract_primary_keyword(title, description, h1)
    issues: List[str] = []
    density = 0.0
    if keyword:
        needle = keyword.lower()
        occurrences = len(re.findall(re.escape(needle), page_text.lower()))
        density = occurrences / word_count * 100 if word_count else 0.0
        if needle not in title.lower():
            issues.append("Primary keyword not found in page title")
        if needle not in description.lower():
            issues.append("Primary keyword not found in meta description")
        if needle not in h1.lower():
            issues.append("Primary keyword not found in H1 heading")
        if needle not in url.lower():
            issues.append("Primary keyword not found in URL")
        if density > 3:
            issues.append("Keyword density is too high (potential keyword stuffing)")
        elif density < 0.5 and word_count > 300:
            issues.append("Keyword density is too low")
    else:
        issues.append("No primary keyword could be identified")

    report = CheckReport(
        score=_deducted(issues, 15),
        issues=issues,
        stats={"keyword": keyword, "density": round(density, 2), "word_count": word_count},
    )
    return report, keyword


def analyze_links(soup: BeautifulSoup, base_url: str) -> CheckReport:
    base_host = urlparse(base_url).netloc.lower()
    internal = external = nofollow = empty_text = 0
    urls_by_text: Dict[str, set] = {}
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href == "#" or href.lower().startswith("javascript:"):
            continue
        absolute = urljoin(base_url, href)
        host = urlparse(absolute).netloc.lower()
        if not host or host == base_host:
            internal += 1
        else:
            external += 1
        if "nofollow" in " ".join(anchor.get("rel") or []):
            nofollow += 1
        text = element_text(anchor)
        if not text:
            empty_text += 1
        else:
            urls_by_text.setdefault(text, set()).add(absolute)

    issues: List[str] = []
    if internal == 0:
        issues.append("No internal links found")
    if external == 0:
        issues.append("No external links found")
    if empty_text:
        issues.append(f"{empty_text} links have empty text")
    duplicates = sum(1 for urls in urls_by_text.values() if len(urls) > 1)
    if duplicates:
        issues.append(f"{duplicates} duplicate link texts pointing to different URLs")
    return CheckReport(
        score=_deducted(issues, 15),
        issues=issues,
        stats={"internal": internal, "external": external, "nofollow": nofollow},
    )


def analyze_images(soup: BeautifulSoup) -> CheckReport:
    images = soup.find_all("img")
    missing_alt = sum(1 for img in images if not (img.get("alt") or "").strip())
    issues: List[str] = []
    score = 100.0
    if missing_alt:
        issues.append(f"{missing_alt} image{'s' if missing_alt != 1 else ''} missing alt text")
        score -= min(60, missing_alt / len(images) * 100)
    return CheckReport(
        score=clamp_score(score),
        issues=issues,
        stats={"total": len(images), "missing_alt": missing_alt},
    )


def analyze_schema(soup: BeautifulSoup) -> CheckReport:
    blocks = soup.find_all("script", attrs={"type": "application/ld+json"})
    if blocks:
        return CheckReport(score=80, stats={"blocks": len(blocks)})
    return CheckReport(score=40, issues=["No schema markup found"], stats={"blocks": 0})


def analyze_canonical(soup: BeautifulSoup, url: str) -> CheckReport:
    tag = soup.find("link", rel="canonical")
    href = (tag.get("href") or "").strip() if tag else ""
    if not href:
        return CheckReport(score=50, issues=["Missing canonical URL"], stats={"canonical": None})
    return CheckReport(score=100, stats={"canonical": href, "self_referencing": href.rstrip("/") == url.rstrip("/")})


def analyze_social(soup: BeautifulSoup) -> CheckReport:
    open_graph = soup.find_all("meta", attrs={"property": re.compile(r"^og:")})
    twitter = soup.find_all("meta", attrs={"name": re.compile(r"^twitter:")})
    issues: List[str] = []
    if not open_graph:
        issues.append("No Open Graph tags found")
    if not twitter:
        issues.append("No Twitter Card tags found")
    score = 100 if open_graph and twitter else 70 if (open_graph or twitter) else 40
    return CheckReport(
        score=score,
        issues=issues,
        stats={"open_graph": len(open_graph), "twitter": len(twitter)},
    )


def analyze_indexability(soup: BeautifulSoup, page: FetchedPage) -> CheckReport:
    robots_tag = soup.find("meta", attrs={"name": "robots"})
    robots = (robots_tag.get("content") or "").lower() if robots_tag else ""
    header = (page.header("x-robots-tag") or "").lower()
    issues: List[str] = []
    score = 100
    if "noindex" in robots or "noindex" in header:
        issues.append("Page is set to noindex")
        score = 50
    if page.status_code >= 400:
        issues.append(f"Page responded with HTTP {page.status_code}")
        score = min(score, 30)
    return CheckReport(score=score, issues=issues, stats={"status_code": page.status_code})


class SeoModule(BaseAuditModule):
    module_id = ModuleId.SEO
    label = "SEO"
    progress_message = "Analyzing SEO..."

    async def run(self, context: AuditContext) -> ModuleResult:
        page = await context.page()
        keyword = context.option(self.module_id, "primary_keyword")
        return await asyncio.to_thread(self.evaluate, page, keyword)

    def evaluate(self, page: FetchedPage, keyword: Optional[str] = None) -> ModuleResult:
        soup = parse_html(page.html)
        meta = analyze_meta(soup)
        keyword_report, resolved_keyword = analyze_keywords(soup, page.final_url, keyword)
        checks = {
            "headings": analyze_headings(soup),
            "keywords": keyword_report,
            "links": analyze_links(soup, page.final_url),
            "images": analyze_images(soup),
            "schema": analyze_schema(soup),
            "canonical": analyze_canonical(soup, page.final_url),
            "social": analyze_social(soup),
            "indexability": analyze_indexability(soup, page),
        }
        sub_scores = {"meta": meta.score, **{name: check.score for name, check in checks.items()}}
        score = weighted_average((sub_scores[name], weight) for name, weight in CHECK_WEIGHTS.items())

        issues = list(meta.issues)
        for name in ("headings", "keywords", "links", "images", "schema", "social", "indexability"):
            issues.extend(checks[name].issues)
        details = SeoDetails(meta=meta, checks=checks, primary_keyword=resolved_keyword)
        return self.build_result(score, issues, details)
