"""Security module: TLS, response headers, CSP, mixed content and known weaknesses."""

from __future__ import annotations

import asyncio
import logging
import re
import ssl
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from analysis.text import parse_html
from services.fetcher import FetchedPage
from services.modules.base import AuditContext, BaseAuditModule
from services.modules.types import CheckReport, ModuleId, ModuleResult, SecurityDetails, SslReport, Vulnerability
from services.scoring import clamp_score, weighted_average

logger = logging.getLogger(__name__)

CERT_EXPIRY_WARNING_DAYS = 30

SECURITY_HEADERS = (
    ("strict-transport-security", "Strict-Transport-Security"),
    ("x-content-type-options", "X-Content-Type-Options"),
    ("x-frame-options", "X-Frame-Options"),
    ("content-security-policy", "Content-Security-Policy"),
    ("referrer-policy", "Referrer-Policy"),
    ("permissions-policy", "Permissions-Policy"),
)

CHECK_WEIGHTS = {"ssl": 2.0, "headers": 1.5, "csp": 1.5, "mixed_content": 1.0, "vulnerabilities": 2.0}
VULNERABILITY_PENALTIES = {"critical": 25, "high": 15, "medium": 10, "low": 5}

MIXED_CONTENT_SELECTOR = (
    'img[src^="http:"], script[src^="http:"], link[rel="stylesheet"][href^="http:"], '
    'iframe[src^="http:"], object[data^="http:"], embed[src^="http:"], '
    'video[src^="http:"], audio[src^="http:"]'
)
SENSITIVE_LINK_SELECTOR = 'a[href$=".sql"], a[href$=".bak"], a[href$=".config"], a[href$=".env"], a[href*="phpinfo.php"]'

_JQUERY_SRC_RE = re.compile(r"jquery[.-](\d+\.\d+\.\d+)(?:\.min)?\.js", re.IGNORECASE)
_JQUERY_BANNER_RE = re.compile(r"jQuery\s+v(\d+\.\d+\.\d+)", re.IGNORECASE)


async def certificate_days_left(url: str, timeout: float = 10.0) -> Optional[int]:
    """Days until the target's TLS certificate expires; None when it cannot be read."""
    parsed = urlparse(url)
    if parsed.scheme != "https" or not parsed.hostname:
        return None
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(parsed.hostname, parsed.port or 443, ssl=ssl.create_default_context()),
            timeout=timeout,
        )
    except (OSError, asyncio.TimeoutError, ssl.SSLError) as exc:
        logger.warning("Could not read certificate for %s: %s", parsed.hostname, exc)
        return None
    try:
        certificate = writer.get_extra_info("peercert") or {}
        not_after = certificate.get("notAfter")
        if not not_after:
            return None
        expires = datetime.fromtimestamp(ssl.cert_time_to_seconds(not_after), tz=timezone.utc)
        return (expires - datetime.now(timezone.utc)).days
    finally:
        writer.close()


def analyze_ssl(page: FetchedPage, days_left: Optional[int]) -> SslReport:
    if not page.is_https:
        return SslReport(https=False, valid_certificate=False, issues=["Site is not using HTTPS"], score=0)
    issues: List[str] = []
    valid = page.tls_verified is not False
    if not valid:
        issues.append("Invalid SSL certificate")
    if days_left is not None and days_left < CERT_EXPIRY_WARNING_DAYS:
        issues.append(f"SSL certificate expires soon ({days_left} days)")
    score = (70 if issues else 100) if valid else 30
    return SslReport(https=True, valid_certificate=valid, issues=issues, score=score)


def analyze_headers(headers: Dict[str, str]) -> CheckReport:
    present: List[str] = []
    issues: List[str] = []
    for key, display in SECURITY_HEADERS:
        value = headers.get(key)
        if key == "permissions-policy" and value is None:
            value = headers.get("feature-policy")
        if value is None:
            issues.append(f"Missing {display} header")
            continue
        present.append(display)
        if key == "strict-transport-security" and "max-age=" not in value.lower():
            issues.append("Strict-Transport-Security header missing max-age directive")
        if key == "x-content-type-options" and value.strip().lower() != "nosniff":
            issues.append("X-Content-Type-Options should be set to nosniff")
    score = len(present) / len(SECURITY_HEADERS) * 100
    return CheckReport(score=clamp_score(score), issues=issues, stats={"present": present})


def parse_csp(header: str) -> Dict[str, str]:
    policies: Dict[str, str] = {}
    for directive in header.split(";"):
        parts = directive.strip().split()
        if parts:
            policies[parts[0].lower()] = " ".join(parts[1:])
    return policies


def analyze_csp(headers: Dict[str, str]) -> CheckReport:
    header = headers.get("content-security-policy")
    if not header:
        return CheckReport(score=0, issues=["Content Security Policy (CSP) not implemented"], stats={"present": False})

    policies = parse_csp(header)
    issues: List[str] = []
    if any("'unsafe-inline'" in policies.get(key, "") for key in ("default-src", "script-src", "style-src")):
        issues.append("CSP uses 'unsafe-inline' which reduces security")
    if any("'unsafe-eval'" in policies.get(key, "") for key in ("default-src", "script-src")):
        issues.append("CSP uses 'unsafe-eval' which reduces security")
    if "default-src" not in policies:
        issues.append("CSP missing default-src directive")
        if "script-src" not in policies:
            issues.append("CSP missing script-src directive")
    strict = not any(
        "'unsafe-inline'" in value or "'unsafe-eval'" in value or value == "*"
        for value in policies.values()
    )
    return CheckReport(
        score=100 if strict else 70,
        issues=issues,
        stats={"present": True, "strict": strict, "directives": policies},
    )


def analyze_mixed_content(soup: BeautifulSoup, page: FetchedPage) -> CheckReport:
    if not page.is_https:
        return CheckReport(
            score=0,
            issues=["Site is not using HTTPS, so mixed content is not applicable"],
            stats={"resources": []},
        )
    resources = [
        tag.get("src") or tag.get("href") or tag.get("data") or ""
        for tag in soup.select(MIXED_CONTENT_SELECTOR)
    ]
    issues = []
    if resources:
        issues.append(f"Found {len(resources)} mixed content resources on HTTPS site")
    return CheckReport(score=clamp_score(100 - 10 * len(resources)), issues=issues, stats={"resources": resources})


def _outdated_jquery(version: str) -> bool:
    major, minor, _ = (int(part) for part in version.split("."))
    return major < 3 or (major == 3 and minor < 5)


def find_vulnerabilities(soup: BeautifulSoup, headers: Dict[str, str]) -> List[Vulnerability]:
    vulnerabilities: List[Vulnerability] = []

    versions = set()
    for script in soup.find_all("script"):
        match = _JQUERY_SRC_RE.search(script.get("src") or "")
        if match:
            versions.add(match.group(1))
        match = _JQUERY_BANNER_RE.search(script.string or "")
        if match:
            versions.add(match.group(1))
    outdated = sorted(version for version in versions if _outdated_jquery(version))
    if outdated:
        vulnerabilities.append(
            Vulnerability(
                type="outdated-jquery",
                severity="high",
                description=f"Using outdated jQuery version(s): {', '.join(outdated)}",
                recommendation="Update to jQuery 3.5.0 or newer to avoid known XSS vulnerabilities",
            )
        )

    for link in soup.select(SENSITIVE_LINK_SELECTOR):
        vulnerabilities.append(
            Vulnerability(
                type="exposed-sensitive-file",
                severity="critical",
                description=f"Potentially sensitive file exposed: {link.get('href')}",
                recommendation="Remove or restrict access to sensitive files",
            )
        )

    if "x-xss-protection" not in headers:
        vulnerabilities.append(
            Vulnerability(
                type="missing-xss-protection",
                severity="medium",
                description="Missing X-XSS-Protection header",
                recommendation="Add X-XSS-Protection: 1; mode=block header",
            )
        )

    for _ in soup.select('form[action^="http:"]'):
        vulnerabilities.append(
            Vulnerability(
                type="insecure-form",
                severity="high",
                description="Form submitting data over unencrypted HTTP",
                recommendation="Use HTTPS for all form submissions",
            )
        )
    return vulnerabilities


def vulnerability_score(vulnerabilities: List[Vulnerability]) -> int:
    return clamp_score(100 - sum(VULNERABILITY_PENALTIES[item.severity] for item in vulnerabilities))


class SecurityModule(BaseAuditModule):
    module_id = ModuleId.SECURITY
    label = "Security"
    progress_message = "Analyzing security..."

    def __init__(self, timeout_seconds=None, certificate_inspector=certificate_days_left):
        super().__init__(timeout_seconds)
        self.certificate_inspector = certificate_inspector

    async def run(self, context: AuditContext) -> ModuleResult:
        page = await context.page()
        days_left = await self.certificate_inspector(page.final_url) if page.is_https else None
        return await asyncio.to_thread(self.evaluate, page, days_left)

    def evaluate(self, page: FetchedPage, days_left: Optional[int] = None) -> ModuleResult:
        soup = parse_html(page.html)
        ssl_report = analyze_ssl(page, days_left)
        headers = analyze_headers(page.headers)
        csp = analyze_csp(page.headers)
        mixed = analyze_mixed_content(soup, page)
        vulnerabilities = find_vulnerabilities(soup, page.headers)
        vuln_score = vulnerability_score(vulnerabilities)

        score = weighted_average(
            [
                (ssl_report.score, CHECK_WEIGHTS["ssl"]),
                (headers.score, CHECK_WEIGHTS["headers"]),
                (csp.score, CHECK_WEIGHTS["csp"]),
                (mixed.score, CHECK_WEIGHTS["mixed_content"]),
                (vuln_score, CHECK_WEIGHTS["vulnerabilities"]),
            ]
        )

        issues = [self.issue(text, "critical") for text in ssl_report.issues]
        issues.extend(self.issue(text, "minor") for text in headers.issues)
        issues.extend(self.issue(text) for text in csp.issues + mixed.issues)
        issues.extend(
            self.issue(item.description, "critical" if item.severity in ("critical", "high") else "major")
            for item in vulnerabilities
        )
        details = SecurityDetails(
            ssl=ssl_report,
            headers=headers,
            csp=csp,
            mixed_content=mixed,
            vulnerabilities=vulnerabilities,
            vulnerability_score=vuln_score,
        )
        return self.build_result(score, issues, details)
