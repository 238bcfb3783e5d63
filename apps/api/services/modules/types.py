"""Analysis module contracts: identifiers, issues, results and detail payloads."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from analysis.models import GrammarResult, ReadabilityResult, StructureResult
from services.severity import resolve_severity


class ModuleId(str, Enum):
    SEO = "seo"
    PERFORMANCE = "performance"
    ACCESSIBILITY = "accessibility"
    SECURITY = "security"
    MOBILE = "mobile"
    CONTENT = "content"
    CROSS_BROWSER = "cross_browser"
    ANALYTICS = "analytics"
    CHATBOT = "chatbot"


Severity = Literal["critical", "major", "minor"]
ModuleStatus = Literal["ok", "failed"]
Impact = Literal["minor", "moderate", "serious", "critical"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Issue(_Frozen):
    """One finding. Untagged issues get a severity inferred from their text."""

    description: str
    severity: Severity = "minor"
    category: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _resolve_severity(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = {**data, "severity": resolve_severity(data.get("severity"), data.get("description"))}
        return data


class CheckReport(_Frozen):
    """Score and findings of one sub-check inside a module."""
    score: int = Field(ge=0, le=100)
    issues: List[str] = []
    stats: Dict[str, Any] = {}


# --- per-module detail payloads -------------------------------------------------


class MetaReport(_Frozen):
    title: Optional[str] = None
    description: Optional[str] = None
    robots: Optional[str] = None
    canonical: Optional[str] = None
    has_viewport: bool = False
    issues: List[str] = []
    score: int = Field(ge=0, le=100)


class SeoDetails(_Frozen):
    kind: Literal["seo"] = "seo"
    meta: MetaReport
    checks: Dict[str, CheckReport] = {}
    primary_keyword: Optional[str] = None


class VitalMetric(_Frozen):
    value: float
    unit: str
    score: int = Field(ge=0, le=100)


class CoreWebVitals(_Frozen):
    lcp: Optional[VitalMetric] = None
    fid: Optional[VitalMetric] = None
    cls: Optional[VitalMetric] = None
    ttfb: Optional[VitalMetric] = None
    inp: Optional[VitalMetric] = None


class PerformanceDetails(_Frozen):
    kind: Literal["performance"] = "performance"
    source: Literal["lab", "estimated"] = "estimated"
    core_web_vitals: CoreWebVitals
    metrics: Dict[str, float] = {}
    opportunities: List[str] = []
    diagnostics: List[str] = []


class AccessibilityViolation(_Frozen):
    id: str
    impact: Impact
    description: str
    help_url: Optional[str] = None
    nodes: int = 1
    wcag_criteria: List[str] = []


class WcagCompliance(_Frozen):
    a: float
    aa: float
    aaa: float


class AccessibilityDetails(_Frozen):
    kind: Literal["accessibility"] = "accessibility"
    violations: List[AccessibilityViolation] = []
    passes: List[str] = []
    summary: Dict[str, int] = {}
    wcag_compliance: WcagCompliance


class SslReport(_Frozen):
    https: bool
    valid_certificate: Optional[bool] = None
    issues: List[str] = []
    score: int = Field(ge=0, le=100)


class Vulnerability(_Frozen):
    type: str
    severity: Literal["low", "medium", "high", "critical"]
    description: str
    recommendation: str = ""


class SecurityDetails(_Frozen):
    kind: Literal["security"] = "security"
    ssl: SslReport
    headers: CheckReport
    csp: CheckReport
    mixed_content: CheckReport
    vulnerabilities: List[Vulnerability] = []
    vulnerability_score: int = Field(default=100, ge=0, le=100)


class ViewportReport(_Frozen):
    present: bool
    content: Optional[str] = None
    configured: bool = False
    zoom_disabled: bool = False
    issues: List[str] = []
    score: int = Field(ge=0, le=100)


class MobileDetails(_Frozen):
    kind: Literal["mobile"] = "mobile"
    viewport: ViewportReport
    checks: Dict[str, CheckReport] = {}


class ContentDetails(_Frozen):
    kind: Literal["content"] = "content"
    word_count: int
    readability: ReadabilityResult
    grammar: GrammarResult
    structure: StructureResult
    freshness: CheckReport
    engagement: CheckReport


class CrossBrowserDetails(_Frozen):
    kind: Literal["cross_browser"] = "cross_browser"
    checks: Dict[str, CheckReport] = {}
    features: List[str] = []


class AnalyticsDetails(_Frozen):
    kind: Literal["analytics"] = "analytics"
    tools: List[str] = []
    data_layer: bool = False
    event_tracking: bool = False
    consent_management: bool = False
    checks: Dict[str, CheckReport] = {}


class ChatbotDetails(_Frozen):
    kind: Literal["chatbot"] = "chatbot"
    detected: bool = False
    chatbot_type: Literal["none", "traditional", "ai"] = "none"
    visible: bool = False
    providers: List[str] = []
    indicators: List[str] = []


class FailedDetails(_Frozen):
    kind: Literal["failed"] = "failed"
    error_type: str
    error: str


ModuleDetails = Annotated[
    Union[
        SeoDetails,
        PerformanceDetails,
        AccessibilityDetails,
        SecurityDetails,
        MobileDetails,
        ContentDetails,
        CrossBrowserDetails,
        AnalyticsDetails,
        ChatbotDetails,
        FailedDetails,
    ],
    Field(discriminator="kind"),
]


class ModuleResult(_Frozen):
    module: ModuleId
    score: int = Field(ge=0, le=100)
    issues: List[Issue] = []
    details: ModuleDetails
    status: ModuleStatus = "ok"
    duration_ms: int = 0

    @property
    def failed(self) -> bool:
        return self.status == "failed"
