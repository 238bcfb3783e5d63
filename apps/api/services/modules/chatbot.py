"""Chat widget detection."""

from __future__ import annotations

import asyncio
from typing import List, Tuple

from bs4 import BeautifulSoup, Tag

from analysis.text import element_text, parse_html
from services.fetcher import FetchedPage
from services.modules.base import AuditContext, BaseAuditModule
from services.modules.types import ChatbotDetails, ModuleId, ModuleResult

WIDGET_SELECTORS = (
    '[class*="chat-widget"]', '[class*="chatbot"]', '[class*="chat-bot"]',
    '[class*="livechat"]', '[class*="live-chat"]', '[id*="chat-widget"]',
    '[id*="chatbot"]', '[id*="chat-bot"]', '[id*="livechat"]', '[id*="live-chat"]',
    ".intercom-launcher", "#intercom-container", '[class*="intercom"]',
    "#drift-widget", ".drift-widget-controller", '[class*="drift"]',
    ".zEWidget-launcher", '[class*="zopim"]', '[class*="zendesk"]',
    ".crisp-client", "#crisp-chatbox",
    "#tawkchat-container", ".tawk-min-container",
    "#freshchat-container", ".fc-widget-container",
    "#hubspot-messages-iframe-container", ".hs-chat-widget",
    "#olark-container", ".olark-launch-button",
    "#LP_DIV_1", '[class*="lp-chat"]',
    "#tidio-chat", ".tidio-chat-container",
    ".fb-customerchat", ".fb-messenger-checkbox",
    '[class*="whatsapp-chat"]', '[class*="whatsapp-widget"]',
    '[class*="chat-button"]', '[class*="chat-icon"]', '[class*="chat-bubble"]', '[class*="chat-toggle"]',
    '[class*="ai-chat"]', '[class*="ai-assistant"]', '[class*="chatgpt"]', '[class*="bot-widget"]',
)

PROVIDER_MARKERS: Tuple[Tuple[str, str], ...] = (
    ("intercom", "Intercom"),
    ("drift", "Drift"),
    ("zopim", "Zendesk Chat (Zopim)"),
    ("zendesk", "Zendesk Chat"),
    ("crisp", "Crisp"),
    ("tawk", "Tawk.to"),
    ("freshchat", "Freshchat"),
    ("hubspot", "HubSpot Chat"),
    ("olark", "Olark"),
    ("liveperson", "LivePerson"),
    ("tidio", "Tidio"),
    ("messenger", "Facebook Messenger"),
    ("customerchat", "Facebook Messenger"),
    ("whatsapp", "WhatsApp"),
    ("chatgpt", "ChatGPT/OpenAI"),
    ("ai-chat", "AI Chatbot"),
    ("ai-assistant", "AI Chatbot"),
)
AI_PROVIDERS = frozenset({"ChatGPT/OpenAI", "AI Chatbot"})

IFRAME_MARKERS = ("chat", "bot") + tuple(marker for marker, _ in PROVIDER_MARKERS)
SCRIPT_CONTENT_MARKERS = ("chatbot", "livechat") + tuple(
    marker for marker, _ in PROVIDER_MARKERS if marker not in ("messenger", "whatsapp", "customerchat")
)

CHAT_KEYWORDS = (
    "chat with us", "live chat", "chat now", "start chat", "chat support",
    "chat with support", "chat with an agent", "chat with a representative",
    "virtual assistant", "ai assistant", "chatbot", "chat bot", "message us",
)


def _hidden(tag: Tag) -> bool:
    style = (tag.get("style") or "").replace(" ", "").lower()
    return tag.has_attr("hidden") or "display:none" in style or "visibility:hidden" in style


def _signature(tag: Tag) -> str:
    classes = " ".join(tag.get("class") or [])
    return f"{tag.get('id') or ''} {classes} {tag.get('src') or ''}".lower()


def find_widgets(soup: BeautifulSoup) -> List[Tag]:
    found = {}
    for selector in WIDGET_SELECTORS:
        for tag in soup.select(selector):
            found[id(tag)] = tag
    return list(found.values())


def find_chat_iframes(soup: BeautifulSoup) -> List[Tag]:
    return [
        frame for frame in soup.find_all("iframe", src=True)
        if any(marker in frame["src"].lower() for marker in IFRAME_MARKERS)
    ]


def find_chat_scripts(soup: BeautifulSoup) -> List[Tag]:
    scripts = []
    for script in soup.find_all("script"):
        src = (script.get("src") or "").lower()
        content = script.get_text().lower()
        if any(marker in src for marker in IFRAME_MARKERS) or any(marker in content for marker in SCRIPT_CONTENT_MARKERS):
            scripts.append(script)
    return scripts


def identify_providers(tags: List[Tag]) -> List[str]:
    providers: List[str] = []
    for tag in tags:
        haystack = _signature(tag) + " " + (tag.get_text().lower() if tag.name == "script" else "")
        for marker, provider in PROVIDER_MARKERS:
            if marker in haystack and provider not in providers:
                providers.append(provider)
    return providers


class ChatbotModule(BaseAuditModule):
    module_id = ModuleId.CHATBOT
    label = "Chatbot"
    progress_message = "Detecting chat widgets..."

    async def run(self, context: AuditContext) -> ModuleResult:
        page = await context.page()
        return await asyncio.to_thread(self.evaluate, page)

    def evaluate(self, page: FetchedPage) -> ModuleResult:
        soup = parse_html(page.html)
        widgets = find_widgets(soup)
        iframes = find_chat_iframes(soup)
        scripts = find_chat_scripts(soup)
        body_text = element_text(soup.body or soup).lower()
        keywords = [keyword for keyword in CHAT_KEYWORDS if keyword in body_text]

        detected = bool(widgets or iframes or scripts)
        providers = identify_providers(widgets + iframes + scripts) if detected else []
        visible = any(not _hidden(tag) for tag in widgets + iframes)
        if not detected:
            chatbot_type = "none"
        elif AI_PROVIDERS.intersection(providers):
            chatbot_type = "ai"
        else:
            chatbot_type = "traditional"

        indicators = [f"{len(widgets)} widget element(s)"] if widgets else []
        if iframes:
            indicators.append(f"{len(iframes)} chat iframe(s)")
        if scripts:
            indicators.append(f"{len(scripts)} chat script(s)")
        indicators.extend(f'keyword "{keyword}"' for keyword in keywords)

        issues: List[str] = []
        score = 0
        if not detected:
            issues.append("No chatbot integration detected")
        else:
            score = 70
            if visible:
                score += 15
            else:
                issues.append("Chatbot is not visible on page load")
            if chatbot_type == "ai":
                score += 15

        details = ChatbotDetails(
            detected=detected,
            chatbot_type=chatbot_type,
            visible=visible,
            providers=providers,
            indicators=indicators,
        )
        return self.build_result(score, [self.issue(text, "minor") for text in issues], details)
