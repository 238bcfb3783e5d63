"""
Dictionary and rule based spelling, grammar and style checks.
"""

import re
from typing import Dict, List, Pattern, Tuple

from services.scoring import clamp_score, round_half_up

from .models import GrammarResult, MatchType, TextMatch

CONTEXT_CHARS = 20

COMMON_MISSPELLINGS: Dict[str, str] = {
    "accomodate": "accommodate",
    "acheive": "achieve",
    "accross": "across",
    "agressive": "aggressive",
    "apparant": "apparent",
    "begining": "beginning",
    "beleive": "believe",
    "buisness": "business",
    "calender": "calendar",
    "catagory": "category",
    "cemetary": "cemetery",
    "collegue": "colleague",
    "comming": "coming",
    "commited": "committed",
    "concious": "conscious",
    "definately": "definitely",
    "dissapoint": "disappoint",
    "embarass": "embarrass",
    "enviroment": "environment",
    "existance": "existence",
    "familar": "familiar",
    "finaly": "finally",
    "foriegn": "foreign",
    "goverment": "government",
    "grammer": "grammar",
    "happend": "happened",
    "harrassment": "harassment",
    "immediatly": "immediately",
    "independant": "independent",
    "interupt": "interrupt",
    "knowlege": "knowledge",
    "liason": "liaison",
    "libary": "library",
    "lisence": "license",
    "maintainance": "maintenance",
    "millenium": "millennium",
    "neccessary": "necessary",
    "noticable": "noticeable",
    "occassion": "occasion",
    "occured": "occurred",
    "persistant": "persistent",
    "pharoah": "pharaoh",
    "posession": "possession",
    "prefered": "preferred",
    "publically": "publicly",
    "recieve": "receive",
    "recomend": "recommend",
    "refered": "referred",
    "relevent": "relevant",
    "religous": "religious",
    "rember": "remember",
    "seperate": "separate",
    "seige": "siege",
    "succesful": "successful",
    "supercede": "supersede",
    "supress": "suppress",
    "tommorow": "tomorrow",
    "truely": "truly",
    "unforseen": "unforeseen",
    "unfortunatly": "unfortunately",
    "untill": "until",
    "wierd": "weird",
}


def _rule(pattern: str) -> Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# (pattern, message, suggested rewrite)
GRAMMAR_RULES: Tuple[Tuple[Pattern[str], str, str], ...] = (
    (
        _rule(r"\b(its|it's)\s+(?:a|the)\s+(?:company|business|organization|group|team)(?:'s)?\s+(?:that|which|who)\b"),
        "Use 'that' not 'who' for companies",
        "it's a company that",
    ),
    (_rule(r"\b(there|their|they're)\s+(is|are)\b"), "Check usage of 'there', 'their', or 'they're'", "there is"),
    (_rule(r"\b(your|you're)\s+(welcome|welcomed)\b"), "Check usage of 'your' vs 'you're'", "you're welcome"),
    (_rule(r"\b(affect|effect)\s+(on|upon)\b"), "Check usage of 'affect' vs 'effect'", "effect on"),
    (_rule(r"\b(accept|except)\s+(for|from|that)\b"), "Check usage of 'accept' vs 'except'", "except for"),
    (_rule(r"\b(advice|advise)\s+(on|about)\b"), "Check usage of 'advice' vs 'advise'", "advice on"),
    (
        _rule(r"\b(amount|number)\s+of\s+(?:people|employees|customers|users)\b"),
        "Use 'number of' for countable items, not 'amount of'",
        "number of people",
    ),
    (
        _rule(r"\b(between|among)\s+the\s+(?:three|four|five|six|seven|eight|nine|ten)\b"),
        "Use 'among' for three or more items, not 'between'",
        "among the three",
    ),
    (
        _rule(r"\b(less|fewer)\s+(?:people|employees|customers|users|items|products)\b"),
        "Use 'fewer' for countable items, not 'less'",
        "fewer people",
    ),
    (_rule(r"\b(which|that)\s+(?:he|she|they|we|you)\b"), "Use 'who' for people, not 'which' or 'that'", "who they"),
)

STYLE_RULES: Tuple[Tuple[Pattern[str], str], ...] = (
    (
        _rule(r"\b(very|really|extremely|incredibly|absolutely)\s+\w+"),
        "Consider removing intensifiers like 'very', 'really', etc. for stronger writing",
    ),
    (_rule(r"\b(in order to|due to the fact that|for the purpose of|in the event that)\b"), "Consider simplifying wordy phrases"),
    (_rule(r"\b(utilize|utilization|utilizes|utilizing)\b"), "Consider using 'use' instead of 'utilize' for simplicity"),
    (_rule(r"\b(at this point in time|at the present time)\b"), "Consider using 'now' or 'currently' instead"),
    (_rule(r"\bthe fact that\b"), "Consider removing 'the fact that' for conciseness"),
    (_rule(r"\b(is able to|are able to|was able to|were able to)\b"), "Consider using 'can', 'could', or 'may' instead"),
    (_rule(r"\b(a large number of|a majority of)\b"), "Consider using 'many' or 'most' instead"),
    (_rule(r"\b(firstly|secondly|thirdly|lastly)\b"), "Consider using 'first', 'second', 'third', 'last' instead"),
    (_rule(r"\b(commence|commenced|commences|commencing)\b"), "Consider using 'begin' or 'start' instead of 'commence'"),
    (_rule(r"\b(prior to|subsequent to)\b"), "Consider using 'before' or 'after' instead"),
)

_WORD_RE = re.compile(r"\b[A-Za-z]+\b")


def _context(text: str, offset: int, length: int) -> str:
    start = max(0, offset - CONTEXT_CHARS)
    end = min(len(text), offset + length + CONTEXT_CHARS)
    return text[start:end]


def _plural(count: int, noun: str) -> str:
    return f"Found {count} {noun}{'' if count == 1 else 's'}"


class GrammarAnalyzer:
    """Flags misspellings, confusable word pairs and wordy constructions."""

    def __init__(
        self,
        misspellings: Dict[str, str] = COMMON_MISSPELLINGS,
        grammar_rules=GRAMMAR_RULES,
        style_rules=STYLE_RULES,
    ):
        self.misspellings = misspellings
        self.grammar_rules = grammar_rules
        self.style_rules = style_rules

    def analyze(self, text: str) -> GrammarResult:
        text = text or ""
        spelling = self._spelling_matches(text)
        grammar = [
            self._match(text, MatchType.GRAMMAR, found.start(), found.end(), message, suggestion)
            for pattern, message, suggestion in self.grammar_rules
            for found in pattern.finditer(text)
        ]
        style = [
            self._match(text, MatchType.STYLE, found.start(), found.end(), message)
            for pattern, message in self.style_rules
            for found in pattern.finditer(text)
        ]

        issues: List[str] = []
        if spelling:
            issues.append(_plural(len(spelling), "spelling error"))
        if grammar:
            issues.append(_plural(len(grammar), "grammar error"))
        if style:
            issues.append(_plural(len(style), "style issue"))

        word_count = len(text.split())
        return GrammarResult(
            spelling_errors=len(spelling),
            grammar_errors=len(grammar),
            style_issues=len(style),
            word_count=word_count,
            matches=spelling + grammar + style,
            issues=issues,
            score=self._score(len(spelling) + len(grammar), len(style), word_count),
        )

    def _spelling_matches(self, text: str) -> List[TextMatch]:
        matches = []
        for found in _WORD_RE.finditer(text):
            correction = self.misspellings.get(found.group(0).lower())
            if correction:
                matches.append(
                    self._match(
                        text,
                        MatchType.SPELLING,
                        found.start(),
                        found.end(),
                        f'"{found.group(0)}" should be "{correction}"',
                        correction,
                    )
                )
        return matches

    @staticmethod
    def _match(text: str, kind: MatchType, start: int, end: int, message: str, suggestion=None) -> TextMatch:
        return TextMatch(
            type=kind,
            message=message,
            offset=start,
            length=end - start,
            context=_context(text, start, end - start),
            suggestion=suggestion,
        )

    @staticmethod
    def _score(errors: int, style_issues: int, word_count: int) -> int:
        if word_count <= 0:
            return 100
        score = 100 - min(100, round_half_up(1000 * errors / word_count))
        score -= min(20, round_half_up(500 * style_issues / word_count))
        return clamp_score(score)
