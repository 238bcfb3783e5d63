"""
Linguistic analysis models and schemas.
"""

from typing import List, Dict, Any, Optional
from pydantic import BaseModel, Field
from enum import Enum


class MatchType(str, Enum):
    SPELLING = "spelling"
    GRAMMAR = "grammar"
    STYLE = "style"


class ReadabilityResult(BaseModel):
    """Readability indices computed from plain page text."""
    flesch_reading_ease: float
    flesch_grade_label: str        # "Standard (8th-9th grade)"
    smog_index: float
    coleman_liau_index: float
    automated_readability_index: float
    average_grade_level: float
    average_sentence_length: float
    average_word_length: float
    sentence_count: int
    word_count: int
    syllable_count: int
    complex_word_count: int
    issues: List[str] = []
    score: int


class TextMatch(BaseModel):
    """One dictionary or rule hit, located in the analyzed text."""
    type: MatchType
    message: str
    offset: int
    length: int
    context: str
    suggestion: Optional[str] = None


class GrammarResult(BaseModel):
    spelling_errors: int
    grammar_errors: int
    style_issues: int
    word_count: int
    matches: List[TextMatch] = []
    issues: List[str] = []
    score: int


class StructureCheck(BaseModel):
    """Score and findings of one structure sub-check (headings, lists, ...)."""
    score: int = Field(ge=0, le=100)
    issues: List[str] = []
    stats: Dict[str, Any] = {}


class StructureResult(BaseModel):
    headings: StructureCheck
    paragraphs: StructureCheck
    lists: StructureCheck
    sections: StructureCheck
    organization: StructureCheck
    issues: List[str] = []
    score: int
