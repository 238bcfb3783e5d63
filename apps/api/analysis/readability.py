"""
Readability indices (Flesch, SMOG, Coleman-Liau, ARI) for page text.
"""

import math
import re
from typing import List, Tuple

from services.scoring import clamp_score

from .models import ReadabilityResult

_CLEAN_WHITESPACE_RE = re.compile(r"\s+")
_CLEAN_SYMBOLS_RE = re.compile(r"[^\w\s.!?]")
_SENTENCE_END_RE = re.compile(r"[.!?]+")
_NON_LETTER_RE = re.compile(r"[^a-z]")
_SILENT_ENDING_RE = re.compile(r"(?:[^laeiouy]es|ed|[^laeiouy]e)$")
_LEADING_Y_RE = re.compile(r"^y")
_VOWEL_GROUP_RE = re.compile(r"[aeiouy]{1,2}")

MAX_SENTENCE_LENGTH = 25
MAX_WORD_LENGTH = 5.5
GRADE_RANGE = (6, 12)

# (minimum Flesch score, label, equivalent grade)
FLESCH_BANDS: Tuple[Tuple[float, str, float], ...] = (
    (90, "Very Easy (5th grade)", 5),
    (80, "Easy (6th grade)", 6),
    (70, "Fairly Easy (7th grade)", 7),
    (60, "Standard (8th-9th grade)", 8.5),
    (50, "Fairly Difficult (10th-12th grade)", 11),
    (30, "Difficult (College)", 14),
)
FLESCH_FLOOR = ("Very Difficult (College Graduate)", 18)


def clean_text(text: str) -> str:
    collapsed = _CLEAN_WHITESPACE_RE.sub(" ", text or "")
    return _CLEAN_SYMBOLS_RE.sub("", collapsed).strip()


def count_word_syllables(word: str) -> int:
    """Heuristic syllable count; never less than 1."""
    letters = _NON_LETTER_RE.sub("", word.lower())
    if len(letters) <= 3:
        return 1
    letters = _SILENT_ENDING_RE.sub("", letters)
    letters = _LEADING_Y_RE.sub("", letters)
    groups = _VOWEL_GROUP_RE.findall(letters)
    return len(groups) or 1


def flesch_reading_ease(words: int, sentences: int, syllables: int) -> float:
    return 206.835 - 1.015 * (words / sentences) - 84.6 * (syllables / words)


def flesch_band(score: float) -> Tuple[str, float]:
    for minimum, label, grade in FLESCH_BANDS:
        if score >= minimum:
            return label, grade
    return FLESCH_FLOOR


def smog_index(sentences: int, complex_words: int) -> float:
    return 1.043 * math.sqrt(complex_words * (30 / sentences)) + 3.1291


def coleman_liau_index(words: int, sentences: int, characters: int) -> float:
    letters_per_100 = (characters / words) * 100
    sentences_per_100 = (sentences / words) * 100
    return 0.0588 * letters_per_100 - 0.296 * sentences_per_100 - 15.8


def automated_readability_index(characters: int, words: int, sentences: int) -> float:
    return 4.71 * (characters / words) + 0.5 * (words / sentences) - 21.43


class ReadabilityAnalyzer:
    """Scores how easy a block of text is to read."""

    def analyze(self, text: str) -> ReadabilityResult:
        cleaned = clean_text(text)
        tokens = cleaned.split()

        # Counts are floored at 1 so the ratios below stay defined for empty text.
        sentences = len(_SENTENCE_END_RE.findall(cleaned)) or 1
        words = len(tokens) or 1
        characters = len(re.sub(r"\s", "", cleaned)) or 1
        syllable_counts = [count_word_syllables(token) for token in tokens]
        syllables = sum(syllable_counts) or 1
        complex_words = sum(1 for count in syllable_counts if count >= 3)

        average_sentence_length = words / sentences
        average_word_length = characters / words

        flesch = flesch_reading_ease(words, sentences, syllables)
        label, flesch_grade = flesch_band(flesch)
        smog = smog_index(sentences, complex_words)
        coleman = coleman_liau_index(words, sentences, characters)
        ari = automated_readability_index(characters, words, sentences)
        average_grade = (flesch_grade + smog + coleman + ari) / 4

        issues: List[str] = []
        if average_sentence_length > MAX_SENTENCE_LENGTH:
            issues.append("Average sentence length is too high (over 25 words)")
        if average_word_length > MAX_WORD_LENGTH:
            issues.append("Average word length is high, consider using simpler words")
        if average_grade > GRADE_RANGE[1]:
            issues.append("Content may be too difficult for general audience (above 12th grade level)")
        elif average_grade < GRADE_RANGE[0]:
            issues.append("Content may be too simplistic for professional context (below 6th grade level)")

        return ReadabilityResult(
            flesch_reading_ease=round(flesch, 2),
            flesch_grade_label=label,
            smog_index=round(smog, 2),
            coleman_liau_index=round(coleman, 2),
            automated_readability_index=round(ari, 2),
            average_grade_level=round(average_grade, 2),
            average_sentence_length=round(average_sentence_length, 2),
            average_word_length=round(average_word_length, 2),
            sentence_count=sentences,
            word_count=len(tokens),
            syllable_count=syllables,
            complex_word_count=complex_words,
            issues=issues,
            score=self._score(flesch, issues),
        )

    def _score(self, flesch: float, issues: List[str]) -> int:
        if flesch < 30:
            score = 50
        elif flesch < 50:
            score = 70
        elif flesch > 90:
            score = 80
        else:
            score = 100
        return clamp_score(score - 10 * len(issues))
