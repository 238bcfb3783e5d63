import pytest
from analysis.readability import (
    FLESCH_FLOOR,
    ReadabilityAnalyzer,
    count_word_syllables,
    flesch_band,
    flesch_reading_ease,
)

@pytest.fixture
def analyzer():
    return ReadabilityAnalyzer()

@pytest.fixture
def short_sentences():
    return "The cat sat on the mat. The dog ran to the park. We had fun in the sun."

@pytest.fixture
def long_sentence():
    """One 33-word sentence."""
    return " ".join(["the quick brown fox jumps over the lazy dog and then"] * 3) + "."

def test_syllable_heuristic():
    assert count_word_syllables("cat") == 1
    assert count_word_syllables("table") == 2
    assert count_word_syllables("jumped") == 1
    assert count_word_syllables("reading") == 2

def test_flesch_formula():
    assert flesch_reading_ease(100, 5, 150) == pytest.approx(59.635)

def test_flesch_bands():
    assert flesch_band(95) == ("Very Easy (5th grade)", 5)
    assert flesch_band(65) == ("Standard (8th-9th grade)", 8.5)
    assert flesch_band(10) == FLESCH_FLOOR

def test_longer_sentences_read_harder(analyzer, short_sentences, long_sentence):
    easy = analyzer.analyze(short_sentences)
    hard = analyzer.analyze(long_sentence)

    assert easy.sentence_count == 3
    assert hard.sentence_count == 1
    assert hard.word_count == 33
    assert hard.flesch_reading_ease < easy.flesch_reading_ease
    assert "Average sentence length is too high (over 25 words)" in hard.issues
    assert "Average sentence length is too high (over 25 words)" not in easy.issues

def test_empty_text_is_defined(analyzer):
    result = analyzer.analyze("")

    assert result.word_count == 0
    assert result.sentence_count == 1
    assert "Content may be too simplistic for professional context (below 6th grade level)" in result.issues
    assert result.score == 70

def test_score_stays_in_range(analyzer, long_sentence):
    result = analyzer.analyze(long_sentence * 2)
    assert 0 <= result.score <= 100

@pytest.mark.parametrize("words", range(1, 40))
def test_flesch_drops_as_single_sentence_grows(analyzer, words):
    shorter = analyzer.analyze(" ".join(["cat"] * words) + ".")
    longer = analyzer.analyze(" ".join(["cat"] * (words + 1)) + ".")

    assert shorter.sentence_count == longer.sentence_count == 1
    assert longer.flesch_reading_ease < shorter.flesch_reading_ease
