"""Tests for the text analysis heuristics."""

from __future__ import annotations

from src.agent_knowledge.text_analysis import (
    analyze,
    detect_language,
    estimate_pages,
    extract_keywords,
    has_numerical_data,
    has_table_structure,
)


class TestDetectLanguage:
    """Stopword-based language detection."""

    def test_portuguese(self):
        assert detect_language("O gato está em casa e não sai") == "pt"

    def test_english(self):
        assert detect_language("The cat is in the house and is not going out") == "en"

    def test_german(self):
        assert detect_language("Der Hund und die Katze sind nicht mit dem Auto") == "de"

    def test_no_stopwords_is_unknown(self):
        assert detect_language("xyzzy plugh 12345") == "unknown"

    def test_empty_is_unknown(self):
        assert detect_language("") == "unknown"


class TestExtractKeywords:
    """Regex keyword extraction."""

    def test_measurements_and_vocabulary(self):
        keywords = extract_keywords(
            "Installation requires 2.5 m of required space. Check the dimensions."
        )
        assert "2.5 m" in keywords
        assert "required space" in keywords
        assert "installation" in keywords
        assert "dimensions" in keywords

    def test_portuguese_terms(self):
        keywords = extract_keywords("Verifique o espaço necessário antes da instalação.")
        assert "espaço necessário" in keywords
        assert "instalação" in keywords

    def test_deduplicated_and_lowercased(self):
        keywords = extract_keywords("Setup, SETUP and setup again")
        assert keywords.count("setup") == 1

    def test_capitalised_phrases(self):
        keywords = extract_keywords("We ship the Rowing Station worldwide.")
        assert "rowing station" in keywords

    def test_currency_and_percentages(self):
        keywords = extract_keywords("Discount of 15% on R$ 300 orders")
        assert "15%" in keywords
        assert "r$ 300" in keywords


class TestStructureDetection:
    """Numerical data and table detection."""

    def test_decimal_number(self):
        assert has_numerical_data("The distance is 1.5 between posts") is True

    def test_units(self):
        assert has_numerical_data("Weighs 40 kg") is True

    def test_brazilian_price(self):
        assert has_numerical_data("O produto custa R$ 99,90") is True

    def test_plain_text_has_no_numbers(self):
        assert has_numerical_data("No figures in here at all") is False
        assert has_numerical_data("hello world") is False

    def test_pipe_table(self):
        assert has_table_structure("| model | size |\n| A | 2 m |") is True

    def test_tab_table(self):
        assert has_table_structure("a\tb\tc\td") is True

    def test_prose_is_not_a_table(self):
        assert has_table_structure("Just a sentence, nothing tabular.") is False


class TestAnalyze:
    """Combined analysis."""

    def test_estimate_pages(self):
        assert estimate_pages("") == 0
        assert estimate_pages("a" * 3000) == 1
        assert estimate_pages("a" * 3001) == 2

    def test_analyze_collects_everything(self):
        result = analyze("The equipment needs 3.2 m and the installation is simple.")
        assert result.language == "en"
        assert result.has_numbers is True
        assert "equipment" in result.keywords
        assert result.char_count == len(
            "The equipment needs 3.2 m and the installation is simple."
        )
        assert result.estimated_pages == 1
