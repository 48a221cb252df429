"""Unit tests for source preparation"""

import pytest

from litflow.models.config import ContentConfig
from litflow.models.paper import Author, ContentType, FullTextStatus, PaperRecord
from litflow.services.content_analysis import classify_content_type, prepare_sources


def words(n: int) -> str:
    return " ".join(["token"] * n)


def make_paper(pid: str, **overrides) -> PaperRecord:
    data = {"id": pid, "title": f"Title {pid}"}
    data.update(overrides)
    return PaperRecord(**data)


class TestClassifyContentType:
    """Tests for content type classification."""

    def test_full_text_flag_wins(self):
        """Test has_full_text always means FULL_TEXT."""
        assert classify_content_type("short", True) == ContentType.FULL_TEXT

    @pytest.mark.parametrize(
        "count,expected",
        [
            (0, ContentType.NONE),
            (49, ContentType.NONE),
            (50, ContentType.ABSTRACT),
            (249, ContentType.ABSTRACT),
            (250, ContentType.ABSTRACT_OVERFLOW),
        ],
    )
    def test_abstract_thresholds(self, count, expected):
        """Test word-count thresholds."""
        assert classify_content_type(words(count), False) == expected

    def test_none_text(self):
        """Test missing text is NONE."""
        assert classify_content_type(None, False) == ContentType.NONE

    def test_custom_thresholds(self):
        """Test thresholds come from ContentConfig."""
        config = ContentConfig(min_abstract_words=5, min_abstract_overflow_words=10)
        assert classify_content_type(words(6), False, config) == ContentType.ABSTRACT


class TestPrepareSources:
    """Tests for prepare_sources."""

    def test_prefers_fetched_full_text(self):
        """Test full text from the fetch stage replaces the abstract."""
        paper = make_paper("s1", abstract=words(60))
        fetched = make_paper(
            "lib-1",
            full_text=words(300),
            has_full_text=True,
            full_text_status=FullTextStatus.SUCCESS,
            full_text_word_count=300,
        )

        result = prepare_sources(
            [paper], full_text_map={"s1": fetched}, id_mapping={"s1": "lib-1"}
        )

        source = result.sources[0]
        assert source.id == "lib-1"
        assert source.content_type == ContentType.FULL_TEXT
        assert source.word_count == 300
        assert result.breakdown.full_text == 1

    def test_failed_full_text_falls_back_to_abstract(self):
        """Test a FAILED full-text status uses the abstract."""
        paper = make_paper(
            "s1",
            abstract=words(60),
            full_text=words(300),
            full_text_status=FullTextStatus.FAILED,
        )

        result = prepare_sources([paper])

        assert result.sources[0].content_type == ContentType.ABSTRACT
        assert result.sources[0].word_count == 60

    def test_long_abstract_is_overflow(self):
        """Test 250+ word abstracts are ABSTRACT_OVERFLOW."""
        result = prepare_sources([make_paper("s1", abstract=words(260))])
        assert result.breakdown.abstract_overflow == 1

    def test_skips_papers_without_content(self):
        """Test papers with neither abstract nor full text are skipped."""
        result = prepare_sources([make_paper("s1")])

        assert result.sources == []
        assert result.skipped[0].reason == "No abstract or full-text available"
        assert result.breakdown.none == 1

    def test_skips_short_content(self):
        """Test content of min_content_length chars or less is skipped."""
        result = prepare_sources([make_paper("s1", abstract="x" * 50)])

        assert result.total_with_content == 0
        assert result.skipped[0].reason == "Content too short (50 chars, need >50)"

    def test_just_over_threshold_is_kept(self):
        """Test 51 characters is enough content."""
        result = prepare_sources([make_paper("s1", abstract="x" * 51)])
        assert result.total_with_content == 1
        assert result.sources[0].content_type == ContentType.NONE
        assert result.breakdown.none == 1

    def test_source_carries_metadata(self):
        """Test authors, year, doi and keywords are passed through."""
        paper = make_paper(
            "s1",
            abstract=words(60),
            authors=[Author(name="Ada Lovelace"), Author(name="Alan Turing")],
            year=2021,
            doi="10.1000/xyz",
            keywords=["graphs"],
        )

        source = prepare_sources([paper]).sources[0]

        assert source.authors == ["Ada Lovelace", "Alan Turing"]
        assert source.year == 2021
        assert source.doi == "10.1000/xyz"
        assert source.url == "10.1000/xyz"
        assert source.keywords == ["graphs"]

    def test_id_falls_back_to_original(self):
        """Test unmapped papers keep their own ID."""
        source = prepare_sources([make_paper("s1", abstract=words(60))]).sources[0]
        assert source.id == "s1"

    def test_totals_and_average(self):
        """Test selection counts and average content length."""
        papers = [
            make_paper("a", abstract="y" * 100),
            make_paper("b", abstract="y" * 200),
            make_paper("c"),
        ]

        result = prepare_sources(papers)

        assert result.total_selected == 3
        assert result.total_with_content == 2
        assert result.total_skipped == 1
        assert result.average_content_length == 150

    def test_empty_selection(self):
        """Test no papers gives an empty result."""
        result = prepare_sources([])
        assert result.total_selected == 0
        assert result.average_content_length == 0
