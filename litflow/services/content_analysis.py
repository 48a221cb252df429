"""Prepare stage: choose the text each paper contributes to extraction.

Full text wins when present and not marked failed; otherwise the abstract
is used. Sources whose chosen text is not longer than
``min_content_length`` characters are dropped with a recorded reason.
"""

from typing import Dict, List, Optional

import structlog

from litflow.models.config import ContentConfig
from litflow.models.paper import ContentType, FullTextStatus, PaperRecord
from litflow.models.workflow import (
    ContentBreakdown,
    PreparationResult,
    PreparedSource,
    SkippedSource,
)
from litflow.observability.metrics import SOURCES_PREPARED

logger = structlog.get_logger()


def classify_content_type(
    text: Optional[str],
    has_full_text: bool,
    config: Optional[ContentConfig] = None,
) -> ContentType:
    """Classify a paper's text by origin and length.

    Abstracts of 250+ words are treated as ABSTRACT_OVERFLOW (long enough to
    stand in for full text), 50+ words as ABSTRACT, anything shorter as NONE.
    """
    config = config or ContentConfig()
    if has_full_text:
        return ContentType.FULL_TEXT
    words = len(text.split()) if text else 0
    if words >= config.min_abstract_overflow_words:
        return ContentType.ABSTRACT_OVERFLOW
    if words >= config.min_abstract_words:
        return ContentType.ABSTRACT
    return ContentType.NONE


def _select_content(
    paper: PaperRecord, config: ContentConfig
) -> tuple[str, ContentType]:
    full_text = (paper.full_text or "").strip()
    if full_text and paper.full_text_status != FullTextStatus.FAILED:
        return full_text, ContentType.FULL_TEXT
    if paper.abstract:
        abstract = paper.abstract.strip()
        return abstract, classify_content_type(abstract, False, config)
    return "", ContentType.NONE


def prepare_sources(
    papers: List[PaperRecord],
    full_text_map: Optional[Dict[str, PaperRecord]] = None,
    id_mapping: Optional[Dict[str, str]] = None,
    config: Optional[ContentConfig] = None,
) -> PreparationResult:
    """Build extraction sources from the selected papers.

    Args:
        papers: The caller's selection, in order
        full_text_map: original ID → fetched record (full text, if any)
        id_mapping: original ID → persisted ID; prepared sources use the
            persisted ID when one exists
        config: Content thresholds

    Returns:
        PreparationResult with kept sources, skipped papers and a breakdown
    """
    config = config or ContentConfig()
    full_text_map = full_text_map or {}
    id_mapping = id_mapping or {}

    sources: List[PreparedSource] = []
    skipped: List[SkippedSource] = []
    breakdown = ContentBreakdown()

    for paper in papers:
        fetched = full_text_map.get(paper.id)
        if fetched is not None:
            paper = paper.model_copy(
                update={
                    "full_text": fetched.full_text,
                    "has_full_text": fetched.has_full_text,
                    "full_text_status": fetched.full_text_status,
                    "full_text_word_count": fetched.full_text_word_count,
                    "abstract": paper.abstract or fetched.abstract,
                }
            )

        content, content_type = _select_content(paper, config)

        if len(content) <= config.min_content_length:
            if not paper.abstract and not paper.full_text:
                reason = "No abstract or full-text available"
            else:
                reason = (
                    f"Content too short ({len(content)} chars, "
                    f"need >{config.min_content_length})"
                )
            skipped.append(SkippedSource(id=paper.id, title=paper.title, reason=reason))
            breakdown.none += 1
            SOURCES_PREPARED.labels(content_type=ContentType.NONE.value).inc()
            logger.debug(
                "source_skipped",
                paper_id=paper.id,
                title=paper.title[:60],
                reason=reason,
            )
            continue

        if content_type == ContentType.FULL_TEXT:
            breakdown.full_text += 1
        elif content_type == ContentType.ABSTRACT_OVERFLOW:
            breakdown.abstract_overflow += 1
        elif content_type == ContentType.ABSTRACT:
            breakdown.abstract += 1
        else:
            breakdown.none += 1
        SOURCES_PREPARED.labels(content_type=content_type.value).inc()

        sources.append(
            PreparedSource(
                id=id_mapping.get(paper.id, paper.id),
                title=paper.title,
                content=content,
                content_type=content_type,
                word_count=len(content.split()),
                authors=[a.name for a in paper.authors],
                year=paper.year,
                doi=paper.doi,
                url=paper.url or paper.doi,
                keywords=list(paper.keywords),
            )
        )

    average = (
        round(sum(len(s.content) for s in sources) / len(sources)) if sources else 0
    )
    result = PreparationResult(
        sources=sources,
        skipped=skipped,
        breakdown=breakdown,
        average_content_length=average,
        total_selected=len(papers),
    )
    logger.info(
        "sources_prepared",
        total_selected=result.total_selected,
        total_with_content=result.total_with_content,
        total_skipped=result.total_skipped,
        full_text=breakdown.full_text,
        abstract_overflow=breakdown.abstract_overflow,
        abstract=breakdown.abstract,
        no_content=breakdown.none,
        average_content_length=average,
    )
    return result
