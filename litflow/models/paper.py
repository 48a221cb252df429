from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Author(BaseModel):
    """Paper author information"""
    name: str
    author_id: Optional[str] = None
    affiliation: Optional[str] = None


class FullTextStatus(str, Enum):
    NOT_FETCHED = "not_fetched"
    FETCHING = "fetching"
    SUCCESS = "success"
    FAILED = "failed"


class ContentType(str, Enum):
    """What kind of text a prepared source carries"""
    FULL_TEXT = "full_text"
    ABSTRACT_OVERFLOW = "abstract_overflow"
    ABSTRACT = "abstract"
    NONE = "none"


class PaperRecord(BaseModel):
    """A paper selected for extraction

    ``id`` is the caller's identifier (e.g. a search result ID).
    ``persisted_id`` is set once the record has been saved to the library.
    Validation of required fields happens at save time so that a bad record
    fails on its own instead of rejecting the whole selection.
    """
    # Identifiers
    id: str = ""
    persisted_id: Optional[str] = None
    doi: Optional[str] = None

    # Content
    title: str = ""
    abstract: Optional[str] = None
    full_text: Optional[str] = None
    has_full_text: bool = False
    full_text_status: FullTextStatus = FullTextStatus.NOT_FETCHED
    full_text_word_count: Optional[int] = Field(None, ge=0)

    # Metadata
    url: Optional[str] = None
    authors: List[Author] = Field(default_factory=list)
    year: Optional[int] = Field(None, ge=1800, le=2100)
    venue: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)

    # Metrics
    citation_count: int = Field(0, ge=0)

    def missing_required_fields(self) -> List[str]:
        """Names of required fields that are empty."""
        missing = []
        if not self.id.strip():
            missing.append("id")
        if not self.title.strip():
            missing.append("title")
        return missing


class SaveResult(BaseModel):
    """Return value of the persistence collaborator"""
    success: bool
    id: Optional[str] = None
