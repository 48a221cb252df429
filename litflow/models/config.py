"""Workflow configuration models

This module defines the data structures for:
- Retry and circuit breaker resilience settings
- Paper save batching and rate-limit pacing
- Full-text extraction timeout and ETA window
- Source count limits and content thresholds for extraction
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Literal


class RetryConfig(BaseModel):
    """Configuration for retry logic with exponential backoff

    Controls retry behavior for transient failures:
    - Number of attempts before giving up
    - Delay calculation parameters
    - Jitter for request spreading
    """

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum attempts (1 initial + N-1 retries)",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        gt=0.0,
        le=60.0,
        description="Base delay for exponential backoff",
    )
    max_delay_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Maximum delay cap",
    )
    jitter_factor: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Upper bound of the additive jitter, as a fraction of base delay",
    )

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "RetryConfig":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "max_attempts": 3,
                "base_delay_seconds": 1.0,
                "max_delay_seconds": 10.0,
                "jitter_factor": 0.2,
            }
        }
    )


class CircuitBreakerConfig(BaseModel):
    """Configuration for circuit breaker pattern

    Implements the circuit breaker pattern to prevent cascading failures:
    - CLOSED: Normal operation, requests allowed
    - OPEN: After failure threshold, requests blocked
    - HALF_OPEN: After reset timeout, testing with limited requests
    """

    failure_threshold: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Consecutive failures to open circuit",
    )
    success_threshold: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Consecutive successes to close from half-open",
    )
    reset_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=3600.0,
        description="Seconds before transitioning from OPEN to HALF_OPEN",
    )


class BatchSaveConfig(BaseModel):
    """Paper save pacing.

    Backend limit is 100 requests per 60 seconds (1.67 req/sec). One
    sequential save with a 0.7s gap keeps us at ~1.43 req/sec.
    """

    max_concurrency: int = Field(
        default=1, ge=1, le=50, description="Saves issued concurrently per batch"
    )
    inter_batch_delay_seconds: float = Field(
        default=0.7, ge=0.0, le=60.0, description="Sleep between batches"
    )
    retry: RetryConfig = Field(
        default_factory=lambda: RetryConfig(
            max_attempts=3, base_delay_seconds=2.0, max_delay_seconds=16.0
        )
    )


class ETAConfig(BaseModel):
    """Rolling-window ETA settings"""

    window_size: int = Field(default=10, ge=1, le=1000)
    min_samples: int = Field(default=3, ge=1, le=1000)

    @model_validator(mode="after")
    def validate_min_samples(self) -> "ETAConfig":
        if self.min_samples > self.window_size:
            raise ValueError("min_samples cannot exceed window_size")
        return self


class FullTextConfig(BaseModel):
    """Full-text extraction settings"""

    timeout_seconds: float = Field(
        default=300.0, gt=0.0, le=3600.0, description="Batch-level deadline"
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    eta: ETAConfig = Field(default_factory=ETAConfig)
    breaker_name: str = Field(default="fulltext_api", min_length=1)


class SourceLimits(BaseModel):
    """Business limits on the number of sources per extraction run

    Time estimates follow a fixed per-batch cost model: with the 10-minute
    extraction timeout, 500 sources is ~1.2s per source.
    """

    soft_limit: int = Field(default=300, ge=1, description="Warn above this count")
    hard_limit: int = Field(default=500, ge=1, description="Reject above this count")
    sources_per_batch: int = Field(default=10, ge=1)
    seconds_per_batch: float = Field(default=12.0, gt=0.0)

    @field_validator("hard_limit")
    @classmethod
    def validate_hard_limit(cls, v: int, info) -> int:
        values = info.data
        if "soft_limit" in values and v < values["soft_limit"]:
            raise ValueError("hard_limit must be >= soft_limit")
        return v


class ContentConfig(BaseModel):
    """Content thresholds used by the prepare stage"""

    min_content_length: int = Field(
        default=50, ge=0, description="Sources must be longer than this (chars)"
    )
    min_abstract_overflow_words: int = Field(default=250, ge=1)
    min_abstract_words: int = Field(default=50, ge=1)

    @model_validator(mode="after")
    def validate_word_thresholds(self) -> "ContentConfig":
        if self.min_abstract_overflow_words < self.min_abstract_words:
            raise ValueError(
                "min_abstract_overflow_words must be >= min_abstract_words"
            )
        return self


class WorkflowSettings(BaseModel):
    """Top-level settings for the extraction workflow"""

    batch_save: BatchSaveConfig = Field(default_factory=BatchSaveConfig)
    fulltext: FullTextConfig = Field(default_factory=FullTextConfig)
    source_limits: SourceLimits = Field(default_factory=SourceLimits)
    content: ContentConfig = Field(default_factory=ContentConfig)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_logs: bool = True
