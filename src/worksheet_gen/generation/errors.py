"""Error taxonomy of the generation pipeline."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class GenerationError(Exception):
    """Base generation error."""

    message: str
    code: str = "generation_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class ProviderError(GenerationError):
    """Content provider call failed or replied with unusable output.

    Fatal on the primary call of an episode, recoverable during backfill.
    """

    code: str = "provider_error"
    status_code: int | None = None


@dataclass(slots=True)
class QuotaExhaustedError(GenerationError):
    """Account has no generation quota left."""

    code: str = "quota_exhausted"
    account_id: str | None = None


@dataclass(slots=True)
class GenerationFailedError(GenerationError):
    """Episode failed fatally; the charged quota unit was returned."""

    code: str = "generation_failed"
    account_id: str | None = None
