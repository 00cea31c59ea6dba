"""Provider interface for generation calls."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from worksheet_gen.generation.models import TokenUsage


class ProviderRole(str, Enum):
    """Which pipeline stage issues a call; selects the model on HTTP providers."""

    GENERATION = "generation"
    AGENT = "agent"
    FIXER = "fixer"


@dataclass(slots=True)
class ProviderRequest:
    """Inputs of one provider call."""

    system_instructions: str
    user_instructions: str
    max_output_tokens: int
    temperature: float
    label: ProviderRole = ProviderRole.GENERATION


@dataclass(slots=True)
class ProviderReply:
    """Raw reply text and the token usage reported with it, if any."""

    text: str
    usage: TokenUsage | None = None


class ContentProvider(Protocol):
    """Protocol implemented by content providers."""

    def complete(self, request: ProviderRequest) -> ProviderReply:
        """Return the raw reply or raise `ProviderError`."""
