"""Content provider clients."""

from worksheet_gen.generation.provider.base import (
    ContentProvider,
    ProviderReply,
    ProviderRequest,
    ProviderRole,
)

__all__ = ["ContentProvider", "ProviderReply", "ProviderRequest", "ProviderRole"]
