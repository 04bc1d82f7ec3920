from .base import CompletionProvider, CompletionRequest
from .registry import get_provider, reset_providers

__all__ = ["CompletionProvider", "CompletionRequest", "get_provider", "reset_providers"]
