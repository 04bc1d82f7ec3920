from .composer import DEFAULT_SYSTEM_PROMPT, PromptComposer, compose

__all__ = ["DEFAULT_SYSTEM_PROMPT", "PromptComposer", "compose"]
