from services.concierge.completion.providers import (
    AnthropicCompletionProvider,
    Completion,
    CompletionProvider,
    CompletionStream,
    FallbackCompletionProvider,
    categorize_error,
    estimate_cost,
)

__all__ = [
    "AnthropicCompletionProvider",
    "Completion",
    "CompletionProvider",
    "CompletionStream",
    "FallbackCompletionProvider",
    "categorize_error",
    "estimate_cost",
]
