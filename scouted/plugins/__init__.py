"""
Optional plugins for extended functionality.

Plugins provide capabilities that are not part of the core pipeline:
- classifier: secondary K-12 relevance classification (OpenRouter)
"""

from .classifier import (
    ClassifierState,
    CallOutcome,
    CallResult,
    OpenRouterClassifier,
    format_item,
    parse_completion,
)

__all__ = [
    "ClassifierState",
    "CallOutcome",
    "CallResult",
    "OpenRouterClassifier",
    "format_item",
    "parse_completion",
]
