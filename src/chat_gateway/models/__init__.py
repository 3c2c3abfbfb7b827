"""
Chat gateway data models.
"""

from .request import ChatMessage, GenerationOptions, Media
from .response import CompletionResult, StreamChunk, Usage, RawResponse, TransportMetadata
from .batch import BatchItemResult, ComparisonResult

__all__ = [
    "ChatMessage",
    "GenerationOptions",
    "Media",
    "CompletionResult",
    "StreamChunk",
    "Usage",
    "RawResponse",
    "TransportMetadata",
    "BatchItemResult",
    "ComparisonResult",
]
