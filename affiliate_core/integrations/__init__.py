"""
Integrations package initialization.
Exports the external extraction provider interface and HTTP client.
"""
from .base import ExtractionProvider, ExtractionResult
from .extraction_provider import HttpExtractionProvider

__all__ = [
    "ExtractionProvider",
    "ExtractionResult",
    "HttpExtractionProvider",
]
