from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Any, Optional


@dataclass
class ExtractionResult:
    fields: Dict[str, Any] = field(default_factory=dict)
    confidence: Optional[float] = None


class ExtractionProvider(ABC):
    """Opaque AI vision provider: one metered call per invocation."""

    @abstractmethod
    async def extract(self, proof_type: str, image: str, expectations: Dict[str, Any]) -> ExtractionResult:
        """Derive structured fields from a proof image.

        Any failure (non-2xx, timeout, unparseable body) must raise
        ``ExternalDependencyError`` with code ``EXTRACTION_FAILED``.
        """
