"""
HTTP client for the external AI proof extraction service.

The provider is treated as an opaque, metered function. Non-2xx responses,
timeouts, transport errors and unparseable bodies are all reported the same
way: ``ExternalDependencyError('EXTRACTION_FAILED')``.
"""
import asyncio
import json
from typing import Dict, Any, Optional

import aiohttp

from affiliate_core.config import EXTRACTION_SETTINGS
from affiliate_core.errors import ExternalDependencyError
from affiliate_core.utils import get_logger
from .base import ExtractionProvider, ExtractionResult

logger = get_logger(__name__)


def _failure(message: str, **details: Any) -> ExternalDependencyError:
    return ExternalDependencyError("EXTRACTION_FAILED", message, details)


class HttpExtractionProvider(ExtractionProvider):
    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.url = url or str(EXTRACTION_SETTINGS["provider_url"])
        self.api_key = api_key if api_key is not None else EXTRACTION_SETTINGS.get("api_key")
        self.timeout_seconds = float(timeout_seconds or EXTRACTION_SETTINGS["timeout_seconds"])  # type: ignore[arg-type]

    async def extract(self, proof_type: str, image: str, expectations: Dict[str, Any]) -> ExtractionResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"proof_type": proof_type, "image": image, "expectations": expectations}
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                logger.debug("Calling extraction provider", url=self.url, proof_type=proof_type)
                async with session.post(self.url, headers=headers, json=payload) as response:
                    text = await response.text()
                    if not 200 <= response.status < 300:
                        logger.error(
                            "Extraction provider returned error status",
                            status_code=response.status,
                            proof_type=proof_type,
                        )
                        raise _failure(f"Extraction provider returned status {response.status}", status_code=response.status)
        except asyncio.TimeoutError:
            logger.error("Extraction provider timed out", proof_type=proof_type, timeout_seconds=self.timeout_seconds)
            raise _failure("Extraction provider timed out", timeout_seconds=self.timeout_seconds)
        except aiohttp.ClientError as e:
            logger.error("Extraction provider client error", proof_type=proof_type, error=str(e))
            raise _failure(f"Extraction provider client error: {e}")

        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.error("Extraction provider returned invalid JSON", proof_type=proof_type)
            raise _failure("Extraction provider returned an unparseable body")
        if not isinstance(data, dict) or not isinstance(data.get("fields", {}), dict):
            raise _failure("Extraction provider returned an unexpected shape")

        confidence = data.get("confidence")
        try:
            confidence = float(confidence) if confidence is not None else None
        except (TypeError, ValueError):
            raise _failure("Extraction provider returned a non-numeric confidence")
        return ExtractionResult(fields=dict(data.get("fields") or {}), confidence=confidence)
