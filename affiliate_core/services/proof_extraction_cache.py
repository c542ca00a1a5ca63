"""Proof extraction cache: at most one paid provider call per (order, proof type).

Flow of ``get_or_extract``:
1. Unless forced, a stored extraction is returned as ``cached=True`` with its
   original timestamp. No provider call.
2. Expectations required by the proof type are validated before anything is
   sent to the provider (order/payment: order id + amount; rating: buyer +
   product name; review/return window: image only).
3. The provider is called under a timeout while a per-key lock is held, so
   concurrent requests in this process for the same key wait and then read
   the stored result instead of paying twice.
4. Success upserts the entry with a fresh timestamp and returns ``cached=False``.
   Failure propagates as ``EXTRACTION_FAILED`` and leaves the cache untouched.

Entries live in ``proof_extractions`` keyed by (order id, proof type), so other
order fields can be rewritten concurrently without disturbing them.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from affiliate_core.config import EXTRACTION_SETTINGS
from affiliate_core.errors import CoreError, ExternalDependencyError, ValidationFailed
from affiliate_core.integrations.base import ExtractionProvider, ExtractionResult
from affiliate_core.models.db.enums import ProofType
from affiliate_core.models.db.orders import Order
from affiliate_core.models.db.proof_extractions import ProofExtraction
from affiliate_core.services.audit import write_audit_log
from affiliate_core.services.order_state_machine import get_order
from affiliate_core.utils import ensure_utc, get_logger, utc_now

logger = get_logger(__name__)

REQUIRED_EXPECTATIONS: Dict[ProofType, Tuple[str, ...]] = {
    ProofType.ORDER: ("expected_order_id", "expected_amount_paise"),
    ProofType.PAYMENT: ("expected_order_id", "expected_amount_paise"),
    ProofType.RATING: ("expected_buyer_name", "expected_product_name"),
    ProofType.REVIEW: (),
    ProofType.RETURN_WINDOW: (),
}


@dataclass
class CachedExtraction:
    order_id: int
    proof_type: ProofType
    fields: Dict[str, Any]
    confidence: Optional[float]
    extracted_at: datetime
    cached: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "proof_type": self.proof_type.value,
            "fields": dict(self.fields),
            "confidence": self.confidence,
            "extracted_at": self.extracted_at.isoformat(),
            "cached": self.cached,
        }


@dataclass
class PrewarmItem:
    order_id: int
    proof_type: ProofType
    expectations: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PrewarmSummary:
    total: int = 0
    extracted: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "extracted": self.extracted,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
        }


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    extractions: int = 0
    failures: int = 0


# ------------------------------- Helpers -------------------------------- #

def validate_expectations(proof_type: ProofType, expectations: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    expectations = dict(expectations or {})
    missing = [k for k in REQUIRED_EXPECTATIONS[proof_type] if expectations.get(k) in (None, "")]
    if missing:
        raise ValidationFailed(
            "MISSING_EXPECTATIONS",
            f"{proof_type.value} proof extraction requires: {', '.join(missing)}",
            {"proof_type": proof_type.value, "missing": missing},
        )
    return expectations


def expectations_from_order(order: Order) -> Dict[str, Any]:
    """Default expectations derived from what the order already records."""
    first_title = next((i.get("title") for i in order.items or [] if i.get("title")), None)
    derived = {
        "expected_order_id": order.external_order_id,
        "expected_amount_paise": order.total_paise,
        "expected_buyer_name": order.buyer_name,
        "expected_product_name": first_title,
    }
    return {k: v for k, v in derived.items() if v not in (None, "")}


def load_extraction(session: Session, order_id: int, proof_type: ProofType) -> Optional[ProofExtraction]:
    return (
        session.query(ProofExtraction)
        .filter(ProofExtraction.order_id == order_id, ProofExtraction.proof_type == proof_type)
        .one_or_none()
    )


def delete_extraction(session: Session, order_id: int, proof_type: ProofType) -> bool:
    """Drop one cache key in the caller's transaction."""
    deleted = (
        session.query(ProofExtraction)
        .filter(ProofExtraction.order_id == order_id, ProofExtraction.proof_type == proof_type)
        .delete(synchronize_session="fetch")
    )
    return bool(deleted)


def _as_result(row: ProofExtraction, cached: bool) -> CachedExtraction:
    return CachedExtraction(
        order_id=row.order_id,
        proof_type=ProofType(row.proof_type),
        fields=dict(row.fields or {}),
        confidence=row.confidence,
        extracted_at=ensure_utc(row.extracted_at),  # type: ignore[arg-type]
        cached=cached,
    )


# -------------------------------- Cache --------------------------------- #

class ProofExtractionCache:
    """Caching layer in front of an ``ExtractionProvider``."""

    def __init__(
        self,
        provider: ExtractionProvider,
        *,
        timeout_seconds: Optional[float] = None,
        per_key_lock: Optional[bool] = None,
    ):
        self.provider = provider
        self.timeout_seconds = float(timeout_seconds or EXTRACTION_SETTINGS["timeout_seconds"])  # type: ignore[arg-type]
        self.per_key_lock = bool(EXTRACTION_SETTINGS["per_key_lock"] if per_key_lock is None else per_key_lock)
        self._locks: Dict[Tuple[int, str], List[Any]] = {}
        self._stats = CacheStats()

    @asynccontextmanager
    async def _key_lock(self, key: Tuple[int, str]) -> AsyncIterator[None]:
        # [lock, holders]; the entry is dropped when nobody holds or waits on it.
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._locks.pop(key, None)

    async def _call_provider(self, proof_type: ProofType, image: str, expectations: Dict[str, Any]) -> ExtractionResult:
        try:
            result = await asyncio.wait_for(
                self.provider.extract(proof_type.value, image, expectations),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ExternalDependencyError(
                "EXTRACTION_FAILED",
                "Extraction provider timed out",
                {"timeout_seconds": self.timeout_seconds},
            ) from e
        except ExternalDependencyError:
            raise
        except Exception as e:
            raise ExternalDependencyError("EXTRACTION_FAILED", f"Extraction provider failed: {e}") from e
        if not isinstance(result, ExtractionResult):
            raise ExternalDependencyError("EXTRACTION_FAILED", "Extraction provider returned an unexpected result")
        return result

    def _store(self, session: Session, order_id: int, proof_type: ProofType, result: ExtractionResult, actor_user_id: Optional[int]) -> ProofExtraction:
        now = utc_now()
        for attempt in (1, 2):
            row = load_extraction(session, order_id, proof_type)
            if row is None:
                row = ProofExtraction(order_id=order_id, proof_type=proof_type)
                session.add(row)
            row.fields = dict(result.fields)
            row.confidence = result.confidence
            row.extracted_at = now
            write_audit_log(
                session,
                action="PROOF_EXTRACTED",
                entity_type="Order",
                entity_id=order_id,
                actor_user_id=actor_user_id,
                details={"proof_type": proof_type.value, "confidence": result.confidence},
            )
            try:
                session.commit()
                session.refresh(row)
                return row
            except IntegrityError:
                # Another process inserted the same key first; overwrite it.
                session.rollback()
                if attempt == 2:
                    raise
            except SQLAlchemyError:
                session.rollback()
                raise
        raise RuntimeError("unreachable")  # pragma: no cover

    async def get_or_extract(
        self,
        session: Session,
        order_id: int,
        proof_type: ProofType,
        image: Optional[str] = None,
        expectations: Optional[Dict[str, Any]] = None,
        *,
        force_reextract: bool = False,
        actor_user_id: Optional[int] = None,
    ) -> CachedExtraction:
        proof_type = ProofType(proof_type)
        order = get_order(session, order_id)

        if not force_reextract:
            hit = load_extraction(session, order.id, proof_type)
            if hit is not None:
                self._stats.hits += 1
                logger.info("Extraction cache hit", order_id=order.id, proof_type=proof_type.value)
                return _as_result(hit, cached=True)

        image = image or (order.screenshots or {}).get(proof_type.value)
        if not image:
            raise ValidationFailed("MISSING_IMAGE", "No proof image to extract from", {"order_id": order.id, "proof_type": proof_type.value})
        checked = validate_expectations(proof_type, expectations)

        key = (order.id, proof_type.value)
        async with (self._key_lock(key) if self.per_key_lock else nullcontext()):
            if not force_reextract:
                # A concurrent request may have filled the key while we waited.
                session.expire_all()
                hit = load_extraction(session, order.id, proof_type)
                if hit is not None:
                    self._stats.hits += 1
                    return _as_result(hit, cached=True)

            self._stats.misses += 1
            logger.info("Extraction cache miss; calling provider", order_id=order.id, proof_type=proof_type.value, forced=force_reextract)
            try:
                result = await self._call_provider(proof_type, image, checked)
            except ExternalDependencyError as e:
                self._stats.failures += 1
                logger.error("Proof extraction failed", order_id=order.id, proof_type=proof_type.value, error=e.message)
                raise
            self._stats.extractions += 1
            row = self._store(session, order.id, proof_type, result, actor_user_id)
        return _as_result(row, cached=False)

    def clear(self, session: Session, order_id: int, proof_type: ProofType, *, actor_user_id: Optional[int] = None) -> bool:
        proof_type = ProofType(proof_type)
        order = get_order(session, order_id)
        try:
            removed = delete_extraction(session, order.id, proof_type)
            if removed:
                write_audit_log(
                    session,
                    action="PROOF_CACHE_CLEARED",
                    entity_type="Order",
                    entity_id=order.id,
                    actor_user_id=actor_user_id,
                    details={"proof_type": proof_type.value},
                )
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.info("Extraction cache cleared", order_id=order.id, proof_type=proof_type.value, removed=removed)
        return removed

    def status(self, session: Session, order_id: int) -> Dict[str, Dict[str, Any]]:
        """Per proof type: whether an extraction exists and when. Never extracts."""
        order = get_order(session, order_id)
        rows = {ProofType(r.proof_type): r for r in session.query(ProofExtraction).filter(ProofExtraction.order_id == order.id)}
        screenshots = order.screenshots or {}
        report: Dict[str, Dict[str, Any]] = {}
        for proof_type in ProofType:
            row = rows.get(proof_type)
            at = ensure_utc(row.extracted_at) if row is not None else None
            report[proof_type.value] = {
                "extracted": row is not None,
                "at": at.isoformat() if at else None,
                "has_image": proof_type.value in screenshots,
            }
        return report

    async def prewarm(self, session: Session, items: Iterable[PrewarmItem], *, actor_user_id: Optional[int] = None) -> PrewarmSummary:
        items = list(items)
        limit = int(EXTRACTION_SETTINGS["prewarm_max_items"])  # type: ignore[arg-type]
        if len(items) > limit:
            raise ValidationFailed("TOO_MANY_ITEMS", f"Pre-warm accepts at most {limit} items", {"count": len(items)})

        summary = PrewarmSummary(total=len(items))
        for item in items:
            proof_type = ProofType(item.proof_type)
            try:
                order = get_order(session, item.order_id)
                if load_extraction(session, order.id, proof_type) is not None:
                    summary.skipped += 1
                    continue
                if not (order.screenshots or {}).get(proof_type.value):
                    summary.skipped += 1
                    continue
                expectations = {**expectations_from_order(order), **(item.expectations or {})}
                await self.get_or_extract(session, order.id, proof_type, expectations=expectations, actor_user_id=actor_user_id)
                summary.extracted += 1
            except CoreError as e:
                summary.failed += 1
                summary.errors.append({"order_id": item.order_id, "proof_type": proof_type.value, "code": e.code, "message": e.message})
                logger.warning("Pre-warm item failed", order_id=item.order_id, proof_type=proof_type.value, code=e.code)
            except SQLAlchemyError as e:
                session.rollback()
                summary.failed += 1
                summary.errors.append({"order_id": item.order_id, "proof_type": proof_type.value, "code": "DATABASE_ERROR", "message": str(e)})
                logger.error("Pre-warm item failed", order_id=item.order_id, proof_type=proof_type.value, code="DATABASE_ERROR", exc_info=True)
        logger.info("Pre-warm finished", **summary.to_dict())
        return summary

    def stats(self) -> Dict[str, Any]:
        s = self._stats
        lookups = s.hits + s.misses
        cost = float(EXTRACTION_SETTINGS["cost_per_call_usd"])  # type: ignore[arg-type]
        return {
            "hits": s.hits,
            "misses": s.misses,
            "extractions": s.extractions,
            "failures": s.failures,
            "hit_rate": round(s.hits / lookups, 4) if lookups else 0.0,
            "estimated_savings_usd": round(s.hits * cost, 4),
        }

    def reset_stats(self) -> None:
        self._stats = CacheStats()


__all__ = [
    "REQUIRED_EXPECTATIONS",
    "CachedExtraction",
    "PrewarmItem",
    "PrewarmSummary",
    "ProofExtractionCache",
    "validate_expectations",
    "expectations_from_order",
    "load_extraction",
    "delete_extraction",
]
