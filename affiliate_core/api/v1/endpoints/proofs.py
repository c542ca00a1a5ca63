"""
Proof endpoints: upload, cached AI extraction, per-order cache status and
staff pre-warming.
"""
from typing import Any, Dict
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
import time
from affiliate_core.api.deps import get_db, get_current_user, require_admin, ensure_order_access, get_extraction_cache
from affiliate_core.errors import CoreError
from affiliate_core.models.db import User
from affiliate_core.models.db.enums import ProofType
from affiliate_core.models.schemas.base import ResponseBase
from affiliate_core.models.schemas.proofs import ProofSubmit, ExtractRequest, PrewarmRequest, ExtractionRead
from affiliate_core.services import order_state_machine
from affiliate_core.services.proof_extraction_cache import (
    PrewarmItem,
    ProofExtractionCache,
    expectations_from_order,
)
from affiliate_core.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/orders/{order_id}/{proof_type}",
    response_model=ResponseBase,
    summary="Upload a proof image",
    description="Replacing an image drops its cached extraction. Extraction failure does not undo the upload."
)
async def submit_proof(
    order_id: int,
    proof_type: ProofType,
    payload: ProofSubmit,
    request: Request,
    current_user: User = Depends(get_current_user),
    cache: ProofExtractionCache = Depends(get_extraction_cache),
    db: Session = Depends(get_db)
) -> ResponseBase:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    order = order_state_machine.get_order(db, order_id)
    ensure_order_access(db, order, current_user)
    order = order_state_machine.submit_proof(db, order.id, proof_type, payload.image, current_user.id)

    data: Dict[str, Any] = {"order_id": order.id, "proof_type": proof_type.value, "extraction": None}
    if payload.extract:
        expectations = {**expectations_from_order(order), **payload.expectations}
        try:
            result = await cache.get_or_extract(
                db, order.id, proof_type, expectations=expectations, actor_user_id=current_user.id
            )
            data["extraction"] = result.to_dict()
        except CoreError as e:
            logger.warning(
                "Proof stored without extraction",
                order_id=order.id,
                proof_type=proof_type.value,
                code=e.code,
                request_id=request_id
            )
            data["extraction_error"] = e.to_dict()

    log_performance(
        operation="submit_proof",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"order_id": order.id, "proof_type": proof_type.value}
    )
    return ResponseBase(message="Proof submitted", data=data)


@router.post(
    "/orders/{order_id}/{proof_type}/extract",
    response_model=ExtractionRead,
    summary="Extract fields from a stored proof (cached)"
)
async def extract_proof(
    order_id: int,
    proof_type: ProofType,
    payload: ExtractRequest,
    current_user: User = Depends(get_current_user),
    cache: ProofExtractionCache = Depends(get_extraction_cache),
    db: Session = Depends(get_db)
) -> ExtractionRead:
    order = order_state_machine.get_order(db, order_id)
    ensure_order_access(db, order, current_user)
    expectations = {**expectations_from_order(order), **payload.expectations}
    result = await cache.get_or_extract(
        db,
        order.id,
        proof_type,
        expectations=expectations,
        force_reextract=payload.force_reextract,
        actor_user_id=current_user.id,
    )
    return ExtractionRead(**result.to_dict())


@router.delete(
    "/orders/{order_id}/{proof_type}",
    response_model=ResponseBase,
    summary="Drop a cached extraction (staff only)"
)
async def clear_extraction(
    order_id: int,
    proof_type: ProofType,
    admin: User = Depends(require_admin),
    cache: ProofExtractionCache = Depends(get_extraction_cache),
    db: Session = Depends(get_db)
) -> ResponseBase:
    removed = cache.clear(db, order_id, proof_type, actor_user_id=admin.id)
    return ResponseBase(message="Cache entry removed" if removed else "Nothing cached", data={"removed": removed})


@router.get(
    "/orders/{order_id}/status",
    response_model=ResponseBase,
    summary="Which proof types have a cached extraction"
)
async def extraction_status(
    order_id: int,
    current_user: User = Depends(get_current_user),
    cache: ProofExtractionCache = Depends(get_extraction_cache),
    db: Session = Depends(get_db)
) -> ResponseBase:
    order = order_state_machine.get_order(db, order_id)
    ensure_order_access(db, order, current_user)
    return ResponseBase(data=cache.status(db, order.id))


@router.post(
    "/prewarm",
    response_model=ResponseBase,
    summary="Extract a batch of proofs ahead of review (staff only)"
)
async def prewarm(
    payload: PrewarmRequest,
    admin: User = Depends(require_admin),
    cache: ProofExtractionCache = Depends(get_extraction_cache),
    db: Session = Depends(get_db)
) -> ResponseBase:
    start_time = time.time()
    items = [PrewarmItem(e.order_id, e.proof_type, dict(e.expectations)) for e in payload.items]
    summary = await cache.prewarm(db, items, actor_user_id=admin.id)
    log_performance(
        operation="prewarm_extractions",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"total": summary.total, "extracted": summary.extracted}
    )
    return ResponseBase(message="Pre-warm finished", data=summary.to_dict())


@router.get(
    "/stats",
    response_model=ResponseBase,
    summary="Cache hit/miss counters (staff only)"
)
async def cache_stats(
    admin: User = Depends(require_admin),
    cache: ProofExtractionCache = Depends(get_extraction_cache),
) -> ResponseBase:
    return ResponseBase(data=cache.stats())
