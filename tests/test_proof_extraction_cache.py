import asyncio

import pytest

from affiliate_core.errors import ExternalDependencyError, NotFound, ValidationFailed
from affiliate_core.models.db import AuditLog, ProofExtraction
from affiliate_core.models.db.enums import ProofType
from affiliate_core.services import order_state_machine
from affiliate_core.services.proof_extraction_cache import (
    PrewarmItem,
    ProofExtractionCache,
    expectations_from_order,
    validate_expectations,
)

ORDER_EXPECTATIONS = {"expected_order_id": "402-1", "expected_amount_paise": 149900}


@pytest.fixture()
def proof_order(user_factory, order_factory):
    return order_factory(user_factory(name="Asha"), screenshots={"order": "img://order-1"})


def test_miss_then_hit_then_clear_then_miss(db_session, proof_order, extraction_cache, fake_provider):
    first = asyncio.run(extraction_cache.get_or_extract(db_session, proof_order.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS))
    assert first.cached is False
    assert first.fields == {"order_id": "402-1", "amount_paise": 149900}
    assert first.confidence == 0.93

    second = asyncio.run(extraction_cache.get_or_extract(db_session, proof_order.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS))
    assert second.cached is True
    assert second.extracted_at == first.extracted_at
    assert len(fake_provider.calls) == 1

    assert extraction_cache.clear(db_session, proof_order.id, ProofType.ORDER) is True
    assert extraction_cache.clear(db_session, proof_order.id, ProofType.ORDER) is False

    third = asyncio.run(extraction_cache.get_or_extract(db_session, proof_order.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS))
    assert third.cached is False
    assert len(fake_provider.calls) == 2
    assert db_session.query(AuditLog).filter(AuditLog.action == "PROOF_CACHE_CLEARED").count() == 1

    stats = extraction_cache.stats()
    assert (stats["hits"], stats["misses"], stats["extractions"]) == (1, 2, 2)
    assert stats["hit_rate"] == pytest.approx(1 / 3, abs=1e-4)


def test_force_reextract_overwrites_entry(db_session, proof_order, extraction_cache, fake_provider):
    asyncio.run(extraction_cache.get_or_extract(db_session, proof_order.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS))
    fake_provider.fields = {"order_id": "402-1", "amount_paise": 1}
    forced = asyncio.run(
        extraction_cache.get_or_extract(db_session, proof_order.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS, force_reextract=True)
    )
    assert forced.cached is False
    assert forced.fields["amount_paise"] == 1
    assert db_session.query(ProofExtraction).count() == 1


def test_missing_expectations_never_reach_provider(db_session, proof_order, extraction_cache, fake_provider):
    with pytest.raises(ValidationFailed) as exc:
        asyncio.run(extraction_cache.get_or_extract(db_session, proof_order.id, ProofType.ORDER, expectations={"expected_order_id": "402-1"}))
    assert exc.value.code == "MISSING_EXPECTATIONS"
    assert exc.value.details["missing"] == ["expected_amount_paise"]
    assert fake_provider.calls == []


def test_review_needs_only_an_image(db_session, user_factory, order_factory, extraction_cache, fake_provider):
    order = order_factory(user_factory())
    with pytest.raises(ValidationFailed) as exc:
        asyncio.run(extraction_cache.get_or_extract(db_session, order.id, ProofType.REVIEW))
    assert exc.value.code == "MISSING_IMAGE"

    result = asyncio.run(extraction_cache.get_or_extract(db_session, order.id, ProofType.REVIEW, image="img://review"))
    assert result.cached is False
    assert fake_provider.calls[0]["expectations"] == {}


def test_provider_failure_leaves_cache_empty(db_session, proof_order, extraction_cache, fake_provider):
    fake_provider.fail = True
    with pytest.raises(ExternalDependencyError) as exc:
        asyncio.run(extraction_cache.get_or_extract(db_session, proof_order.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS))
    assert exc.value.code == "EXTRACTION_FAILED"
    assert db_session.query(ProofExtraction).count() == 0
    assert extraction_cache.stats()["failures"] == 1


def test_provider_timeout(db_session, proof_order, fake_provider):
    fake_provider.delay = 0.5
    cache = ProofExtractionCache(fake_provider, timeout_seconds=0.05)
    with pytest.raises(ExternalDependencyError) as exc:
        asyncio.run(cache.get_or_extract(db_session, proof_order.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS))
    assert exc.value.code == "EXTRACTION_FAILED"
    assert "timed out" in exc.value.message


def test_concurrent_requests_share_one_provider_call(session_factory, proof_order, extraction_cache, fake_provider):
    fake_provider.delay = 0.05

    async def _race():
        return await asyncio.gather(
            extraction_cache.get_or_extract(session_factory(), proof_order.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS),
            extraction_cache.get_or_extract(session_factory(), proof_order.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS),
        )

    results = asyncio.run(_race())
    assert sorted(r.cached for r in results) == [False, True]
    assert len(fake_provider.calls) == 1


def test_replacing_image_invalidates_entry(db_session, proof_order, extraction_cache, fake_provider):
    asyncio.run(extraction_cache.get_or_extract(db_session, proof_order.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS))
    order_state_machine.submit_proof(db_session, proof_order.id, ProofType.ORDER, "img://order-2", None)

    again = asyncio.run(extraction_cache.get_or_extract(db_session, proof_order.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS))
    assert again.cached is False
    assert fake_provider.calls[-1]["image"] == "img://order-2"


def test_status_reports_every_proof_type(db_session, proof_order, extraction_cache):
    asyncio.run(extraction_cache.get_or_extract(db_session, proof_order.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS))
    status = extraction_cache.status(db_session, proof_order.id)
    assert set(status) == {p.value for p in ProofType}
    assert status["order"]["extracted"] is True
    assert status["order"]["at"] is not None
    assert status["rating"] == {"extracted": False, "at": None, "has_image": False}

    with pytest.raises(NotFound):
        extraction_cache.status(db_session, 424242)


def test_prewarm_skips_and_isolates_failures(db_session, user_factory, order_factory, extraction_cache, fake_provider):
    buyer = user_factory(name="Asha")
    ready = order_factory(buyer, screenshots={"order": "img://a"})
    no_image = order_factory(buyer)
    rating = order_factory(buyer, screenshots={"rating": "img://r"}, buyer_name=None)
    asyncio.run(extraction_cache.get_or_extract(db_session, ready.id, ProofType.ORDER, expectations=ORDER_EXPECTATIONS))

    items = [
        PrewarmItem(ready.id, ProofType.ORDER),
        PrewarmItem(no_image.id, ProofType.ORDER),
        PrewarmItem(rating.id, ProofType.RATING),
        PrewarmItem(rating.id, ProofType.RATING, {"expected_buyer_name": "Asha"}),
        PrewarmItem(999, ProofType.ORDER),
    ]
    summary = asyncio.run(extraction_cache.prewarm(db_session, items))

    assert summary.total == 5
    assert summary.skipped == 2
    assert summary.extracted == 1
    assert summary.failed == 2
    assert {e["code"] for e in summary.errors} == {"MISSING_EXPECTATIONS", "ORDER_NOT_FOUND"}


def test_prewarm_database_error_fails_only_that_item(db_session, user_factory, order_factory, extraction_cache, fake_provider, monkeypatch):
    from sqlalchemy.exc import OperationalError

    from affiliate_core.services import proof_extraction_cache

    buyer = user_factory(name="Asha")
    broken_id = order_factory(buyer, screenshots={"order": "img://a"}).id
    healthy_id = order_factory(buyer, screenshots={"order": "img://b"}).id
    write_audit_log = proof_extraction_cache.write_audit_log

    def flaky_audit(session, **kwargs):
        if kwargs.get("entity_id") == broken_id:
            raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))
        return write_audit_log(session, **kwargs)

    monkeypatch.setattr(proof_extraction_cache, "write_audit_log", flaky_audit)
    summary = asyncio.run(extraction_cache.prewarm(
        db_session, [PrewarmItem(broken_id, ProofType.ORDER), PrewarmItem(healthy_id, ProofType.ORDER)]
    ))

    assert (summary.extracted, summary.failed) == (1, 1)
    assert summary.errors[0]["order_id"] == broken_id
    assert summary.errors[0]["code"] == "DATABASE_ERROR"
    db_session.expire_all()
    stored = {row.order_id for row in db_session.query(ProofExtraction)}
    assert stored == {healthy_id}


def test_prewarm_batch_limit(db_session, extraction_cache, monkeypatch):
    from affiliate_core.services import proof_extraction_cache

    monkeypatch.setitem(proof_extraction_cache.EXTRACTION_SETTINGS, "prewarm_max_items", 1)
    with pytest.raises(ValidationFailed) as exc:
        asyncio.run(extraction_cache.prewarm(db_session, [PrewarmItem(1, ProofType.ORDER), PrewarmItem(2, ProofType.ORDER)]))
    assert exc.value.code == "TOO_MANY_ITEMS"


def test_expectations_helpers(user_factory, order_factory):
    order = order_factory(user_factory(name="Ravi"), external_order_id="402-77")
    derived = expectations_from_order(order)
    assert derived == {
        "expected_order_id": "402-77",
        "expected_amount_paise": 149900,
        "expected_buyer_name": "Ravi",
        "expected_product_name": "Kettle",
    }
    assert validate_expectations(ProofType.RETURN_WINDOW, None) == {}
