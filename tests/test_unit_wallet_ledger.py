import pytest

from affiliate_core.errors import ConflictError, NotFound, ResourceGuardError, ValidationFailed
from affiliate_core.models.db import AuditLog, WalletTransaction
from affiliate_core.models.db.enums import LedgerDirection, WalletBucket
from affiliate_core.services import wallet_ledger


def test_credit_creates_wallet_and_writes_ledger_line(db_session, user_factory):
    user = user_factory()
    txn = wallet_ledger.credit(db_session, user.id, WalletBucket.AVAILABLE, 5000, txn_type="bonus")
    db_session.commit()

    wallet = wallet_ledger.get_wallet(db_session, user.id)
    assert wallet.available_paise == 5000
    assert wallet.currency == "INR"
    assert txn.direction == LedgerDirection.CREDIT
    assert txn.balance_after_paise == 5000
    assert db_session.query(AuditLog).filter(AuditLog.action == "WALLET_CREDIT").count() == 1


@pytest.mark.parametrize("amount", [0, -5, 10.5, True, "100"])
def test_invalid_amounts_rejected(db_session, user_factory, amount):
    user = user_factory()
    with pytest.raises(ValidationFailed) as exc:
        wallet_ledger.credit(db_session, user.id, WalletBucket.AVAILABLE, amount)
    assert exc.value.code == "INVALID_AMOUNT"
    assert wallet_ledger.get_wallet(db_session, user.id) is None


def test_debit_never_goes_negative(db_session, user_factory, fund_wallet):
    user = user_factory()
    fund_wallet(user, 1000)

    with pytest.raises(ResourceGuardError) as exc:
        wallet_ledger.debit(db_session, user.id, WalletBucket.AVAILABLE, 1001)
    assert exc.value.code == "INSUFFICIENT_FUNDS"
    db_session.rollback()

    # Funds in another bucket do not cover the debit either.
    fund_wallet(user, 5000, WalletBucket.PENDING)
    with pytest.raises(ResourceGuardError):
        wallet_ledger.debit(db_session, user.id, WalletBucket.LOCKED, 1)
    db_session.rollback()

    wallet = wallet_ledger.get_wallet(db_session, user.id)
    assert (wallet.available_paise, wallet.pending_paise, wallet.locked_paise) == (1000, 5000, 0)


def test_debit_without_wallet(db_session, user_factory):
    user = user_factory()
    with pytest.raises(NotFound) as exc:
        wallet_ledger.debit(db_session, user.id, WalletBucket.AVAILABLE, 10)
    assert exc.value.code == "WALLET_NOT_FOUND"


def test_balance_ceiling(db_session, user_factory, monkeypatch):
    monkeypatch.setitem(wallet_ledger.WALLET_SETTINGS, "max_balance_paise", 10000)
    user = user_factory()
    wallet_ledger.credit(db_session, user.id, WalletBucket.AVAILABLE, 10000)
    with pytest.raises(ResourceGuardError) as exc:
        wallet_ledger.credit(db_session, user.id, WalletBucket.AVAILABLE, 1)
    assert exc.value.code == "BALANCE_LIMIT_EXCEEDED"


def test_idempotency_key_replays_original_line(db_session, user_factory):
    user = user_factory()
    first = wallet_ledger.credit(db_session, user.id, WalletBucket.AVAILABLE, 700, idempotency_key="bonus-42")
    db_session.commit()
    again = wallet_ledger.credit(db_session, user.id, WalletBucket.AVAILABLE, 700, idempotency_key="bonus-42")
    db_session.commit()

    assert again.id == first.id
    assert wallet_ledger.get_wallet(db_session, user.id).available_paise == 700
    assert db_session.query(WalletTransaction).count() == 1

    with pytest.raises(ConflictError) as exc:
        wallet_ledger.credit(db_session, user.id, WalletBucket.AVAILABLE, 800, idempotency_key="bonus-42")
    assert exc.value.code == "IDEMPOTENCY_KEY_REUSED"


def test_every_mutation_bumps_version(db_session, user_factory, fund_wallet):
    user = user_factory()
    v1 = fund_wallet(user, 1000).version
    wallet_ledger.move(db_session, user.id, WalletBucket.AVAILABLE, WalletBucket.LOCKED, 400, txn_type="hold")
    db_session.commit()
    wallet = wallet_ledger.get_wallet(db_session, user.id)
    assert wallet.version > v1
    assert (wallet.available_paise, wallet.locked_paise) == (600, 400)


def test_stale_expected_version_rejected(db_session, user_factory, fund_wallet):
    user = user_factory()
    version = fund_wallet(user, 1000).version
    fund_wallet(user, 1)

    with pytest.raises(ConflictError) as exc:
        wallet_ledger.debit(db_session, user.id, WalletBucket.AVAILABLE, 10, expected_version=version)
    assert exc.value.code == "CONCURRENT_MODIFICATION"
    assert wallet_ledger.get_wallet(db_session, user.id).available_paise == 1001


def test_concurrent_writer_loses_version_race(session_factory, user_factory, fund_wallet):
    user = user_factory()
    fund_wallet(user, 1000)

    first, second = session_factory(), session_factory()
    stale = wallet_ledger.get_wallet(first, user.id)
    assert stale.available_paise == 1000

    wallet_ledger.credit(second, user.id, WalletBucket.AVAILABLE, 50)
    second.commit()

    # ``first`` still holds the old version, so its UPDATE matches no row.
    with pytest.raises(ConflictError) as exc:
        wallet_ledger.credit(first, user.id, WalletBucket.AVAILABLE, 25)
    assert exc.value.code == "CONCURRENT_MODIFICATION"

    check = session_factory()
    assert wallet_ledger.get_wallet(check, user.id).available_paise == 1050


def test_can_delete_wallet_requires_all_buckets_empty(db_session, user_factory, fund_wallet):
    user = user_factory()
    assert wallet_ledger.can_delete_wallet(db_session, user.id).code == "WALLET_NOT_FOUND"

    fund_wallet(user, 300, WalletBucket.PENDING)
    check = wallet_ledger.can_delete_wallet(db_session, user.id)
    assert check.allowed is False
    assert check.code == "WALLET_NOT_EMPTY"

    wallet_ledger.debit(db_session, user.id, WalletBucket.PENDING, 300)
    db_session.commit()
    assert wallet_ledger.can_delete_wallet(db_session, user.id).allowed is True


def test_delete_wallet_tombstones_once(db_session, user_factory, fund_wallet):
    user = user_factory()
    fund_wallet(user, 10)
    with pytest.raises(ResourceGuardError) as exc:
        wallet_ledger.delete_wallet(db_session, user.id, actor_user_id=None)
    assert exc.value.code == "WALLET_NOT_EMPTY"
    assert exc.value.details["available_paise"] == 10

    wallet_ledger.debit(db_session, user.id, WalletBucket.AVAILABLE, 10)
    db_session.commit()
    deleted = wallet_ledger.delete_wallet(db_session, user.id, actor_user_id=None)
    assert deleted.deleted_at is not None
    assert wallet_ledger.get_wallet(db_session, user.id) is None

    with pytest.raises(ConflictError) as exc:
        wallet_ledger.delete_wallet(db_session, user.id, actor_user_id=None)
    assert exc.value.code == "WALLET_ALREADY_DELETED"

    # A new earning event opens a fresh wallet beside the tombstone.
    wallet_ledger.credit(db_session, user.id, WalletBucket.AVAILABLE, 5)
    db_session.commit()
    assert wallet_ledger.get_wallet(db_session, user.id).id != deleted.id
