from datetime import date, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from lp_tracker import crud
from lp_tracker.models import AccountModel, DailyHistoryModel, PositionModel
from lp_tracker.schemas import ExtractionRecord

OWNER = 42
OTHER_OWNER = 7
TODAY = date(2026, 10, 16)


def _record(**fields):
    return ExtractionRecord.model_validate(fields)


def _count(db, model, *criteria):
    return db.scalar(select(func.count(model.id)).where(*criteria))


def test_save_creates_account_positions_and_snapshot(db_session):
    record = _record(
        balance=500,
        total_points=100,
        total_fees=5,
        pending_yield=0.5,
        account_name="Akun 3",
        positions=[{"pair": "HYPE/USD", "position_size": 194.21, "apr": 162.55, "status": "In Range"}],
    )

    result = crud.save_account(db_session, OWNER, 3, record, day=TODAY)

    assert result.previous is None
    assert result.account.slot == 3
    assert result.account.balance == 500.0
    assert result.account.account_name == "Akun 3"
    positions = crud.list_positions(db_session, result.account.id)
    assert [(p.pair, p.position_size, p.apr, p.in_range) for p in positions] == [
        ("HYPE/USD", 194.21, 162.55, True)
    ]
    assert _count(db_session, DailyHistoryModel, DailyHistoryModel.account_id == result.account.id) == 1


def test_position_without_size_or_apr_is_stored_as_unknown(db_session):
    record = _record(balance=500, positions=[{"pair": "HYPE/USD", "status": "In Range"}])

    result = crud.save_account(db_session, OWNER, 1, record, day=TODAY)

    positions = crud.list_positions(db_session, result.account.id)
    assert [(p.pair, p.position_size, p.apr) for p in positions] == [("HYPE/USD", None, None)]
    stored = db_session.scalars(select(PositionModel)).one()
    assert stored.position_size is None
    assert stored.apr is None


def test_second_save_same_day_overwrites_snapshot(db_session):
    crud.save_account(db_session, OWNER, 1, _record(balance=500, total_points=10), day=TODAY)
    result = crud.save_account(db_session, OWNER, 1, _record(balance=650, total_points=20), day=TODAY)

    rows = list(
        db_session.scalars(select(DailyHistoryModel).where(DailyHistoryModel.account_id == result.account.id))
    )
    assert len(rows) == 1
    assert rows[0].recorded_on == TODAY
    assert rows[0].balance == 650.0
    assert rows[0].total_points == 20.0


def test_saves_on_different_days_keep_separate_snapshots(db_session):
    crud.save_account(db_session, OWNER, 1, _record(balance=1000), day=TODAY - timedelta(days=1))
    result = crud.save_account(db_session, OWNER, 1, _record(balance=1200), day=TODAY)

    assert _count(db_session, DailyHistoryModel, DailyHistoryModel.account_id == result.account.id) == 2
    previous = crud.get_previous_snapshot(db_session, result.account.id, TODAY)
    assert previous.balance == 1000.0
    assert previous.recorded_on == TODAY - timedelta(days=1)


def test_previous_snapshot_ignores_today(db_session):
    result = crud.save_account(db_session, OWNER, 1, _record(balance=1200), day=TODAY)

    assert crud.get_previous_snapshot(db_session, result.account.id, TODAY) is None


def test_absent_balance_keeps_stored_value(db_session):
    crud.save_account(db_session, OWNER, 1, _record(balance=500, total_points=10), day=TODAY)

    result = crud.save_account(db_session, OWNER, 1, _record(balance=None, total_points=15), day=TODAY)

    assert result.account.balance == 500.0
    assert result.account.total_points == 15.0
    assert result.previous.balance == 500.0


def test_new_balance_replaces_stored_value(db_session):
    crud.save_account(db_session, OWNER, 1, _record(balance=500), day=TODAY)

    result = crud.save_account(db_session, OWNER, 1, _record(balance=750), day=TODAY)

    assert result.account.balance == 750.0
    assert result.balance_delta == 250.0


def test_positions_are_replaced_not_accumulated(db_session):
    crud.save_account(
        db_session,
        OWNER,
        1,
        _record(balance=500, positions=[{"pair": "HYPE/USD", "position_size": 100, "apr": 50}]),
        day=TODAY,
    )
    result = crud.save_account(
        db_session,
        OWNER,
        1,
        _record(
            balance=500,
            positions=[
                {"pair": "ETH/USD", "position_size": 200, "apr": 20},
                {"pair": "BTC/USD", "position_size": 300, "apr": 10, "status": "Out of Range"},
            ],
        ),
        day=TODAY,
    )

    positions = crud.list_positions(db_session, result.account.id)
    assert [(p.pair, p.in_range) for p in positions] == [("ETH/USD", True), ("BTC/USD", False)]
    assert _count(db_session, PositionModel) == 2


def test_missing_position_list_keeps_existing_positions(db_session):
    first = crud.save_account(
        db_session,
        OWNER,
        1,
        _record(balance=500, positions=[{"pair": "HYPE/USD", "position_size": 100, "apr": 50}]),
        day=TODAY,
    )
    crud.save_account(db_session, OWNER, 1, _record(balance=510), day=TODAY)

    assert [p.pair for p in crud.list_positions(db_session, first.account.id)] == ["HYPE/USD"]


def test_slot_out_of_range_is_rejected(db_session):
    with pytest.raises(ValueError):
        crud.save_account(db_session, OWNER, 11, _record(balance=1), day=TODAY)
    with pytest.raises(ValueError):
        crud.save_account(db_session, OWNER, 0, _record(balance=1), day=TODAY)


def test_failed_snapshot_rolls_back_whole_save(db_session, monkeypatch):
    def boom(*args, **kwargs):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(crud, "_upsert_snapshot", boom)

    with pytest.raises(SQLAlchemyError):
        crud.save_account(
            db_session,
            OWNER,
            1,
            _record(balance=500, positions=[{"pair": "HYPE/USD", "position_size": 100, "apr": 50}]),
            day=TODAY,
        )

    assert _count(db_session, AccountModel) == 0
    assert _count(db_session, PositionModel) == 0


def test_delete_all_for_owner_cascades_and_spares_other_owners(db_session):
    record = _record(balance=500, positions=[{"pair": "HYPE/USD", "position_size": 100, "apr": 50}])
    mine_1 = crud.save_account(db_session, OWNER, 1, record, day=TODAY)
    mine_2 = crud.save_account(db_session, OWNER, 2, record, day=TODAY)
    theirs = crud.save_account(db_session, OTHER_OWNER, 1, record, day=TODAY)

    deleted = crud.delete_all_for_owner(db_session, OWNER)

    assert deleted == 2
    assert crud.list_accounts(db_session, OWNER) == []
    mine_ids = [mine_1.account.id, mine_2.account.id]
    assert _count(db_session, PositionModel, PositionModel.account_id.in_(mine_ids)) == 0
    assert _count(db_session, DailyHistoryModel, DailyHistoryModel.account_id.in_(mine_ids)) == 0
    assert [a.id for a in crud.list_accounts(db_session, OTHER_OWNER)] == [theirs.account.id]
    assert _count(db_session, PositionModel, PositionModel.account_id == theirs.account.id) == 1
    assert _count(db_session, DailyHistoryModel, DailyHistoryModel.account_id == theirs.account.id) == 1


def test_get_account_is_scoped_to_owner(db_session):
    result = crud.save_account(db_session, OWNER, 1, _record(balance=500), day=TODAY)

    assert crud.get_account(db_session, result.account.id, OWNER) is not None
    assert crud.get_account(db_session, result.account.id, OTHER_OWNER) is None


def test_list_accounts_orders_by_slot(db_session):
    for slot in (5, 2, 9):
        crud.save_account(db_session, OWNER, slot, _record(balance=slot * 10), day=TODAY)

    assert [a.slot for a in crud.list_accounts(db_session, OWNER)] == [2, 5, 9]


def test_summarize_accounts(db_session):
    crud.save_account(db_session, OWNER, 1, _record(balance=100, total_points=10, total_fees=1, pending_yield=0.5), day=TODAY)
    crud.save_account(db_session, OWNER, 2, _record(balance=200, total_points=20, total_fees=2, pending_yield=1.5), day=TODAY)
    crud.save_account(db_session, OTHER_OWNER, 1, _record(balance=999), day=TODAY)

    summary = crud.summarize_accounts(db_session, OWNER)

    assert summary.account_count == 2
    assert summary.balance == 300.0
    assert summary.total_points == 30.0
    assert summary.total_fees == 3.0
    assert summary.pending_yield == 2.0


def test_summarize_accounts_empty(db_session):
    summary = crud.summarize_accounts(db_session, OWNER)

    assert summary.account_count == 0
    assert summary.balance == 0.0
