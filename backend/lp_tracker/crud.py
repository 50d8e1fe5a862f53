import logging
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import get_settings
from .domain.entities import (
    AccountSnapshot,
    HistorySnapshot,
    PortfolioSummary,
    PositionSnapshot,
    SaveResult,
    account_snapshot_from_model,
    history_snapshot_from_model,
    merge_account_fields,
    position_snapshot_from_model,
)
from .models import MAX_SLOT, MIN_SLOT, AccountModel, DailyHistoryModel, PositionModel
from .schemas import ExtractionRecord

logger = logging.getLogger(__name__)

settings = get_settings()


def current_day() -> date:
    """Calendar day in the configured timezone; snapshots are bucketed by it."""
    return datetime.now(ZoneInfo(settings.timezone)).date()


def get_account(db: Session, account_id: int, owner_id: int) -> AccountModel | None:
    stmt = select(AccountModel).where(AccountModel.id == account_id, AccountModel.owner_id == owner_id)
    return db.scalar(stmt)


def get_account_by_slot(db: Session, owner_id: int, slot: int) -> AccountModel | None:
    stmt = select(AccountModel).where(AccountModel.owner_id == owner_id, AccountModel.slot == slot)
    return db.scalar(stmt)


def list_accounts(db: Session, owner_id: int) -> list[AccountModel]:
    stmt = select(AccountModel).where(AccountModel.owner_id == owner_id).order_by(AccountModel.slot)
    return list(db.scalars(stmt))


def list_positions(db: Session, account_id: int) -> list[PositionModel]:
    stmt = select(PositionModel).where(PositionModel.account_id == account_id).order_by(PositionModel.id)
    return list(db.scalars(stmt))


def get_previous_snapshot(db: Session, account_id: int, before: date) -> DailyHistoryModel | None:
    """Most recent snapshot strictly older than ``before``."""
    stmt = (
        select(DailyHistoryModel)
        .where(DailyHistoryModel.account_id == account_id, DailyHistoryModel.recorded_on < before)
        .order_by(DailyHistoryModel.recorded_on.desc())
        .limit(1)
    )
    return db.scalar(stmt)


def summarize_accounts(db: Session, owner_id: int) -> PortfolioSummary:
    row = db.execute(
        select(
            func.count(AccountModel.id),
            func.coalesce(func.sum(AccountModel.balance), 0.0),
            func.coalesce(func.sum(AccountModel.total_points), 0.0),
            func.coalesce(func.sum(AccountModel.total_fees), 0.0),
            func.coalesce(func.sum(AccountModel.pending_yield), 0.0),
        ).where(AccountModel.owner_id == owner_id)
    ).one()
    count, balance, points, fees, pending = row
    return PortfolioSummary(
        account_count=int(count or 0),
        balance=float(balance),
        total_points=float(points),
        total_fees=float(fees),
        pending_yield=float(pending),
    )


def _upsert_snapshot(db: Session, account: AccountModel, day: date) -> DailyHistoryModel:
    snapshot = db.scalar(
        select(DailyHistoryModel).where(
            DailyHistoryModel.account_id == account.id,
            DailyHistoryModel.recorded_on == day,
        )
    )
    if snapshot is None:
        snapshot = DailyHistoryModel(account_id=account.id, recorded_on=day)
        db.add(snapshot)
    snapshot.balance = account.balance
    snapshot.total_points = account.total_points
    snapshot.total_fees = account.total_fees
    return snapshot


def save_account(
    db: Session,
    owner_id: int,
    slot: int,
    record: ExtractionRecord,
    day: date | None = None,
) -> SaveResult:
    """Upsert the (owner, slot) account, its positions and today's snapshot in one transaction."""
    if not MIN_SLOT <= slot <= MAX_SLOT:
        raise ValueError(f"Account slot must be between {MIN_SLOT} and {MAX_SLOT}.")
    day = day or current_day()

    try:
        account = get_account_by_slot(db, owner_id, slot)
        previous = account_snapshot_from_model(account) if account is not None else None
        changes = merge_account_fields(previous, record)

        if account is None:
            account = AccountModel(owner_id=owner_id, slot=slot)
            db.add(account)
        for key, value in changes.items():
            setattr(account, key, value)
        account.updated_at = datetime.now(timezone.utc)

        if record.positions is not None:
            account.positions = [
                PositionModel(
                    pair=position.pair,
                    position_size=position.position_size,
                    apr=position.apr,
                    in_range=position.in_range,
                )
                for position in record.positions
            ]
        db.flush()

        _upsert_snapshot(db, account, day)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to save account %s for owner %s: %s", slot, owner_id, exc)
        raise

    db.refresh(account)
    logger.info("Saved account slot %s for owner %s (snapshot %s)", slot, owner_id, day.isoformat())
    return SaveResult(account=account_snapshot_from_model(account), previous=previous)


def delete_all_for_owner(db: Session, owner_id: int) -> int:
    accounts = list_accounts(db, owner_id)
    try:
        for account in accounts:
            db.delete(account)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to delete accounts for owner %s: %s", owner_id, exc)
        raise
    logger.info("Deleted %s account(s) for owner %s", len(accounts), owner_id)
    return len(accounts)


def build_account_snapshot(model: AccountModel) -> AccountSnapshot:
    return account_snapshot_from_model(model)


def build_position_snapshots(models: list[PositionModel]) -> list[PositionSnapshot]:
    return [position_snapshot_from_model(model) for model in models]


def build_history_snapshot(model: DailyHistoryModel | None) -> HistorySnapshot | None:
    return history_snapshot_from_model(model) if model is not None else None
