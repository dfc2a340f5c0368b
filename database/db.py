"""Database helpers and CRUD operations."""

from datetime import datetime
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from config import DATABASE_URL
from database.models import Base, CalledToken, MilestoneConfigRecord, MilestoneNotificationRecord

# Rows are read from worker threads (asyncio.to_thread) as well as the main thread.
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, future=True, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


def get_db() -> Session:
    return SessionLocal()


def ping() -> bool:
    db = get_db()
    try:
        db.execute(text("SELECT 1"))
        return True
    finally:
        db.close()


def list_active_tokens(group_name: str, limit: int = 100) -> list[CalledToken]:
    db = get_db()
    try:
        return (
            db.query(CalledToken)
            .filter(CalledToken.group_name == group_name, CalledToken.is_active.is_(True))
            .order_by(CalledToken.first_called_at_utc.desc())
            .limit(limit)
            .all()
        )
    finally:
        db.close()


def add_token(
    group_name: str,
    token_address: str,
    symbol: str,
    initial_market_cap_usd: float,
    first_called_at_utc: datetime | None = None,
) -> CalledToken:
    db = get_db()
    try:
        token = CalledToken(
            group_name=group_name,
            token_address=token_address,
            symbol=symbol,
            initial_market_cap_usd=float(initial_market_cap_usd),
            first_called_at_utc=first_called_at_utc or datetime.utcnow(),
        )
        db.add(token)
        db.commit()
        db.refresh(token)
        return token
    finally:
        db.close()


def list_active_milestones(group_name: str) -> list[MilestoneConfigRecord]:
    db = get_db()
    try:
        return (
            db.query(MilestoneConfigRecord)
            .filter(MilestoneConfigRecord.group_name == group_name, MilestoneConfigRecord.is_active.is_(True))
            .order_by(MilestoneConfigRecord.milestone_value.asc())
            .all()
        )
    finally:
        db.close()


def get_milestone_config(config_id: int) -> Optional[MilestoneConfigRecord]:
    db = get_db()
    try:
        return db.query(MilestoneConfigRecord).filter(MilestoneConfigRecord.id == config_id).first()
    finally:
        db.close()


def create_milestone_config(
    group_name: str,
    milestone_value: float,
    milestone_label: str,
    created_by: str | None = None,
    notes: str | None = None,
    is_active: bool = True,
) -> MilestoneConfigRecord:
    if float(milestone_value) <= 0:
        raise ValueError("milestone_value must be positive")
    db = get_db()
    try:
        row = MilestoneConfigRecord(
            group_name=group_name,
            milestone_value=float(milestone_value),
            milestone_label=milestone_label,
            is_active=is_active,
            created_by=created_by,
            notes=notes,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row
    finally:
        db.close()


def update_milestone_config(config_id: int, **updates) -> Optional[MilestoneConfigRecord]:
    allowed = {"milestone_value", "milestone_label", "is_active", "notes"}
    db = get_db()
    try:
        row = db.query(MilestoneConfigRecord).filter(MilestoneConfigRecord.id == config_id).first()
        if not row:
            return None
        for key, value in updates.items():
            if key in allowed and value is not None:
                setattr(row, key, value)
        row.updated_at_utc = datetime.utcnow()
        db.commit()
        db.refresh(row)
        return row
    finally:
        db.close()


def deactivate_milestone_config(config_id: int) -> bool:
    return update_milestone_config(config_id, is_active=False) is not None


def was_notified(token_id: int, milestone_value: float) -> bool:
    db = get_db()
    try:
        row = (
            db.query(MilestoneNotificationRecord.id)
            .filter(
                MilestoneNotificationRecord.token_id == token_id,
                MilestoneNotificationRecord.milestone_value == float(milestone_value),
            )
            .first()
        )
        return row is not None
    finally:
        db.close()


def record_notification(
    token_id: int,
    token_address: str,
    group_name: str,
    milestone_value: float,
    milestone_label: str,
    message_id: str | None = None,
) -> MilestoneNotificationRecord:
    db = get_db()
    try:
        row = MilestoneNotificationRecord(
            token_id=token_id,
            token_address=token_address,
            group_name=group_name,
            milestone_value=float(milestone_value),
            milestone_label=milestone_label,
            message_id=message_id,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row
    finally:
        db.close()


def get_notifications_for_token(token_id: int) -> list[MilestoneNotificationRecord]:
    db = get_db()
    try:
        return (
            db.query(MilestoneNotificationRecord)
            .filter(MilestoneNotificationRecord.token_id == token_id)
            .order_by(MilestoneNotificationRecord.notified_at_utc.desc())
            .all()
        )
    finally:
        db.close()
