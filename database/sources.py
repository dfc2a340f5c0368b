"""Async adapters exposing the database helpers to the polling cycle."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

import config
from database import db
from database.models import CalledToken, MilestoneConfigRecord, MilestoneNotificationRecord
from monitor.errors import DataSourceError
from monitor.models import Group, MilestoneConfig, MilestoneNotification, Token

logger = logging.getLogger(__name__)


def to_token(row: CalledToken) -> Token:
    return Token(
        id=int(row.id),
        token_address=str(row.token_address),
        symbol=str(row.symbol),
        initial_market_cap_usd=float(row.initial_market_cap_usd),
        first_called_at_utc=row.first_called_at_utc,
    )


def to_milestone(row: MilestoneConfigRecord) -> MilestoneConfig:
    return MilestoneConfig(
        id=int(row.id),
        group_name=Group(row.group_name),
        milestone_value=float(row.milestone_value),
        milestone_label=str(row.milestone_label),
        is_active=bool(row.is_active),
        created_by=row.created_by,
        notes=row.notes,
    )


def to_notification(row: MilestoneNotificationRecord) -> MilestoneNotification:
    return MilestoneNotification(
        id=int(row.id),
        token_id=int(row.token_id),
        token_address=str(row.token_address),
        group_name=Group(row.group_name),
        milestone_value=float(row.milestone_value),
        milestone_label=str(row.milestone_label),
        notified_at_utc=row.notified_at_utc,
        message_id=row.message_id,
    )


async def _run(operation: str, func, *args, **kwargs):
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except SQLAlchemyError as exc:
        raise DataSourceError(f"{operation} failed: {exc}", operation=operation) from exc


class SqlTokenSource:
    def __init__(self, limit: int | None = None) -> None:
        self.limit = int(limit or config.TOKEN_LIST_LIMIT)

    async def list_active(self, group: Group) -> list[Token]:
        rows = await _run("list_active_tokens", db.list_active_tokens, Group(group).value, self.limit)
        return [to_token(row) for row in rows]

    async def health_check(self) -> bool:
        try:
            return bool(await _run("ping", db.ping))
        except DataSourceError as exc:
            logger.warning("Token store health check failed: %s", exc)
            return False


class SqlMilestoneConfigSource:
    async def list_active(self, group: Group) -> list[MilestoneConfig]:
        rows = await _run("list_active_milestones", db.list_active_milestones, Group(group).value)
        return [to_milestone(row) for row in rows]


class SqlNotificationLedger:
    async def was_notified(self, token_id: int, milestone_value: float) -> bool:
        return bool(await _run("was_notified", db.was_notified, token_id, milestone_value))

    async def record(
        self,
        token_id: int,
        token_address: str,
        group: Group,
        milestone_value: float,
        milestone_label: str,
    ) -> MilestoneNotification:
        row = await _run(
            "record_notification",
            db.record_notification,
            token_id,
            token_address,
            Group(group).value,
            milestone_value,
            milestone_label,
        )
        return to_notification(row)
