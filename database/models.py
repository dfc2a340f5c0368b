"""SQLAlchemy models."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class CalledToken(Base):
    __tablename__ = "called_tokens"

    id = Column(Integer, primary_key=True)
    group_name = Column(String, nullable=False, index=True)
    token_address = Column(String, nullable=False, index=True)
    symbol = Column(String, nullable=False)
    initial_market_cap_usd = Column(Float, nullable=False)
    first_called_at_utc = Column(DateTime, default=datetime.utcnow, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class MilestoneConfigRecord(Base):
    __tablename__ = "milestones_config"

    id = Column(Integer, primary_key=True)
    group_name = Column(String, nullable=False, index=True)
    milestone_value = Column(Float, nullable=False)
    milestone_label = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at_utc = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at_utc = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_by = Column(String, nullable=True)
    notes = Column(String, nullable=True)


class MilestoneNotificationRecord(Base):
    __tablename__ = "milestone_notifications"
    __table_args__ = (Index("ix_milestone_notifications_token_value", "token_id", "milestone_value"),)

    id = Column(Integer, primary_key=True)
    token_id = Column(Integer, nullable=False)
    token_address = Column(String, nullable=False)
    group_name = Column(String, nullable=False)
    milestone_value = Column(Float, nullable=False)
    milestone_label = Column(String, nullable=False)
    notified_at_utc = Column(DateTime, default=datetime.utcnow, nullable=False)
    message_id = Column(String, nullable=True)
