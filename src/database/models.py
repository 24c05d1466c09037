"""
Database models for the inbound guard
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


class GuardRule(Base):
    """Guard rule with its config and action stored as JSON text"""
    __tablename__ = 'guard_rules'

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    type = Column(String(50), nullable=False)  # explicit or ai_prompt
    config = Column(Text, nullable=False)
    actions = Column(Text)  # {"action": "allow" | "block" | "route", "endpointId": ...}
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)
    trigger_count = Column(Integer, nullable=False, default=0)
    last_triggered_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_guard_rules_user_active', 'user_id', 'is_active'),
    )


class Endpoint(Base):
    """Delivery target a route action can point to"""
    __tablename__ = 'endpoints'

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False)  # webhook, email, email_group
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class StructuredEmail(Base):
    """Parsed inbound email plus the guard disposition applied to it"""
    __tablename__ = 'structured_emails'

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(255), nullable=False)
    from_data = Column(Text)  # {"addresses": [{"name": ..., "address": ...}]}
    to_data = Column(Text)
    subject = Column(Text)
    text_body = Column(Text)
    html_body = Column(Text)
    attachments = Column(Text)  # JSON list of attachment metadata
    received_at = Column(DateTime)
    guard_blocked = Column(Boolean, default=False)
    guard_action = Column(String(50))
    guard_reason = Column(Text)
    guard_rule_id = Column(String(64))
    guard_metadata = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
