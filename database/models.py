"""
SQLAlchemy ORM models for organizations, channels and the mention cache.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, relationship


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "organizations"

    org_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    is_trialing = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_now)

    integrations = relationship("Integration", back_populates="organization", cascade="all, delete-orphan")


class Integration(Base):
    """A connected channel.  ``internal_id`` is the provider's own account id."""

    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("organization_id", "internal_id", name="uq_integrations_org_internal_id"),
        Index("ix_integrations_org_provider", "organization_id", "provider_identifier"),
    )

    integration_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.org_id", ondelete="CASCADE"), nullable=False)
    provider_identifier = Column(String(64), nullable=False)
    internal_id = Column(String(256), nullable=False)
    name = Column(String(255), nullable=False)
    username = Column(String(255))
    picture = Column(Text)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    token_expiration = Column(DateTime(timezone=True))
    additional_settings = Column(JSONB, nullable=False, default=list)
    custom_instance_details = Column(Text)
    disabled = Column(Boolean, nullable=False, default=False)
    in_between_steps = Column(Boolean, nullable=False, default=False)
    refresh_needed = Column(Boolean, nullable=False, default=False)
    one_time_token = Column(Boolean, nullable=False, default=False)
    timezone = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)
    deleted_at = Column(DateTime(timezone=True))

    organization = relationship("Organization", back_populates="integrations")


class Mention(Base):
    """Cached @-mention candidates, shared across organizations per platform."""

    __tablename__ = "mentions"
    __table_args__ = (
        UniqueConstraint("platform", "username", name="uq_mentions_platform_username"),
    )

    mention_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    platform = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    username = Column(String(255), nullable=False)
    image = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=_now)
