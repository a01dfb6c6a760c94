"""SQLAlchemy ORM models for the appdoki service.

All models support both SQLite (development) and PostgreSQL (production).
Domain models live in appdoki.domain.models; nothing outside the infra and
service layers touches these classes directly.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all database models.

    Provides:
    - Async attribute loading via AsyncAttrs
    - Common timestamp fields (created_at, updated_at)
    - Utility methods for dict conversion and repr
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Record creation timestamp",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        comment="Record last update timestamp",
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary.

        Returns:
            Dictionary representation of model with all column values
        """
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}

    def __repr__(self) -> str:
        class_name = self.__class__.__name__
        pk_value = getattr(self, "id", None)
        return f"<{class_name}(id={pk_value})>"


class User(Base):
    """Local user record resolved from an external identity.

    Exactly one row exists per email address; the unique constraint on
    ``email`` is what serializes concurrent first logins.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, comment="Opaque user identifier (UUID)"
    )

    name: Mapped[str | None] = mapped_column(
        String(255), nullable=True, comment="Display name from the identity provider"
    )

    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        unique=True,
        comment="Email address (one record per email)",
    )

    picture: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Avatar URL from the identity provider"
    )

    external_subject: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Provider subject ('sub') recorded at creation",
    )

    __table_args__ = (Index("idx_user_external_subject", "external_subject"),)
