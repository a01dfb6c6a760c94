"""User directory: resolution of external identities to local user records.

The directory is keyed by email. The first successful login for an unseen
email creates the record; later logins return it unchanged.
"""

import logging
import uuid

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from appdoki.domain.exceptions import DirectoryError
from appdoki.domain.models import NewUserIdentity, UserIdentity
from appdoki.infra.db.models import User as UserORM
from appdoki.infra.db.session import DatabaseSessionManager
from appdoki.infra.observability import record_user_created

logger = logging.getLogger(__name__)


class UserDirectory:
    """Service for looking up and creating users.

    Responsibilities:
    - Lookup by email or provider subject
    - Atomic find-or-create keyed by email

    Example:
        directory = UserDirectory(session_manager)

        user = await directory.find_or_create(
            NewUserIdentity(
                email="user@example.com",
                name="Jane Doe",
                picture="https://example.com/jane.png",
                external_subject="1234567890",
            )
        )
    """

    def __init__(self, session_manager: DatabaseSessionManager) -> None:
        """Initialize UserDirectory.

        Args:
            session_manager: Initialized database session manager
        """
        self.sessions = session_manager

    async def find_by_email(self, email: str) -> UserIdentity | None:
        """Get user by email.

        Raises:
            DirectoryError: If the store cannot be read
        """
        try:
            async with self.sessions.session() as session:
                user = await self._select_by_email(session, email)
                return UserIdentity.model_validate(user) if user else None
        except SQLAlchemyError as e:
            logger.error("User lookup by email failed", extra={"error": str(e)}, exc_info=True)
            raise DirectoryError(
                f"User lookup failed: {e}", context={"operation": "find_by_email"}
            ) from e

    async def find_by_subject(self, subject: str) -> UserIdentity | None:
        """Get user by provider subject (sub).

        Raises:
            DirectoryError: If the store cannot be read
        """
        try:
            async with self.sessions.session() as session:
                result = await session.execute(
                    select(UserORM).where(UserORM.external_subject == subject).limit(1)
                )
                user = result.scalars().first()
                return UserIdentity.model_validate(user) if user else None
        except SQLAlchemyError as e:
            logger.error("User lookup by subject failed", extra={"error": str(e)}, exc_info=True)
            raise DirectoryError(
                f"User lookup failed: {e}", context={"operation": "find_by_subject"}
            ) from e

    async def find_or_create(self, identity: NewUserIdentity) -> UserIdentity:
        """Return the user for identity.email, creating it if absent.

        Lookup, conditional insert and re-read run in one transaction. The
        insert ignores duplicate emails on PostgreSQL and SQLite; elsewhere a
        duplicate raises IntegrityError, which is recovered by re-reading the
        winning row. Concurrent callers for the same email all receive the
        same record.

        Args:
            identity: Identity fields for a possibly new user

        Returns:
            The existing or newly created user

        Raises:
            DirectoryError: If the store fails
        """
        try:
            async with self.sessions.session() as session:
                user, created = await self._find_or_create(session, identity)
        except IntegrityError:
            logger.info(
                "Concurrent user creation detected, re-reading",
                extra={"outcome": "duplicate"},
            )
            user = await self._reread(identity.email)
            created = False
        except SQLAlchemyError as e:
            logger.error(
                "User find-or-create failed",
                extra={"error": str(e)},
                exc_info=True,
            )
            raise DirectoryError(
                f"User find-or-create failed: {e}",
                context={"operation": "find_or_create", "email": identity.email},
            ) from e

        if created:
            record_user_created()
            logger.info("Created user", extra={"user_id": user.id})

        return user

    async def _find_or_create(
        self, session: AsyncSession, identity: NewUserIdentity
    ) -> tuple[UserIdentity, bool]:
        existing = await self._select_by_email(session, identity.email)
        if existing is not None:
            return UserIdentity.model_validate(existing), False

        values = {
            "id": str(uuid.uuid4()),
            "email": identity.email,
            "name": identity.name,
            "picture": identity.picture,
            "external_subject": identity.external_subject,
        }
        result = await session.execute(self._insert_ignoring_duplicates(values))
        created = result.rowcount == 1

        user = await self._select_by_email(session, identity.email)
        if user is None:
            raise DirectoryError(
                "User record missing after insert",
                context={"operation": "find_or_create", "email": identity.email},
            )
        return UserIdentity.model_validate(user), created

    async def _reread(self, email: str) -> UserIdentity:
        user = await self.find_by_email(email)
        if user is None:
            raise DirectoryError(
                "User record missing after duplicate insert",
                context={"operation": "find_or_create", "email": email},
            )
        return user

    @staticmethod
    async def _select_by_email(session: AsyncSession, email: str) -> UserORM | None:
        result = await session.execute(select(UserORM).where(UserORM.email == email))
        return result.scalar_one_or_none()

    def _insert_ignoring_duplicates(self, values: dict):
        dialect = self.sessions.engine.dialect.name
        if dialect == "postgresql":
            return pg_insert(UserORM).values(**values).on_conflict_do_nothing(
                index_elements=["email"]
            )
        if dialect == "sqlite":
            return sqlite_insert(UserORM).values(**values).on_conflict_do_nothing(
                index_elements=["email"]
            )
        return insert(UserORM).values(**values)
