"""Database infrastructure module.

Key components:
- models: SQLAlchemy ORM models
- session: Database session management with connection pooling
"""

from appdoki.infra.db.models import Base, User
from appdoki.infra.db.session import DatabaseSessionManager

__all__ = [
    # Models
    "Base",
    "User",
    # Session management
    "DatabaseSessionManager",
]
