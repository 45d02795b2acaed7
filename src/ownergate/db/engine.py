"""Async SQLAlchemy engine.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection
pooling. There is deliberately no shared request session here: every
user-owned read/write runs on the AsyncSession of a ScopedSecurityContext
handle, which checks out a dedicated connection and binds the caller's
id on it. Unscoped connections (health check, the gateway's existence
probe) go straight to engine.connect().
"""

from sqlalchemy.ext.asyncio import create_async_engine

from ownergate.config import settings

# Connection pool: each in-flight scoped request holds one connection,
# so size the pool for peak concurrent requests.
# echo=True in dev to see SQL queries.
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
)
