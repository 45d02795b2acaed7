"""Per-request database security scope.

Learn: Row-level security policies in Postgres read the caller's id from
a session setting (app.authenticated_user_id). If that setting lived on a
pooled connection shared between requests, request B could run with
request A's identity. So every scope checks out its OWN connection,
binds the setting on it, and hands back a handle with an AsyncSession
bound to that connection. The handle is also published in a ContextVar
so storage code reads it explicitly via current_scope().

Lifecycle:
    handle = await ctx.enter(owner_id)     # set_config + commit
    ... storage calls use handle.session ...
    await ctx.exit(handle)                 # clear + commit + close

exit() must always run (use ctx.scope() or a finally block). It never
raises: the response is usually on its way already. A failed clear is
logged at error severity with alarm=True and the connection is
invalidated so a still-bound session can't go back into the pool.
"""

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession

from ownergate.gateway.errors import ServiceUnavailableError
from ownergate.gateway.identity import mask_id

logger = structlog.get_logger()

SCOPE_SETTING = "app.authenticated_user_id"
CONTEXT_SETTING = "app.context"
CONTEXT_VALUE = "api_route"

_BIND_SQL = text(
    "SELECT set_config(:user_setting, :user_id, false), "
    "set_config(:context_setting, :context_value, false)"
)
_CLEAR_SQL = text(
    "SELECT set_config(:user_setting, '', false), "
    "set_config(:context_setting, '', false)"
)


@dataclass
class SecurityScope:
    acting_as_id: str


@dataclass
class ScopeHandle:
    """One bound connection for one request."""

    scope: SecurityScope
    connection: AsyncConnection
    session: AsyncSession
    closed: bool = False
    _token: Optional[Token] = field(default=None, repr=False)

    @property
    def acting_as_id(self) -> str:
        return self.scope.acting_as_id


_current_scope: ContextVar[Optional[ScopeHandle]] = ContextVar(
    "ownergate_security_scope", default=None
)


def _default_session(conn: AsyncConnection) -> AsyncSession:
    return AsyncSession(bind=conn, expire_on_commit=False)


def current_scope() -> Optional[ScopeHandle]:
    """The scope bound for the request running in this context, if any."""
    handle = _current_scope.get()
    if handle is not None and handle.closed:
        return None
    return handle


class ScopedSecurityContext:
    """Binds and clears the acting-as identity on dedicated connections."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: Optional[Callable[[AsyncConnection], AsyncSession]] = None,
    ):
        self._engine = engine
        self._session_factory = session_factory or _default_session

    async def enter(self, caller_id: str) -> ScopeHandle:
        """Check out a connection and bind it to caller_id.

        Raises ServiceUnavailableError if storage can't be reached.
        """
        conn: Optional[AsyncConnection] = None
        try:
            conn = await self._engine.connect()
            await conn.execute(
                _BIND_SQL,
                {
                    "user_setting": SCOPE_SETTING,
                    "user_id": caller_id,
                    "context_setting": CONTEXT_SETTING,
                    "context_value": CONTEXT_VALUE,
                },
            )
            await conn.commit()
        except Exception as e:
            logger.error(
                "gateway.scope.enter_failed",
                acting_as=mask_id(caller_id),
                error=type(e).__name__,
            )
            if conn is not None:
                await self._release(conn, invalidate=True)
            raise ServiceUnavailableError() from e

        session = self._session_factory(conn)
        handle = ScopeHandle(scope=SecurityScope(caller_id), connection=conn, session=session)
        handle._token = _current_scope.set(handle)
        logger.info("gateway.scope.entered", acting_as=mask_id(caller_id))
        return handle

    async def exit(self, handle: Optional[ScopeHandle]) -> bool:
        """Clear the binding and release the connection. Never raises.

        Returns True if the binding was cleared cleanly.
        """
        if handle is None:
            return True
        if handle.closed:
            logger.warning("gateway.scope.exit_repeated", acting_as=mask_id(handle.acting_as_id))
            return True
        handle.closed = True
        self.unpublish(handle)

        cleared = True
        try:
            await handle.session.close()
            await handle.connection.execute(
                _CLEAR_SQL,
                {"user_setting": SCOPE_SETTING, "context_setting": CONTEXT_SETTING},
            )
            await handle.connection.commit()
        except Exception as e:
            cleared = False
            logger.error(
                "gateway.scope.exit_failed",
                acting_as=mask_id(handle.acting_as_id),
                error=type(e).__name__,
                alarm=True,
            )

        await self._release(handle.connection, invalidate=not cleared)
        if cleared:
            logger.info("gateway.scope.exited", acting_as=mask_id(handle.acting_as_id))
        return cleared

    @asynccontextmanager
    async def scope(self, caller_id: str) -> AsyncIterator[ScopeHandle]:
        handle = await self.enter(caller_id)
        try:
            yield handle
        finally:
            # shield() runs exit() in a copied context, so unpublish here first.
            self.unpublish(handle)
            await asyncio.shield(self.exit(handle))

    @staticmethod
    def unpublish(handle: ScopeHandle) -> None:
        """Remove handle from this context's current_scope() slot."""
        if _current_scope.get() is handle:
            token, handle._token = handle._token, None
            try:
                if token is not None:
                    _current_scope.reset(token)
                else:
                    _current_scope.set(None)
            except (ValueError, RuntimeError):
                # Token was created in another context (e.g. a dependency task).
                _current_scope.set(None)

    @staticmethod
    async def _release(conn: AsyncConnection, invalidate: bool) -> None:
        try:
            if invalidate:
                await conn.invalidate()
            await conn.close()
        except Exception as e:
            logger.error(
                "gateway.scope.release_failed",
                error=type(e).__name__,
                alarm=True,
            )
