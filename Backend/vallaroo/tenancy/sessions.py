"""
Lifecycle of per-user BusinessContext objects.

The registry lives on `app.state` and is created/closed by the
application startup/shutdown hooks. Contexts are opened on sign-in (first
authenticated request) and closed on sign-out or after sitting idle.
"""

import asyncio
import logging
import time
import uuid
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..auth import get_current_user_id
from .context import BusinessContext, ContextState
from .queries import ContextDataSource, SqlContextDataSource
from .resolver import TieBreak


logger = logging.getLogger(__name__)


class SessionContextRegistry:
    """
    Owns every live BusinessContext, keyed by user id.

    Sessions that end without a sign-out (expired token, closed tab) are
    evicted once idle for longer than `idle_ttl` seconds; the sweep runs
    on every open(). Evicted contexts are closed, so their pending
    preference writes still flush.
    """

    def __init__(
        self,
        data_source: ContextDataSource,
        tie_break: TieBreak = TieBreak.CREATED_AT,
        close_timeout: float = 5.0,
        idle_ttl: Optional[float] = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._data_source = data_source
        self._tie_break = TieBreak(tie_break)
        self._close_timeout = close_timeout
        self._idle_ttl = idle_ttl
        self._clock = clock
        self._contexts: dict[uuid.UUID, BusinessContext] = {}
        self._last_used: dict[uuid.UUID, float] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_session_factory(
        cls,
        session_factory: async_sessionmaker,
        tie_break: TieBreak = TieBreak.CREATED_AT,
        close_timeout: float = 5.0,
        idle_ttl: Optional[float] = 1800.0,
    ) -> "SessionContextRegistry":
        return cls(SqlContextDataSource(session_factory), tie_break, close_timeout, idle_ttl)

    def __len__(self) -> int:
        return len(self._contexts)

    def get(self, user_id: uuid.UUID) -> Optional[BusinessContext]:
        return self._contexts.get(user_id)

    async def open(self, user_id: uuid.UUID) -> BusinessContext:
        """Return the user's context, creating it on first sign-in."""
        async with self._lock:
            now = self._clock()
            idle = self._pop_idle(now, keep=user_id)

            ctx = self._contexts.get(user_id)
            if ctx is None or ctx.is_closed:
                ctx = BusinessContext(user_id, self._data_source, self._tie_break)
                self._contexts[user_id] = ctx
                logger.info(f"Opened business context for user {user_id}")
            self._last_used[user_id] = now

        await self._close_contexts(idle)
        return ctx

    async def close(self, user_id: uuid.UUID) -> bool:
        """Destroy the user's context on sign-out. Returns False if none."""
        async with self._lock:
            ctx = self._contexts.pop(user_id, None)
            self._last_used.pop(user_id, None)
        if ctx is None:
            return False
        await ctx.close(timeout=self._close_timeout)
        logger.info(f"Closed business context for user {user_id}")
        return True

    async def evict_idle(self) -> int:
        """Close every context idle for longer than the TTL. Returns the count."""
        async with self._lock:
            idle = self._pop_idle(self._clock())
        await self._close_contexts(idle)
        return len(idle)

    async def close_all(self) -> None:
        async with self._lock:
            contexts = list(self._contexts.values())
            self._contexts.clear()
            self._last_used.clear()
        for ctx in contexts:
            await ctx.close(timeout=self._close_timeout)
        if contexts:
            logger.info(f"Closed {len(contexts)} business context(s) on shutdown")

    def _pop_idle(self, now: float, keep: Optional[uuid.UUID] = None) -> list[BusinessContext]:
        # Caller holds self._lock
        if self._idle_ttl is None:
            return []
        idle = []
        for user_id, last_used in list(self._last_used.items()):
            ctx = self._contexts.get(user_id)
            if user_id == keep or now - last_used <= self._idle_ttl:
                continue
            if ctx is not None and ctx.is_busy:
                continue
            self._last_used.pop(user_id)
            if ctx is not None:
                idle.append(self._contexts.pop(user_id))
        return idle

    async def _close_contexts(self, contexts: list[BusinessContext]) -> None:
        for ctx in contexts:
            await ctx.close(timeout=self._close_timeout)
            logger.info(f"Evicted idle business context for user {ctx.user_id}")


# ────────────────────────────────────────────────────────────────
# FastAPI Dependencies
# ────────────────────────────────────────────────────────────────

def get_context_registry(request: Request) -> SessionContextRegistry:
    return request.app.state.context_registry


async def get_business_context(
    user_id: uuid.UUID = Depends(get_current_user_id),
    registry: SessionContextRegistry = Depends(get_context_registry),
) -> BusinessContext:
    """
    FastAPI dependency returning the caller's context, loaded.

    Usage:
        @router.get("/something")
        async def handler(ctx: BusinessContext = Depends(get_business_context)):
            snapshot = ctx.snapshot()
    """
    ctx = await registry.open(user_id)
    if ctx.state == ContextState.UNINITIALIZED:
        await ctx.load_initial_context()
    return ctx
