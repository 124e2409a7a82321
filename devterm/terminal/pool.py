"""Registry of concurrently open terminal sessions.

Each open terminal (for example one per dialog) owns an independent
TerminalSession; the pool only tracks them so they can be looked up and
shut down together.
"""

import asyncio
import threading
from typing import Optional

from loguru import logger

from .session import TerminalSession


class TerminalSessionPool:
    """Manages open terminal sessions by key.

    Simple dict-based registry following project conventions.
    Async-safe with asyncio.Lock.
    """

    _sessions: dict[str, TerminalSession] = {}
    _lock: Optional[asyncio.Lock] = None
    _init_lock: threading.Lock = threading.Lock()
    _watchers: set[asyncio.Task] = set()

    # Configuration (can be overridden)
    max_sessions: int = 10

    @classmethod
    def _get_lock(cls) -> asyncio.Lock:
        """Get or create the async lock (must be called from async context)."""
        if cls._lock is None:
            with cls._init_lock:
                if cls._lock is None:
                    cls._lock = asyncio.Lock()
        return cls._lock

    @classmethod
    async def open(cls, key: str, session: TerminalSession) -> TerminalSession:
        """Register and start a session, or return the live one for ``key``.

        Args:
            key: Registry key (e.g. device id or dialog id)
            session: A new, not yet started session

        Returns:
            The session registered under ``key``
        """
        lock = cls._get_lock()

        async with lock:
            existing = cls._sessions.get(key)
            if existing is not None:
                if existing.is_alive():
                    logger.debug(f"Reusing existing terminal session: {key}")
                    return existing
                logger.info(f"Dropping finished terminal session: {key} ({existing.state.value})")
                del cls._sessions[key]

            if len(cls._sessions) >= cls.max_sessions:
                raise RuntimeError(f"Max sessions ({cls.max_sessions}) reached")

            cls._sessions[key] = session
            logger.info(f"Opening terminal session: {key} (total: {len(cls._sessions)})")

        await session.start()
        watcher = asyncio.create_task(cls._forget_when_done(key, session))
        cls._watchers.add(watcher)
        watcher.add_done_callback(cls._watchers.discard)
        return session

    @classmethod
    async def _forget_when_done(cls, key: str, session: TerminalSession) -> None:
        await session.wait_closed()
        async with cls._get_lock():
            if cls._sessions.get(key) is session:
                del cls._sessions[key]
                logger.info(f"Terminal session ended: {key} ({session.state.value})")

    @classmethod
    async def get(cls, key: str) -> Optional[TerminalSession]:
        """Get a live session by key, or None."""
        async with cls._get_lock():
            session = cls._sessions.get(key)
            if session and session.is_alive():
                return session
            return None

    @classmethod
    async def close(cls, key: str) -> bool:
        """Cancel a session and wait for it to end.

        Returns True if a session was found.
        """
        async with cls._get_lock():
            session = cls._sessions.pop(key, None)

        if session is None:
            return False
        session.cancel()
        await session.wait_closed()
        logger.info(f"Closed terminal session: {key}")
        return True

    @classmethod
    def get_session_info(cls, key: Optional[str] = None) -> Optional[dict] | list[dict]:
        """Get info about session(s).

        Args:
            key: Optional key to look up a single session

        Returns:
            If key provided: dict with session info, or None if not found.
            If no key: list of dicts for all sessions.
        """
        # Take a snapshot to avoid reading the dict while it may be modified
        sessions_snapshot = dict(cls._sessions)

        if key is not None:
            session = sessions_snapshot.get(key)
            return {"key": key, **session.info()} if session else None

        return [{"key": k, **s.info()} for k, s in sessions_snapshot.items()]

    @classmethod
    async def list_sessions(cls) -> list[str]:
        """List all session keys."""
        async with cls._get_lock():
            return list(cls._sessions.keys())

    @classmethod
    def count(cls) -> int:
        """Get number of open sessions."""
        return len(cls._sessions)

    @classmethod
    async def close_all(cls) -> None:
        """Close every session (for shutdown)."""
        for key in list(cls._sessions.keys()):
            await cls.close(key)

        logger.info("Closed all terminal sessions")
