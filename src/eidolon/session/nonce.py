"""Single-use, time-boxed, rate-limited session tokens."""

import secrets
from datetime import timedelta
from typing import Callable, Optional

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError

from .. import config
from ..core.exceptions import ServiceUnavailableError
from ..db.database import Database
from ..db.models import SessionNonce, utcnow


class NonceManager:
    """
    Issues and validates the current nonce of each session.

    A session has at most one nonce row. Issuing replaces it and resets
    the request counter; validation consumes one request from it.
    """

    def __init__(
        self,
        db: Database,
        ttl_seconds: int = config.NONCE_TTL_SECONDS,
        max_requests: int = config.NONCE_MAX_REQUESTS,
        clock: Callable = utcnow,
    ):
        self.db = db
        self.ttl_seconds = ttl_seconds
        self.max_requests = max_requests
        self._clock = clock

    async def create_nonce(
        self,
        room_id: str,
        session_id: str,
        ttl_seconds: Optional[int] = None,
    ) -> str:
        """Issue a fresh nonce for the session, replacing any previous one."""
        nonce = secrets.token_urlsafe(24)
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl_seconds if ttl_seconds is not None else self.ttl_seconds)

        async with self.db.transaction() as session:
            row = await session.get(SessionNonce, session_id)
            if row is None:
                session.add(SessionNonce(
                    session_id=session_id,
                    room_id=room_id,
                    nonce=nonce,
                    expires_at=expires_at,
                    request_count=0,
                    created_at=now,
                ))
            else:
                row.nonce = nonce
                row.room_id = room_id
                row.expires_at = expires_at
                row.request_count = 0
                row.created_at = now

        logger.debug(f"Issued nonce for session {session_id} (room {room_id})")
        return nonce

    async def validate_nonce(
        self,
        session_id: str,
        nonce: Optional[str],
        max_requests: Optional[int] = None,
    ) -> bool:
        """
        Consume one request from the session's current nonce.

        Returns False for a wrong, expired or exhausted token. The check and
        the counter increment are a single conditional UPDATE, so two
        concurrent validations can never both take the last slot.
        """
        if not nonce:
            return False
        limit = max_requests if max_requests is not None else self.max_requests

        async with self.db.transaction() as session:
            result = await session.execute(
                update(SessionNonce)
                .where(
                    SessionNonce.session_id == session_id,
                    SessionNonce.nonce == nonce,
                    SessionNonce.expires_at > self._clock(),
                    SessionNonce.request_count < limit,
                )
                .values(request_count=SessionNonce.request_count + 1)
                .execution_options(synchronize_session=False)
            )
            valid = result.rowcount == 1

        if not valid:
            logger.warning(f"Nonce rejected for session {session_id}")
        return valid

    async def get_nonce(self, session_id: str) -> Optional[SessionNonce]:
        async with self.db.transaction() as session:
            return await session.scalar(
                select(SessionNonce).where(SessionNonce.session_id == session_id)
            )

    async def revoke(self, session_ids: list[str]) -> None:
        if not session_ids:
            return
        async with self.db.transaction() as session:
            await session.execute(
                delete(SessionNonce).where(SessionNonce.session_id.in_(session_ids))
            )

    async def cleanup_expired_nonces(self) -> bool:
        """Delete expired rows. Best-effort: failures are logged, never raised."""
        try:
            async with self.db.transaction() as session:
                result = await session.execute(
                    delete(SessionNonce).where(SessionNonce.expires_at < self._clock())
                )
            if result.rowcount:
                logger.info(f"Purged {result.rowcount} expired nonces")
            return True
        except (SQLAlchemyError, OSError, ServiceUnavailableError) as e:
            logger.error(f"Error cleaning up expired nonces: {e}")
            return False
