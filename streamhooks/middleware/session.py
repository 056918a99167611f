"""
Server-side session middleware backed by the application database.

The cookie holds only an HMAC-signed session id; the session dictionary is
stored in the ``sessions`` table. Handlers use ``request.session`` exactly
as with Starlette's cookie sessions.

The middleware borrows the ``Database`` owned by the orchestrator: it uses
the session factory per request and never opens or closes the database.
"""

import base64
import hashlib
import hmac
import json
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import delete, select
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from streamhooks.core.database import Database
from streamhooks.models.session import SessionRecord

logger = logging.getLogger(__name__)


class DatabaseSessionMiddleware(BaseHTTPMiddleware):
    """
    Load and persist ``request.session`` around every request.

    Example:
        >>> app.add_middleware(
        ...     DatabaseSessionMiddleware,
        ...     database=database,
        ...     secret=settings.SESSION_SECRET,
        ... )
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        database: Database,
        secret: str,
        cookie_name: str = "streamhooks_session",
        max_age: int = 86400 * 7,
        https_only: bool = False,
        same_site: str = "lax",
    ) -> None:
        super().__init__(app)
        self.database = database
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.https_only = https_only
        self.same_site = same_site
        self._secret = secret.encode("utf-8")

    # Cookie signing
    # ──────────────────────────────────────────────────────────────────────

    def _signature(self, session_id: str) -> str:
        digest = hmac.new(self._secret, session_id.encode("utf-8"), hashlib.sha256).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    def sign(self, session_id: str) -> str:
        return f"{session_id}.{self._signature(session_id)}"

    def unsign(self, value: Optional[str]) -> Optional[str]:
        if not value or "." not in value:
            return None
        session_id, signature = value.rsplit(".", 1)
        if not hmac.compare_digest(signature, self._signature(session_id)):
            logger.warning("Rejected session cookie with invalid signature")
            return None
        return session_id

    # Storage
    # ──────────────────────────────────────────────────────────────────────

    async def _load(self, session_id: str) -> Optional[Dict[str, Any]]:
        async with self.database.session_factory() as db:
            record = await db.scalar(
                select(SessionRecord).where(SessionRecord.session_id == session_id)
            )
            if record is None:
                return None
            expires_at = record.expires_at
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= datetime.now(timezone.utc):
                await db.delete(record)
                await db.commit()
                return None
            return json.loads(record.data)

    async def _save(self, session_id: str, data: str) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.max_age)
        async with self.database.session_factory() as db:
            record = await db.scalar(
                select(SessionRecord).where(SessionRecord.session_id == session_id)
            )
            if record is None:
                record = SessionRecord(session_id=session_id)
                db.add(record)
            record.data = data
            record.expires_at = expires_at
            await db.commit()

    async def _delete(self, session_id: str) -> None:
        async with self.database.session_factory() as db:
            await db.execute(delete(SessionRecord).where(SessionRecord.session_id == session_id))
            await db.commit()

    # Dispatch
    # ──────────────────────────────────────────────────────────────────────

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        session_id = self.unsign(request.cookies.get(self.cookie_name))
        data: Optional[Dict[str, Any]] = None
        if session_id is not None:
            data = await self._load(session_id)
            if data is None:
                session_id = None

        request.scope["session"] = data or {}
        initial = json.dumps(request.scope["session"], sort_keys=True, default=str)

        response = await call_next(request)

        session = request.scope["session"]
        current = json.dumps(session, sort_keys=True, default=str)
        if session:
            if session_id is None or current != initial:
                session_id = session_id or secrets.token_urlsafe(32)
                await self._save(session_id, current)
                response.set_cookie(
                    self.cookie_name,
                    self.sign(session_id),
                    max_age=self.max_age,
                    httponly=True,
                    secure=self.https_only,
                    samesite=self.same_site,
                )
        elif session_id is not None:
            await self._delete(session_id)
            response.delete_cookie(self.cookie_name)

        return response
