"""Durable storage for the auth session and the device identity."""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trackit.core.errors import StorageError
from trackit.models.database import StoredCredential
from trackit.models.sync import Session, User

logger = logging.getLogger(__name__)

SESSION_KEY = "session"
DEVICE_ID_KEY = "device_id"
DOCUMENT_VERSION = 1


def _session_to_document(session: Session) -> dict[str, Any]:
    return {
        "version": DOCUMENT_VERSION,
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
        "device_id": session.device_id,
        "issued_at": session.issued_at.isoformat(),
        "user": (
            {"id": session.user.id, "username": session.user.username, "email": session.user.email}
            if session.user else None
        ),
    }


def _session_from_document(document: dict[str, Any]) -> Session:
    if document.get("version") != DOCUMENT_VERSION:
        raise StorageError(f"Unsupported session document version: {document.get('version')!r}")
    try:
        user = document.get("user")
        return Session(
            access_token=document["access_token"],
            refresh_token=document["refresh_token"],
            device_id=document["device_id"],
            issued_at=datetime.fromisoformat(document["issued_at"]),
            user=User(id=int(user["id"]), username=user["username"], email=user["email"]) if user else None,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise StorageError(f"Corrupt session document: {e}") from e


class CredentialStore:
    """
    Persists the session across restarts.

    Every method runs in its own transaction, so an interrupted write leaves
    the previously committed value in place.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def _read(self, key: str) -> Optional[dict[str, Any]]:
        try:
            async with self.session_maker() as db:
                result = await db.execute(select(StoredCredential).where(StoredCredential.key == key))
                row = result.scalar_one_or_none()
                return row.document if row else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to read credential '{key}': {e}")
            raise StorageError(f"Failed to read credential '{key}'") from e

    async def _write(self, key: str, document: dict[str, Any]) -> None:
        stmt = insert(StoredCredential).values(key=key, document=document, updated_at=datetime.utcnow())
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"document": stmt.excluded.document, "updated_at": stmt.excluded.updated_at},
        )
        try:
            async with self.session_maker() as db:
                await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to write credential '{key}': {e}")
            raise StorageError(f"Failed to write credential '{key}'") from e

    async def get(self) -> Optional[Session]:
        document = await self._read(SESSION_KEY)
        if document is None:
            return None
        return _session_from_document(document)

    async def put(self, session: Session) -> None:
        await self._write(SESSION_KEY, _session_to_document(session))

    async def clear(self) -> None:
        """Remove the session. The device identity is kept."""
        try:
            async with self.session_maker() as db:
                await db.execute(delete(StoredCredential).where(StoredCredential.key == SESSION_KEY))
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to clear session: {e}")
            raise StorageError("Failed to clear session") from e

    async def device_id(self) -> str:
        """Return the persisted device id, generating one on first use."""
        document = await self._read(DEVICE_ID_KEY)
        if document and document.get("device_id"):
            return document["device_id"]

        device_id = str(uuid.uuid4())
        await self._write(DEVICE_ID_KEY, {"version": DOCUMENT_VERSION, "device_id": device_id})
        logger.info(f"Generated new device id {device_id}")
        return device_id
