"""Process-scoped wiring of the sync core."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from trackit.core.config import Settings
from trackit.core.database import create_engine, create_session_maker, init_db
from trackit.services.auth import AuthSessionManager
from trackit.services.auth_api import AuthApi
from trackit.services.connectivity import ConnectivityMonitor
from trackit.services.credentials import CredentialStore
from trackit.services.queue import EntryQueue
from trackit.services.remote import ImagesApi, MetricsApi
from trackit.services.sync import SyncOrchestrator
from trackit.services.transport import ApiClient, BearerTokenAuth

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """
    Everything the sync core needs, built once at startup.

    Components get explicit references to each other from here; nothing is
    looked up through module globals.
    """

    settings: Settings
    engine: AsyncEngine
    session_maker: async_sessionmaker[AsyncSession]
    credentials: CredentialStore
    auth: AuthSessionManager
    queue: EntryQueue
    orchestrator: SyncOrchestrator
    connectivity: ConnectivityMonitor
    public_client: ApiClient
    authed_client: ApiClient

    @classmethod
    async def create(cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "Runtime":
        """Open the database, restore the session and start the orchestrator."""
        db_dir = os.path.dirname(settings.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        engine = create_engine(settings.db_path, echo=settings.debug)
        await init_db(engine)
        session_maker = create_session_maker(engine)

        timeout = httpx.Timeout(
            connect=settings.connect_timeout,
            read=settings.read_timeout,
            write=settings.write_timeout,
            pool=settings.connect_timeout,
        )

        credentials = CredentialStore(session_maker)
        public_client = ApiClient(settings.api_base_url, timeout, transport=transport)
        auth = AuthSessionManager(AuthApi(public_client), credentials)

        authed_client = ApiClient(settings.api_base_url, timeout, auth=BearerTokenAuth(auth), transport=transport)
        queue = EntryQueue(session_maker)
        orchestrator = SyncOrchestrator(
            queue=queue,
            auth=auth,
            metrics_api=MetricsApi(authed_client),
            images_api=ImagesApi(authed_client, upload_timeout=settings.upload_timeout),
            session_maker=session_maker,
            photos_dir=settings.photos_dir,
            page_size=settings.download_page_size,
            download_server_data=settings.download_server_data,
        )
        connectivity = ConnectivityMonitor(settings.api_base_url, settings.connectivity_timeout, transport=transport)

        await auth.start()
        await orchestrator.start()
        logger.info(f"Runtime started (database {settings.db_path}, API {settings.api_base_url})")

        return cls(
            settings=settings,
            engine=engine,
            session_maker=session_maker,
            credentials=credentials,
            auth=auth,
            queue=queue,
            orchestrator=orchestrator,
            connectivity=connectivity,
            public_client=public_client,
            authed_client=authed_client,
        )

    async def close(self) -> None:
        """Let the running pass finish its entry, then release resources."""
        await self.orchestrator.stop()
        await self.authed_client.close()
        await self.public_client.close()
        await self.engine.dispose()
        logger.info("Runtime closed")


def get_runtime(request: Request) -> Runtime:
    """Dependency for FastAPI to get the process runtime."""
    return request.app.state.runtime
