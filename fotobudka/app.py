"""Composition root: build and wire the client services explicitly."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from fotobudka.auth import AuthSession, StaticIdentityProvider
from fotobudka.catalog import CatalogResolver, StaticCatalogProvider
from fotobudka.config import Settings
from fotobudka.credentials import CredentialStore
from fotobudka.gateway import HttpGateway
from fotobudka.generation import GenerationClient
from fotobudka.ledger import TokenLedger
from fotobudka.store import EffectJobStore

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    settings: Settings
    credentials: CredentialStore
    gateway: HttpGateway
    session: AuthSession
    generation: GenerationClient
    store: EffectJobStore
    catalog: CatalogResolver
    ledger: TokenLedger

    async def startup(self) -> None:
        """Launch sequence: authenticate, resolve the catalog, load the balance."""
        state = await self.session.bootstrap()
        logger.info("Session state: %s", state.value)
        await self.catalog.fetch_catalog()
        logger.info("Catalog state: %s", self.catalog.state.value)
        if self.session.is_authorized:
            await self.ledger.load()

    async def close(self) -> None:
        await self.store.shutdown()
        await self.gateway.close()


def build_services(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AppServices:
    credentials = CredentialStore(settings.credentials_path)
    gateway = HttpGateway(
        settings.base_url,
        token_provider=credentials.get_token,
        timeout=settings.timeout,
        transport=transport,
    )
    session = AuthSession(
        gateway,
        credentials,
        identity=StaticIdentityProvider("primary", settings.external_id),
        alternate_identity=StaticIdentityProvider("alternate", settings.alternate_external_id),
        use_alternate_identity=settings.use_alternate_identity,
    )
    generation = GenerationClient(
        gateway,
        poll_interval=settings.poll_interval,
        max_attempts=settings.max_attempts,
    )
    store = EffectJobStore(
        generation,
        settings.data_dir,
        index_name=settings.index_file,
        assets_dir=settings.assets_dir,
    )
    catalog = CatalogResolver(
        primary=StaticCatalogProvider.from_mapping("primary", settings.primary_paywalls),
        alternate=StaticCatalogProvider.from_mapping("alternate", settings.alternate_paywalls),
        use_alternate=settings.use_alternate_catalog,
        allow_lists=settings.allow_lists or None,
    )
    return AppServices(
        settings=settings,
        credentials=credentials,
        gateway=gateway,
        session=session,
        generation=generation,
        store=store,
        catalog=catalog,
        ledger=TokenLedger(session),
    )


@asynccontextmanager
async def open_services(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[AppServices]:
    services = build_services(settings, transport)
    try:
        yield services
    finally:
        await services.close()
