"""fotobudka: async client for AI photo/video effect generation."""

from fotobudka.app import AppServices, build_services, open_services
from fotobudka.auth import AuthSession, AuthState
from fotobudka.catalog import CatalogResolver, CatalogState
from fotobudka.errors import (
    CancellationError,
    DecodingError,
    DownloadFailed,
    FotobudkaError,
    GenerationFailed,
    HttpStatusError,
    NetworkError,
)
from fotobudka.gateway import HttpGateway
from fotobudka.generation import GenerationClient
from fotobudka.ledger import TokenLedger
from fotobudka.models import CatalogEntry, GenerationJobRecord, JobKind, JobStatus
from fotobudka.store import EffectJobStore

__all__ = [
    "AppServices",
    "AuthSession",
    "AuthState",
    "CancellationError",
    "CatalogEntry",
    "CatalogResolver",
    "CatalogState",
    "DecodingError",
    "DownloadFailed",
    "EffectJobStore",
    "FotobudkaError",
    "GenerationClient",
    "GenerationFailed",
    "GenerationJobRecord",
    "HttpGateway",
    "HttpStatusError",
    "JobKind",
    "JobStatus",
    "NetworkError",
    "TokenLedger",
    "build_services",
    "open_services",
]
