"""Readiness MCP server — application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
import os

from fastmcp import FastMCP

from readiness.core.cache.durable import DurableCache
from readiness.core.cache.memory import MemoryCache
from readiness.core.cache.tiered import TieredCache
from readiness.core.config.settings import Settings, get_settings
from readiness.core.storage.database import SignalDatabase
from readiness.core.storage.encryption import EncryptionError, FieldEncryptor
from readiness.core.storage.repository import SignalRepository
from readiness.domains.health.connectors import SignalProvider
from readiness.domains.health.connectors.apple_health import AppleHealthSignalProvider
from readiness.domains.health.connectors.composite import CompositeSignalProvider
from readiness.domains.health.connectors.mock_data import MockSignalProvider
from readiness.domains.health.connectors.signal_bank import SignalBankStore
from readiness.domains.health.domain_logic.coordinator import ScoresCoordinator
from readiness.domains.health.tools.anomaly_tools import register_anomaly_tools
from readiness.domains.health.tools.score_tools import register_score_tools
from readiness.domains.health.tools.signal_tools import register_signal_tools

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def _open_repository(settings: Settings) -> SignalRepository:
    """Open the signal bank, or an in-memory one when no key is configured."""
    if settings.encryption_key:
        try:
            encryptor = FieldEncryptor(settings.encryption_key)
            database = SignalDatabase(settings.db_path)
            database.initialize()
            return SignalRepository(database, encryptor, user_id=settings.user_id)
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)

    logger.warning(
        "Running with an in-memory signal bank; set ENCRYPTION_KEY to persist "
        "signals, scores and cache across restarts."
    )
    database = SignalDatabase(":memory:")
    database.initialize()
    return SignalRepository(
        database, FieldEncryptor(FieldEncryptor.generate_key()), user_id=settings.user_id
    )


def _build_provider(settings: Settings) -> SignalProvider | None:
    providers: list[SignalProvider] = []
    if settings.apple_health_export_path:
        providers.append(AppleHealthSignalProvider(os.path.expanduser(settings.apple_health_export_path)))
    if settings.use_mock_data:
        providers.append(MockSignalProvider())
    if not providers:
        return None
    if len(providers) == 1:
        return providers[0]
    return CompositeSignalProvider(providers)


def create_app(
    *,
    repository_override: SignalRepository | None = None,
    provider_override: SignalProvider | None = None,
    coordinator_override: ScoresCoordinator | None = None,
) -> FastMCP:
    """Create and configure the readiness MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Opens the encrypted signal bank
    3. Builds the signal sources used by ``sync_signals``
    4. Wires the tiered cache and the scores coordinator
    5. Registers all tools
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        "Readiness Engine",
        instructions=(
            "Daily readiness scoring. Calculates recovery, sleep and strain scores "
            "from personal baselines and flags illness/wellness anomalies."
        ),
    )

    # --- Storage ---
    repository = repository_override if repository_override is not None else _open_repository(settings)

    # --- Signal sources ---
    provider = provider_override if provider_override is not None else _build_provider(settings)
    if provider is None:
        logger.info("No signal source configured; only manually recorded signals are scored")
    else:
        logger.info("Signal source: %s", provider.data_source)

    # --- Coordinator ---
    if coordinator_override is not None:
        coordinator = coordinator_override
    else:
        cache = TieredCache(
            MemoryCache(),
            DurableCache(repository.database, repository.encryptor),
            ttls=settings.cache_ttls(),
        )
        coordinator = ScoresCoordinator(
            SignalBankStore(repository),
            cache=cache,
            history=repository,
            config=settings.scoring_config(),
        )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": "Readiness Engine",
            "version": VERSION,
            "phase": coordinator.state.phase.value,
            "signal_source": provider.data_source if provider is not None else None,
            "samples_stored": repository.count_samples(),
            "data_sources": [s.source_type for s in repository.get_data_sources()],
        }

    register_score_tools(server, coordinator, repository)
    register_anomaly_tools(server, coordinator)
    register_signal_tools(server, repository, coordinator, provider)
    logger.info("Readiness tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
