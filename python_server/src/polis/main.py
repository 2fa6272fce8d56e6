"""Game server entry point.

Initializes all components and starts the asyncio event loop:
1. Load configuration (game constants, unit/hero/building catalog)
2. Initialize persistence (document store, seed documents)
3. Create engine services (accounts, city, movement, village, dispatcher)
4. Wire event handlers
5. Start the REST API
6. Run the movement dispatcher and city loops until a shutdown signal

Usage:
    polis
    polis --config config --seed config/seed.yaml --snapshot snapshot.yaml
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass, field
from typing import Any, Optional

from polis.engine.accounts import AccountDirectory
from polis.engine.catalog import Catalog
from polis.engine.city_rules import CityRules
from polis.engine.city_service import CityService
from polis.engine.movement_processor import MovementProcessor
from polis.engine.movement_service import MovementService
from polis.engine.village_service import VillageService
from polis.loaders.game_config_loader import GameConfig, load_game_config
from polis.persistence.document_store import DocumentStore
from polis.persistence.snapshot import DEFAULT_SNAPSHOT_PATH, export_snapshot, seed_world
from polis.util.cache import TTLCache
from polis.util.events import (
    CitySaved,
    EventBus,
    MovementFailed,
    MovementProcessed,
    QueueItemCompleted,
    ReportCreated,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Default paths — relative to the working directory
# ---------------------------------------------------------------------------
DEFAULT_CONFIG_DIR = "config"
DEFAULT_SEED_PATH = "config/seed.yaml"


# ---------------------------------------------------------------------------
# Container for all loaded configuration
# ---------------------------------------------------------------------------


@dataclass
class Configuration:
    """Holds all data loaded from config files."""

    catalog: Catalog = field(default_factory=Catalog)
    game: GameConfig = field(default_factory=GameConfig)


# ---------------------------------------------------------------------------
# Container for all services (makes passing around easier)
# ---------------------------------------------------------------------------


@dataclass
class Services:
    """Holds references to all engine services."""

    game_config: GameConfig
    catalog: Catalog
    store: DocumentStore
    event_bus: EventBus
    accounts: AccountDirectory
    rules: CityRules
    city_service: CityService
    movement_service: MovementService
    village_service: VillageService
    movement_processor: MovementProcessor
    rest_server: Optional[Any] = None


# ===================================================================
# 1. Load configuration
# ===================================================================


def load_configuration(config_dir: str = DEFAULT_CONFIG_DIR) -> Configuration:
    """Load game constants and the catalog from *config_dir*."""
    log.info("Loading configuration …")
    game_cfg = load_game_config(os.path.join(config_dir, "game.yaml"))
    catalog = Catalog.from_directory(config_dir)
    log.info("  catalog:      %d units, %d heroes, %d buildings, %d research",
             len(catalog.units), len(catalog.heroes), len(catalog.buildings),
             len(catalog.research_items))
    log.info("  worlds:       %s", ", ".join(game_cfg.worlds))
    return Configuration(catalog=catalog, game=game_cfg)


# ===================================================================
# 2. Initialize persistence layer
# ===================================================================


async def init_persistence(game_cfg: GameConfig, seed_path: str = DEFAULT_SEED_PATH) -> DocumentStore:
    """Open the document store and write any missing seed documents."""
    log.info("Initializing persistence …")
    store = DocumentStore(game_cfg.db_path, max_attempts=game_cfg.transaction_attempts)
    await store.connect()
    log.info("  store:        connected (%s)", game_cfg.db_path)
    seeded = await seed_world(store, seed_path)
    log.info("  seed:         %d documents written", seeded)
    return store


# ===================================================================
# 3. Create engine services
# ===================================================================


def create_services(config: Configuration, store: DocumentStore) -> Services:
    """Instantiate all services with their dependencies.

    Wiring order matters: services that are injected into others are created first.
    """
    log.info("Creating services …")
    gc = config.game
    catalog = config.catalog
    event_bus = EventBus()
    cache = TTLCache(gc.lookup_cache_ttl_s)
    accounts = AccountDirectory(store, cache)
    rules = CityRules(catalog, gc)

    services = Services(
        game_config=gc,
        catalog=catalog,
        store=store,
        event_bus=event_bus,
        accounts=accounts,
        rules=rules,
        city_service=CityService(store, catalog, rules, accounts, event_bus, gc),
        movement_service=MovementService(store, catalog, rules, accounts, gc),
        village_service=VillageService(store, catalog, rules, accounts, event_bus, gc),
        movement_processor=MovementProcessor(store, catalog, gc, event_bus, cache),
    )
    log.info("  all services created")
    return services


# ===================================================================
# 4. Wire up event handlers
# ===================================================================


def wire_events(services: Services) -> None:
    """Register event handlers on the EventBus."""
    log.info("Wiring event handlers …")
    bus = services.event_bus

    bus.on(MovementProcessed, lambda evt: log.info(
        "[EVENT] Movement %s (%s) → %s", evt.movement_id, evt.movement_type, evt.outcome))
    bus.on(MovementFailed, lambda evt: log.warning(
        "[EVENT] Movement %s failed: %s", evt.movement_id, evt.error))
    bus.on(ReportCreated, lambda evt: log.info(
        "[EVENT] Report for %s: %s", evt.owner_id, evt.title))
    bus.on(QueueItemCompleted, lambda evt: log.info(
        "[EVENT] City %s: %s", evt.city_id, evt.message))
    bus.on(CitySaved, lambda evt: log.debug(
        "[EVENT] City %s saved", evt.city_id))

    log.info("  event handlers registered")


# ===================================================================
# 5. Start network server
# ===================================================================


async def start_network(services: Services) -> None:
    """Start the REST API (FastAPI + uvicorn) as a background task."""
    log.info("Starting network server …")
    from polis.network.rest_api import create_app
    import uvicorn

    gc = services.game_config
    rest_app = create_app(services)
    config = uvicorn.Config(
        rest_app,
        host=gc.rest_host,
        port=gc.rest_port,
        log_level="info",
        access_log=False,
    )
    rest_server = uvicorn.Server(config)
    services.rest_server = rest_server
    asyncio.create_task(rest_server.serve())
    log.info("  REST API listening on http://%s:%d", gc.rest_host, gc.rest_port)


# ===================================================================
# 6. Run the game loops
# ===================================================================


async def run_game_loops(services: Services, snapshot_path: str = DEFAULT_SNAPSHOT_PATH) -> None:
    """Run the movement dispatcher and city loops until a shutdown signal.

    On shutdown the store is exported to *snapshot_path* and closed.
    """
    log.info("Starting game loops …")
    loop = asyncio.get_running_loop()

    def _request_shutdown() -> None:
        log.info("Shutdown signal received — stopping …")
        services.movement_processor.stop()
        services.city_service.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _request_shutdown)

    store = services.store
    await asyncio.gather(
        services.movement_processor.run(services.game_config.worlds),
        services.city_service.run(store.server_time),
    )

    # --- Cleanup after loops exit ---
    log.info("Shutting down …")
    try:
        await services.city_service.autosave(store.server_time())
        await export_snapshot(store, snapshot_path)
    except Exception:
        log.exception("Snapshot failed — continuing shutdown")

    if services.rest_server is not None:
        services.rest_server.should_exit = True
        log.info("  REST API server stopped")
    await store.close()
    log.info("  store closed")
    log.info("  goodbye")


# ===================================================================
# Entry points
# ===================================================================


async def _start(config_dir: str = DEFAULT_CONFIG_DIR, seed_path: str = DEFAULT_SEED_PATH,
                 snapshot_path: str = DEFAULT_SNAPSHOT_PATH) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    log.info("=== Polis server starting ===")

    config = load_configuration(config_dir)
    store = await init_persistence(config.game, seed_path)
    services = create_services(config, store)
    wire_events(services)
    await start_network(services)
    await run_game_loops(services, snapshot_path)


def _arg(name: str, default: str) -> str:
    if name not in sys.argv:
        return default
    idx = sys.argv.index(name)
    if idx + 1 >= len(sys.argv):
        print(f"Error: {name} requires an argument", file=sys.stderr)
        sys.exit(1)
    return sys.argv[idx + 1]


def main() -> None:
    """Entry point for the game server.

    Supports command-line arguments:
        --config <dir>       Configuration directory (default: config)
        --seed <path>        Seed documents written on startup (default: config/seed.yaml)
        --snapshot <path>    Snapshot written on shutdown (default: snapshot.yaml)
    """
    config_dir = _arg("--config", DEFAULT_CONFIG_DIR)
    asyncio.run(_start(
        config_dir=config_dir,
        seed_path=_arg("--seed", os.path.join(config_dir, "seed.yaml")),
        snapshot_path=_arg("--snapshot", DEFAULT_SNAPSHOT_PATH),
    ))


if __name__ == "__main__":
    main()
