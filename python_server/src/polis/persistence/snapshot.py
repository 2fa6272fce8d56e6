"""World snapshots — seed the store from YAML and dump it back.

A snapshot file maps document paths to document data:

    meta:
      version: 1
    documents:
      worlds/world1: {season: Summer, weather: Clear, windSpeed: 5}
      worlds/world1/citySlots/s1: {x: 10, y: 12, islandId: i1, ownerId: null}
      users/alice: {username: alice}
      ...

On startup a seed file fills an empty (or partially empty) store; on
shutdown the whole store is exported to the same format.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

import yaml

from polis.persistence.document_store import DocumentStore, split_path
from polis.util.errors import ConfigError

log = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_PATH = "snapshot.yaml"
SNAPSHOT_VERSION = 1


async def seed_world(store: DocumentStore, path: str, overwrite: bool = False) -> int:
    """Write the documents of a snapshot file into *store*.

    Existing documents are kept unless *overwrite* is set.  All writes
    are committed in one batch.

    Returns:
        Number of documents written (0 if the file does not exist).

    Raises:
        ConfigError: The file is not a snapshot.
    """
    seed_file = Path(path)
    if not seed_file.exists():
        log.info("No seed file found at %s", path)
        return 0

    raw = yaml.safe_load(seed_file.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict) or not isinstance(raw.get("documents", {}), dict):
        raise ConfigError(f"Seed file {path} must contain a 'documents' mapping")

    batch = store.batch()
    skipped = 0
    for doc_path, data in (raw.get("documents") or {}).items():
        split_path(doc_path)
        if not isinstance(data, dict):
            raise ConfigError(f"Seed document {doc_path} is not a mapping")
        if not overwrite and await store.get(doc_path) is not None:
            skipped += 1
            continue
        batch.set(doc_path, data)
    if len(batch):
        await batch.commit()
    log.info("Seeded %d documents from %s (%d already present)", len(batch), path, skipped)
    return len(batch)


async def export_snapshot(store: DocumentStore, path: str = DEFAULT_SNAPSHOT_PATH,
                          prefix: str = "") -> int:
    """Dump every document (under *prefix*) to a snapshot file.

    The file is written to a temporary name first and then moved into
    place.

    Returns:
        Number of documents exported.
    """
    documents = await store.list_paths(prefix)
    snapshot: dict[str, Any] = {
        "meta": {
            "version": SNAPSHOT_VERSION,
            "saved_at": time.strftime("%Y-%m-%dT%H:%M:%S"),
            "saved_at_unix": time.time(),
        },
        "documents": {doc_path: data for doc_path, data in documents},
    }

    out = Path(path)
    tmp = out.with_suffix(".yaml.tmp")
    try:
        tmp.write_text(
            yaml.dump(snapshot, default_flow_style=False, allow_unicode=True, sort_keys=False),
            encoding="utf-8",
        )
        tmp.replace(out)
        log.info("Snapshot saved to %s (%d documents)", path, len(documents))
    except Exception:
        log.exception("Failed to save snapshot to %s", path)
        if tmp.exists():
            tmp.unlink(missing_ok=True)
        raise
    return len(documents)
