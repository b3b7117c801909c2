"""
The store module holds the one published Catalog that the server reads from.

A published Catalog is never mutated. Rebuilds construct a whole new Catalog without holding any lock
that readers wait on, then swap the reference in a single assignment. A reader that grabbed the old
snapshot keeps a complete, consistent value for as long as it holds it; the old snapshot is freed
when the last reader lets go.

Writers (rebuilds and `apply`) are serialized among themselves, so at most one rebuild runs at a
time and two writers can never lose each other's update.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable

from lorchestre.catalog import Album, BuildResult, Catalog, build_catalog
from lorchestre.config import Config
from lorchestre.tracks import Track

logger = logging.getLogger(__name__)


class CatalogStore:
    def __init__(self, catalog: Catalog | None = None) -> None:
        self._catalog = catalog if catalog is not None else Catalog()
        # Guards the reference only. Held for a swap or a read, never across I/O.
        self._lock = threading.Lock()
        # Serializes writers.
        self._write_lock = threading.Lock()

    def snapshot(self) -> Catalog:
        """Return the current Catalog. Treat it as read-only."""
        with self._lock:
            return self._catalog

    def get_track(self, id: str) -> Track | None:
        return self.snapshot().get_track(id)

    def get_album(self, id: str) -> Album | None:
        return self.snapshot().get_album(id)

    def publish(self, catalog: Catalog) -> None:
        with self._write_lock:
            self._swap(catalog)

    def rebuild(self, c: Config, force: bool = False) -> BuildResult:
        """
        Build a new Catalog from disk and publish it. If the build raises, the exception propagates
        and the previous Catalog stays published.
        """
        with self._write_lock:
            logger.info(f"Rebuilding catalog from {c.music_source_dir}")
            result = build_catalog(c, force=force)
            self._swap(result.catalog)
            return result

    def apply(self, fn: Callable[[Catalog], None]) -> Catalog:
        """
        Run an incremental update against a private copy of the current Catalog, then publish the
        copy. If fn raises, nothing is published.
        """
        with self._write_lock:
            catalog = copy.deepcopy(self.snapshot())
            fn(catalog)
            self._swap(catalog)
            return catalog

    def _swap(self, catalog: Catalog) -> None:
        with self._lock:
            self._catalog = catalog
        logger.info(
            f"Published catalog of {len(catalog.albums)} albums and {len(catalog.playlists)} playlists"
        )
