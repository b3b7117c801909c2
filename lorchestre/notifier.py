"""
The notifier module pushes each newly published catalog to the connected clients.

Delivery is best-effort: a listener whose send fails is assumed gone and is dropped. Nothing is
queued or retried; a client that reconnects fetches `/media` instead.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

from lorchestre.catalog import Catalog

logger = logging.getLogger(__name__)

NEW_MEDIA_EVENT = "newmedia"


class Listener(Protocol):
    async def send_json(self, data: Any) -> None: ...


class UpdateNotifier:
    def __init__(self) -> None:
        self.listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self.listeners.append(listener)
        logger.debug(f"Listener subscribed, {len(self.listeners)} total")

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)
            logger.debug(f"Listener unsubscribed, {len(self.listeners)} total")

    async def broadcast(self, catalog: Catalog) -> int:
        """Send the catalog to every listener. Returns the number of listeners reached."""
        message = {"type": NEW_MEDIA_EVENT, "data": catalog.dump(), "ts": time.time()}
        dead: list[Listener] = []
        reached = 0
        # Iterate over a copy: listeners may (un)subscribe while we await.
        for listener in list(self.listeners):
            try:
                await listener.send_json(message)
                reached += 1
            except Exception as e:
                logger.debug(f"Dropping listener after failed send: {e}")
                dead.append(listener)
        for listener in dead:
            self.unsubscribe(listener)
        logger.info(f"Broadcast new catalog to {reached} listeners")
        return reached
