"""
The server module is the HTTP and WebSocket surface of the daemon.

Handlers only ever read from the CatalogStore. The one writer is `PUT /updatemusic`, which rebuilds in
a worker thread so that the event loop keeps serving reads from the old snapshot meanwhile, and then
pushes the new catalog to every connected WebSocket.
"""

from __future__ import annotations

import asyncio
import functools
import io
import logging

import uvicorn
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, Response
from PIL import Image
from starlette.concurrency import run_in_threadpool

from lorchestre.common import VERSION, LorchestreError
from lorchestre.config import Config
from lorchestre.notifier import UpdateNotifier
from lorchestre.store import CatalogStore

logger = logging.getLogger(__name__)

DEFAULT_COVER_CACHE_CONTROL = "public, max-age=2419200, immutable"
DEFAULT_COVER_SIZE = (512, 512)
DEFAULT_COVER_COLOR = (48, 48, 48)


@functools.cache
def default_cover() -> bytes:
    """A flat placeholder served for albums without a cached cover."""
    buf = io.BytesIO()
    Image.new("RGB", DEFAULT_COVER_SIZE, DEFAULT_COVER_COLOR).save(buf, format="PNG")
    return buf.getvalue()


def is_plain_file_name(handle: str) -> bool:
    return bool(handle) and "/" not in handle and "\\" not in handle and not handle.startswith(".")


def create_app(c: Config, store: CatalogStore, notifier: UpdateNotifier) -> FastAPI:
    app = FastAPI(title="lorchestre", version=VERSION)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    broadcast_lock = asyncio.Lock()

    @app.get("/", response_class=PlainTextResponse)
    async def index() -> str:
        return f"OK lorchestre v{VERSION}"

    @app.get("/media")
    async def media() -> JSONResponse:
        return JSONResponse(store.snapshot().dump())

    @app.get("/album/{id}")
    async def album(id: str) -> Response:
        a = store.get_album(id)
        if a is None:
            return PlainTextResponse(f"no album found with the id of {id}", status_code=404)
        return JSONResponse(a.dump())

    @app.get("/audio/{id}")
    async def audio(id: str) -> Response:
        t = store.get_track(id)
        if t is None:
            return PlainTextResponse(f"no song found with the id of {id}", status_code=404)
        if not t.file_path.is_file():
            logger.warning(f"Track {id} points to missing file {t.file_path}")
            return PlainTextResponse(f"no song found with the id of {id}", status_code=404)
        # FileResponse answers Range requests with 206 partial content.
        return FileResponse(t.file_path, media_type=t.mime)

    @app.get("/cover/{handle}")
    async def cover(handle: str) -> Response:
        if is_plain_file_name(handle):
            path = c.covers_dir / handle
            if path.is_file():
                return FileResponse(path)
        return Response(
            default_cover(),
            media_type="image/png",
            headers={"Cache-Control": DEFAULT_COVER_CACHE_CONTROL},
        )

    @app.put("/updatemusic")
    async def update_music(force: bool = False) -> JSONResponse:
        try:
            result = await run_in_threadpool(store.rebuild, c, force)
        except (LorchestreError, OSError) as e:
            logger.error(f"Catalog rebuild failed, keeping the previous catalog: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)
        # Concurrent updates may finish in any order. Listeners must never receive an older catalog
        # after a newer one, so broadcasts go out one at a time with whatever is published by then.
        async with broadcast_lock:
            await notifier.broadcast(store.snapshot())
        return JSONResponse(result.dump())

    @app.websocket("/ws")
    async def updates(websocket: WebSocket) -> None:
        await websocket.accept()
        notifier.subscribe(websocket)
        try:
            # Clients never send anything meaningful, in text or binary; reading just detects the disconnect.
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.debug("WebSocket client disconnected")
                    break
        finally:
            notifier.unsubscribe(websocket)

    return app


def run_server(c: Config) -> None:
    """Build the initial catalog, then serve until interrupted."""
    store = CatalogStore()
    result = store.rebuild(c)
    if result.failures:
        logger.warning(f"{len(result.failures)} files could not be added to the catalog")
    app = create_app(c, store, UpdateNotifier())
    logger.info(f"Listening on http://{c.host}:{c.port}")
    uvicorn.run(app, host=c.host, port=c.port)
