from __future__ import annotations

import contextlib
import logging
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.staticfiles import StaticFiles

from .rss import FeedPublisher
from .scheduler import PollScheduler


logger = logging.getLogger(__name__)


def create_app(publisher: FeedPublisher, scheduler: Optional[PollScheduler] = None) -> FastAPI:
    """Build the HTTP app: /feed, /audio/... and /healthz.

    When a scheduler is given it runs in a background thread for the app's lifetime.
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.stop(timeout=5.0)

    app = FastAPI(title="lowfi-podcast", version="1.0.0", lifespan=lifespan)

    # Sync handler: FastAPI runs it in the threadpool, so feed fetches don't block the loop
    @app.get("/feed")
    def get_feed() -> Response:
        body, media_type = publisher.render()
        return Response(content=body, media_type=media_type)

    @app.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok", "channels": len(publisher.channels)}

    app.mount("/audio", StaticFiles(directory=str(publisher.store.root), check_dir=False), name="audio")
    return app
