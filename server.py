import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from livetrack.broadcast import SubscriptionManager
from livetrack.config import Settings, load_settings
from livetrack.history import HistoryStore
from livetrack.ingest import IngestService
from livetrack.router import router

# ===== 설정 / 로깅 =====
SETTINGS = load_settings()

logging.basicConfig(
    level=getattr(logging, SETTINGS.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("livetrack")


# ===== FastAPI app factory =====
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or SETTINGS

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = HistoryStore(limit=settings.history_limit)
        subscribers = SubscriptionManager(queue_size=settings.queue_size)
        app.state.store = store
        app.state.subscribers = subscribers
        app.state.ingest = IngestService(store, subscribers)
        logger.info(
            "live tracker ready (history_limit=%d, queue_size=%d)",
            settings.history_limit, settings.queue_size,
        )
        try:
            yield
        finally:
            closed = subscribers.close_all()
            logger.info("live tracker stopped, closed %d subscriptions", closed)

    app = FastAPI(title="Live location tracker", lifespan=lifespan)
    app.include_router(router)
    return app


app = create_app()

# ===== 실행 =====
if __name__ == "__main__":
    logger.info("Starting server on %s:%d", SETTINGS.host, SETTINGS.port)
    uvicorn.run("server:app", host=SETTINGS.host, port=SETTINGS.port, log_level=SETTINGS.log_level.lower())
