from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI

from common.eventbus.config import is_kafka_enabled
from common.logger import setup_logger
from common.middleware.request_trace import RequestTraceMiddleware
from common.mongo.client import get_database

from .api.health import router as health_router
from .api.v1 import api_router
from .config import get_app_config
from .event_handlers import run_subscription_consumer


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - framework hook
    """Kafka 가 설정된 경우 subscription.renewed 컨슈머 스레드를 관리한다."""

    if not is_kafka_enabled():
        logger.info("KAFKA_BOOTSTRAP_SERVERS not set; subscription consumer disabled")
        yield
        return

    stop_flag = [False]
    consumer_thread = threading.Thread(
        target=run_subscription_consumer,
        args=(stop_flag, get_database()),
        name="subscription-consumer",
        daemon=True,
    )
    consumer_thread.start()

    try:
        yield
    finally:
        stop_flag[0] = True
        consumer_thread.join(timeout=10.0)


def create_app() -> FastAPI:
    setup_logger(name="credit-service")
    app = FastAPI(
        title="ReWise Credit Service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(RequestTraceMiddleware)

    app.include_router(health_router, tags=["health"])
    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run(
        "credit_service.app.main:app",
        host="0.0.0.0",
        port=get_app_config().port,
        reload=False,
        access_log=False,
    )


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
