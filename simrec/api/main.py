"""FastAPI application main module.

This module builds the FastAPI application for the SimRec service: it opens
the store, wires the classifier and recommender on startup, runs the
periodic history purge, maps SimRec errors to JSON responses and serves the
health and metrics endpoints.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from simrec import __version__
from simrec.api.exceptions import SimRecException
from simrec.api.logging_config import RequestLoggingMiddleware, setup_logging
from simrec.api.metrics import metrics_service
from simrec.api.routes import recommend
from simrec.recommender.classifier import Classifier, ModelClassifier
from simrec.recommender.config import RecommenderConfig
from simrec.recommender.pipeline import SimilarProductRecommender
from simrec.recommender.store import SQLStore

# Configure module logger
logger = logging.getLogger(__name__)


async def purge_periodically(recommender: SimilarProductRecommender, interval_s: float) -> None:
    """Delete expired history every ``interval_s`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval_s)
        try:
            await recommender.purge_expired_history()
        except Exception as e:
            logger.error(
                "Scheduled history purge failed",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )


def create_app(
    config: Optional[RecommenderConfig] = None,
    classifier: Optional[Classifier] = None,
    **recommender_kwargs: Any,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Service configuration (default: read from ``SIMREC_*``
            environment variables at startup).
        classifier: Picture classifier (default: ``ModelClassifier`` over
            ``config.model_dir``).
        **recommender_kwargs: Passed through to ``SimilarProductRecommender``
            (e.g. ``clock``, ``image_fetcher``, ``rng_factory``).

    Returns:
        Configured application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_config = config or RecommenderConfig.from_env()
        setup_logging(app_config.log_level)

        store = SQLStore.from_url(app_config.database_url)
        await store.create_schema()

        recommender = SimilarProductRecommender(
            store,
            classifier or ModelClassifier(app_config.model_dir, image_size=app_config.image_size),
            config=app_config,
            **recommender_kwargs,
        )
        app.state.recommender = recommender

        purge_task = None
        if app_config.purge_interval_s > 0:
            purge_task = asyncio.create_task(
                purge_periodically(recommender, app_config.purge_interval_s),
                name="purge-history",
            )

        logger.info("Starting Application...")
        yield
        logger.info("Shutting Down Application...")

        try:
            if purge_task is not None:
                purge_task.cancel()
                with suppress(asyncio.CancelledError):
                    await purge_task
            await recommender.drain_background()
        finally:
            await store.close()
            app.state.recommender = None

    app = FastAPI(
        title="SimRec API",
        description="Similar-product recommendation service",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(recommend.router)

    @app.exception_handler(SimRecException)
    async def handle_simrec_exception(request: Request, exc: SimRecException) -> JSONResponse:
        logger.warning(
            "Request rejected",
            extra={"path": str(request.url.path), "status_code": exc.status_code, "error": exc.message},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "details": exc.details},
        )

    @app.get("/ping")
    def ping() -> Dict[str, str]:
        """Health check endpoint.

        Example:
            >>> response = client.get("/ping")
            >>> assert response.json() == {"status": "ok"}
        """
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics() -> Dict[str, Any]:
        """Request counts, latency and sampler contributions."""
        return metrics_service.get_metrics()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "simrec.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
