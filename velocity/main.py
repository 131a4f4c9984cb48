import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from velocity.api.routes import router
from velocity.config import settings
from velocity.jobs.reaper import run_job_reaper
from velocity.repositories.job_store import InMemoryJobStore
from velocity.services.classifier_service import ClassifierService
from velocity.services.job_service import JobService
from velocity.services.scraper_service import ScraperService


def _configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    _configure_logging()
    logger = logging.getLogger(__name__)
    logger.info(
        "Velocity API starting | port=%s | windows=%s | job_ttl=%ss",
        settings.PORT, settings.VELOCITY_WINDOWS_DAYS, settings.JOB_TTL_SECONDS,
    )
    app.state.job_store = InMemoryJobStore(ttl_seconds=settings.JOB_TTL_SECONDS)
    app.state.job_service = JobService(
        app.state.job_store,
        scraper=ScraperService(),
        classifier=ClassifierService(),
        windows=settings.VELOCITY_WINDOWS_DAYS,
    )
    reaper = asyncio.create_task(
        run_job_reaper(app.state.job_store, settings.JOB_SWEEP_INTERVAL_SECONDS)
    )
    yield
    reaper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await reaper
    logger.info(
        "Velocity API shutting down | in_flight_jobs=%d", app.state.job_service.in_flight
    )


def create_app() -> FastAPI:
    app = FastAPI(title="Content Velocity API", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logging.getLogger(__name__).exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Internal server error"},
        )

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("velocity.main:app", host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL)
