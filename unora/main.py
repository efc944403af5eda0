import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from unora/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from unora.core.config import settings, validate_config, cors_origins
from unora.core.logging import configure_logging
from unora.core.middleware.request_id import RequestIdMiddleware
from unora.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from unora.core.database import create_all_tables
from unora.features.reveals.milestones import seed_milestones
from unora.api import interests, connections, streaks, reveals, admin_streaks, health

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("unora")
    logger.info("Starting Unora backend...")
    app.state.startup_time = time.time()
    if settings.AUTO_CREATE_TABLES:
        create_all_tables()
        seeded = seed_milestones()
        logger.info(f"Schema ready, {seeded} reveal milestones seeded")
    try:
        yield
    finally:
        logging.getLogger("unora").info("Stopping Unora backend...")


app = FastAPI(title="Unora - Backend", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(interests.router, tags=["interests"])
app.include_router(connections.router, tags=["connections"])
app.include_router(streaks.router, tags=["streaks"])
app.include_router(reveals.router, tags=["reveals"])
app.include_router(admin_streaks.router, tags=["admin"])
app.include_router(health.router, tags=["health"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("unora.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
