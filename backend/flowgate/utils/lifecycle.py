# /flowgate/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.pymongo import PyMongoIntegration
from sentry_sdk.integrations.redis import RedisIntegration

from flowgate.config.settings import settings
from flowgate.utils.logging import setup_logging
from flowgate.services.cache_service import cache_service
from flowgate.services.db_service import db_service
from flowgate.services.http_fetcher import http_fetcher

# Startup and shutdown of the shared clients (MongoDB, Redis, outbound HTTP).

logger = logging.getLogger(__name__)


def setup_sentry() -> bool:
    """Initializes Sentry error tracking when a DSN is configured."""
    if not settings.sentry_dsn:
        return False
    try:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.sentry_environment,
            traces_sample_rate=settings.sentry_traces_sample_rate,
            integrations=[
                FastApiIntegration(),
                HttpxIntegration(),
                RedisIntegration(),
                PyMongoIntegration(),
            ],
            attach_stacktrace=True,
            # Flow payloads carry end-user form data.
            send_default_pii=False,
        )
    except Exception as e:
        logger.error(f"Sentry initialization failed: {e}")
        return False
    logger.info(f"Sentry initialized for environment {settings.sentry_environment}")
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()
    setup_sentry()

    logger.info("Application starting up...")
    await db_service.create_indexes()
    logger.info("Application startup complete. Ready to accept requests.")

    yield  # Application is now running

    logger.info("Application shutting down...")
    await http_fetcher.close()
    await cache_service.close()
    if db_service.client:
        db_service.client.close()
