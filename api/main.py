import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from api.config import Settings, load_settings
from api.github_client import GitHubAppClient
from api.webhook_handler import router as webhook_router
from orchestration.scheduler import InProcessScheduler
from tools.circleci_client import CircleCIClient

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _wire(app: FastAPI, settings: Settings, circleci=None, github=None, scheduler=None):
    app.state.settings = settings
    app.state.circleci = circleci or CircleCIClient(
        token           = settings.circle_token,
        base_url        = settings.circleci_api_url,
        legacy_base_url = settings.circleci_legacy_api_url,
        timeout         = settings.http_timeout,
    )
    app.state.github = github or GitHubAppClient(
        app_id      = settings.github_app_id,
        private_key = settings.github_private_key,
        base_url    = settings.github_api_url,
        timeout     = settings.http_timeout,
    )
    app.state.scheduler = scheduler or InProcessScheduler(
        app.state.circleci,
        app.state.github,
        max_poll_retries        = settings.max_poll_retries,
        max_correlation_retries = settings.max_correlation_retries,
        correlation_interval    = settings.correlation_interval,
    )


def create_app(settings: Settings = None, circleci=None, github=None, scheduler=None) -> FastAPI:
    """
    Build the service. Anything not passed in is created from settings,
    and settings are read from the environment at startup when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not hasattr(app.state, "settings"):
            _wire(app, load_settings())
            logger.info("circleci-feedback started")
        yield
        await app.state.circleci.close()
        await app.state.github.close()

    app = FastAPI(title="circleci-feedback", version="0.1.0", lifespan=lifespan)
    app.include_router(webhook_router)

    if settings is not None:
        _wire(app, settings, circleci, github, scheduler)

    @app.get("/health")
    async def health():
        return {"Status": "ok", "service": "circleci-feedback"}

    return app


app = create_app()
