import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError
from orchestration.errors import ConfigurationError


class Settings(BaseModel):
    """Everything the service needs, loaded once at startup."""

    github_webhook_secret : str
    github_app_id         : str
    github_private_key    : str
    circle_token          : str

    github_api_url          : str = "https://api.github.com"
    circleci_api_url        : str = "https://circleci.com/api/v2/"
    circleci_legacy_api_url : str = "https://circleci.com/api/v1.1/"
    http_timeout            : float = 30.0

    max_poll_retries        : int = 12
    max_correlation_retries : int = 10
    correlation_interval    : float = 5.0

    config_path : str = ".circleci/config.yml"


_ENV = {
    "github_webhook_secret"   : "GITHUB_WEBHOOK_SECRET",
    "github_app_id"           : "GITHUB_APP_ID",
    "circle_token"            : "CIRCLE_TOKEN",
    "github_api_url"          : "GITHUB_API_URL",
    "circleci_api_url"        : "CIRCLECI_API_URL",
    "circleci_legacy_api_url" : "CIRCLECI_LEGACY_API_URL",
    "http_timeout"            : "HTTP_TIMEOUT",
    "max_poll_retries"        : "MAX_POLL_RETRIES",
    "max_correlation_retries" : "MAX_CORRELATION_RETRIES",
    "correlation_interval"    : "CORRELATION_INTERVAL",
    "config_path"             : "CIRCLECI_CONFIG_PATH",
}


def _read_private_key(env) -> Optional[str]:
    key = env.get("GITHUB_PRIVATE_KEY")
    if key:
        # single-line secrets usually arrive with escaped newlines
        return key.replace("\\n", "\n")

    path = env.get("GITHUB_PRIVATE_KEY_PATH", "./github_app.pem")
    if Path(path).exists():
        return Path(path).read_text()
    return None


def load_settings(env=None) -> Settings:
    """
    Build Settings from the environment (plus .env when reading os.environ).
    Raises ConfigurationError naming every missing or invalid variable.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    values = {field: env[name] for field, name in _ENV.items() if env.get(name)}
    private_key = _read_private_key(env)
    if private_key:
        values["github_private_key"] = private_key

    try:
        return Settings(**values)
    except ValidationError as e:
        problems = ", ".join(
            _ENV.get(str(err["loc"][0]), "GITHUB_PRIVATE_KEY") if err["type"] == "missing"
            else f"{err['loc'][0]} ({err['msg']})"
            for err in e.errors()
        )
        raise ConfigurationError(f"invalid configuration: {problems}") from e
