import logging
from typing import List, Optional
import httpx
from pydantic import ValidationError
from orchestration.errors import UpstreamUnavailable
from orchestration.models import Build, BuildOutputLine, Job, Pipeline

logger = logging.getLogger(__name__)

CIRCLECI_API_URL        = "https://circleci.com/api/v2/"
CIRCLECI_LEGACY_API_URL = "https://circleci.com/api/v1.1/"
DEFAULT_TIMEOUT         = 30.0


class CircleCIClient:
    """
    Thin async client over the two CircleCI API generations we need.

    v2   — pipelines, workflows and jobs (status polling)
    v1.1 — builds with their steps/actions (failure output)

    The token goes in the ``circle-token`` query parameter on every call to
    either API. Output URLs for build actions are pre-signed and fetched
    without it.
    """

    def __init__(
        self,
        token           : str,
        base_url        : str = CIRCLECI_API_URL,
        legacy_base_url : str = CIRCLECI_LEGACY_API_URL,
        timeout         : float = DEFAULT_TIMEOUT,
        transport       : Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token           = token
        self.base_url        = base_url.rstrip("/") + "/"
        self.legacy_base_url = legacy_base_url.rstrip("/") + "/"
        self._client = httpx.AsyncClient(
            timeout   = timeout,
            transport = transport,
            headers   = {
                "Accept"       : "application/json",
                "Content-Type" : "application/json",
            },
        )

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self) -> "CircleCIClient":
        return self

    async def __aexit__(self, *args):
        await self.close()

    # ── v2 ───────────────────────────────────────────────────────

    async def get_project_pipelines(self, vcs: str, owner: str, repo: str) -> List[Pipeline]:
        """Most recent pipelines for a project (first page only)."""
        data = await self._request(self.base_url, f"project/{vcs}/{owner}/{repo}/pipeline")
        return self._parse_list(Pipeline, data.get("items", []))

    async def get_pipeline(self, pipeline_id: str) -> Pipeline:
        data = await self._request(self.base_url, f"pipeline/{pipeline_id}")
        return self._parse(Pipeline, data)

    async def get_workflow_jobs(self, workflow_id: str) -> List[Job]:
        data = await self._request(self.base_url, f"workflow/{workflow_id}/jobs")
        return self._parse_list(Job, data.get("items", []))

    # ── v1.1 ─────────────────────────────────────────────────────

    async def get_build(self, vcs: str, owner: str, repo: str, build_num: int) -> Build:
        data = await self._request(self.legacy_base_url, f"project/{vcs}/{owner}/{repo}/{build_num}")
        return self._parse(Build, data)

    async def get_build_output(self, output_url: str) -> List[BuildOutputLine]:
        """Raw output of one action: an ordered list of timestamped messages."""
        try:
            resp = await self._client.get(output_url)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"fetching build output failed: {e}") from e

        if resp.status_code >= 300:
            raise UpstreamUnavailable("fetching build output failed", resp.status_code)

        try:
            lines = resp.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"build output is not JSON: {e}", resp.status_code) from e

        return self._parse_list(BuildOutputLine, lines or [])

    # ── Internals ────────────────────────────────────────────────

    async def _request(self, base_url: str, path: str) -> dict:
        url = base_url + path
        logger.debug("GET %s", url)

        try:
            resp = await self._client.get(url, params={"circle-token": self.token})
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"GET {path} failed: {e}") from e

        if resp.status_code >= 300:
            raise UpstreamUnavailable(self._error_message(resp), resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"unable to parse API response: {e}", resp.status_code) from e

        if not isinstance(data, dict):
            raise UpstreamUnavailable(
                f"expected a JSON object from {path}, got {type(data).__name__}", resp.status_code,
            )
        return data

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        if not resp.content:
            return ""
        try:
            body = resp.json()
        except ValueError as e:
            return f"unable to parse API response: {e}"
        if isinstance(body, dict):
            return body.get("message") or ""
        return ""

    @staticmethod
    def _parse(model, data):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise UpstreamUnavailable(f"unexpected {model.__name__} payload: {e}") from e

    @classmethod
    def _parse_list(cls, model, items) -> list:
        return [cls._parse(model, item) for item in items]
