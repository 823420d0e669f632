import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple
import jwt
import httpx
from orchestration.errors import ConfigAbsent, UpstreamUnavailable

logger = logging.getLogger(__name__)

GITHUB_API_URL  = "https://api.github.com"
DEFAULT_TIMEOUT = 30.0
TOKEN_REFRESH_MARGIN = timedelta(minutes=1)


def generate_jwt(app_id: str, private_key: str) -> str:
    """
    Generate a short-lived JWT signed with the app's private key.
    GitHub uses this to verify the request comes from our App ID.
    """
    now = int(time.time())
    payload = {
        "iat": now - 60,        # issued 60s ago (handles clock drift)
        "exp": now + (10 * 60), # expires in 10 minutes
        "iss": str(app_id),
    }
    return jwt.encode(payload, private_key, algorithm="RS256")


class GitHubAppClient:
    """
    Calls the GitHub REST API as an installation of our GitHub App.

    Every repository call is made with an installation access token, which
    is exchanged for the app JWT on first use and cached until it is close
    to expiring.
    """

    def __init__(
        self,
        app_id      : str,
        private_key : str,
        base_url    : str = GITHUB_API_URL,
        timeout     : float = DEFAULT_TIMEOUT,
        transport   : Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.app_id      = app_id
        self.private_key = private_key
        self._tokens: Dict[int, Tuple[str, datetime]] = {}
        self._client = httpx.AsyncClient(
            base_url  = base_url.rstrip("/"),
            timeout   = timeout,
            transport = transport,
            headers   = {"Accept": "application/vnd.github+json"},
        )

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubAppClient":
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def get_installation_token(self, installation_id: int) -> str:
        """Exchange our JWT for a short-lived installation token."""
        cached = self._tokens.get(installation_id)
        if cached and cached[1] - TOKEN_REFRESH_MARGIN > datetime.now(timezone.utc):
            return cached[0]

        app_jwt = generate_jwt(self.app_id, self.private_key)
        resp = await self._send(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            headers={"Authorization": f"Bearer {app_jwt}"},
        )
        if resp.status_code >= 300:
            raise UpstreamUnavailable(
                f"could not obtain a token for installation {installation_id}: {_message(resp)}",
                resp.status_code,
            )

        body = _json_object(resp, "installation token")
        try:
            token      = body["token"]
            expires_at = _parse_expiry(body.get("expires_at"))
        except (KeyError, ValueError) as e:
            raise UpstreamUnavailable(
                f"malformed token response for installation {installation_id}: {e!r}", resp.status_code,
            ) from e
        self._tokens[installation_id] = (token, expires_at)
        return token

    async def get_contents(
        self,
        installation_id : int,
        owner           : str,
        repo            : str,
        path            : str,
        ref             : Optional[str] = None,
    ) -> dict:
        """
        Fetch a file's metadata at ``ref``.
        Raises ConfigAbsent on 404 so callers can tell "missing" from "broken".
        """
        token = await self.get_installation_token(installation_id)
        resp = await self._send(
            "GET",
            f"/repos/{owner}/{repo}/contents/{path}",
            headers = {"Authorization": f"Bearer {token}"},
            params  = {"ref": ref} if ref else None,
        )
        if resp.status_code == 404:
            raise ConfigAbsent(f"{path} not found in {owner}/{repo} at {ref or 'default branch'}")
        if resp.status_code >= 300:
            raise UpstreamUnavailable(
                f"checking {path} in {owner}/{repo} failed: {_message(resp)}",
                resp.status_code,
            )
        return _json_object(resp, f"contents of {path}")

    async def create_issue_comment(
        self,
        installation_id : int,
        owner           : str,
        repo            : str,
        number          : int,
        body            : str,
    ) -> dict:
        """Post a comment on an issue or pull request."""
        token = await self.get_installation_token(installation_id)
        resp = await self._send(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            headers = {"Authorization": f"Bearer {token}"},
            json    = {"body": body},
        )
        if resp.status_code >= 300:
            raise UpstreamUnavailable(
                f"commenting on {owner}/{repo}#{number} failed: {_message(resp)}",
                resp.status_code,
            )
        return _json_object(resp, "created comment")

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"{method} {path} failed: {e}") from e


def _json_object(resp: httpx.Response, what: str) -> dict:
    try:
        body = resp.json()
    except ValueError as e:
        raise UpstreamUnavailable(f"{what} is not JSON: {e}", resp.status_code) from e
    if not isinstance(body, dict):
        raise UpstreamUnavailable(f"{what} is not a JSON object", resp.status_code)
    return body


def _message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    return body.get("message", "") if isinstance(body, dict) else ""


def _parse_expiry(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc) + timedelta(minutes=10)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
