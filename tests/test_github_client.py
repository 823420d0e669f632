"""Tests for the GitHub App client."""

import json

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

import api.github_client as github_client
from api.github_client import GitHubAppClient, generate_jwt
from orchestration.errors import ConfigAbsent, UpstreamUnavailable


@pytest.fixture(scope="module")
def rsa_key():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    return pem, key.public_key()


@pytest.fixture(autouse=True)
def fake_jwt(monkeypatch):
    monkeypatch.setattr(github_client, "generate_jwt", lambda app_id, key: f"jwt-{app_id}")


class FakeGitHubAPI:
    def __init__(self, contents_status=200, comment_status=201, token_body=None):
        self.token_body = token_body or {"token": "inst-token", "expires_at": "2999-01-01T00:00:00Z"}
        self.contents_status = contents_status
        self.comment_status = comment_status
        self.requests = []

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/access_tokens"):
            return httpx.Response(201, json=self.token_body)
        if "/contents/" in path:
            if self.contents_status == 200:
                return httpx.Response(200, json={"path": ".circleci/config.yml"})
            return httpx.Response(self.contents_status, json={"message": "Not Found"})
        if path.endswith("/comments"):
            return httpx.Response(self.comment_status, json={"id": 1, "message": "Forbidden"})
        return httpx.Response(500)


def client_for(api) -> GitHubAppClient:
    return GitHubAppClient(app_id="1234", private_key="unused", transport=httpx.MockTransport(api))


def test_generate_jwt_is_rs256_signed_by_app(rsa_key):
    pem, public_key = rsa_key

    token = generate_jwt("1234", pem)
    claims = jwt.decode(token, public_key, algorithms=["RS256"])

    assert claims["iss"] == "1234"
    assert claims["exp"] - claims["iat"] == 11 * 60


class TestGitHubAppClient:
    @pytest.mark.asyncio
    async def test_installation_token_is_cached(self):
        api = FakeGitHubAPI()
        async with client_for(api) as client:
            await client.get_contents(9, "acme", "widgets", ".circleci/config.yml", ref="main")
            await client.create_issue_comment(9, "acme", "widgets", 3, "hello")

        token_requests = [r for r in api.requests if r.url.path.endswith("/access_tokens")]
        assert len(token_requests) == 1
        assert token_requests[0].url.path == "/app/installations/9/access_tokens"
        assert token_requests[0].headers["authorization"] == "Bearer jwt-1234"
        assert api.requests[-1].headers["authorization"] == "Bearer inst-token"

    @pytest.mark.asyncio
    async def test_contents_lookup_uses_ref(self):
        api = FakeGitHubAPI()
        async with client_for(api) as client:
            await client.get_contents(9, "acme", "widgets", ".circleci/config.yml", ref="feature/x")

        lookup = api.requests[-1]
        assert lookup.url.path == "/repos/acme/widgets/contents/.circleci/config.yml"
        assert lookup.url.params["ref"] == "feature/x"

    @pytest.mark.asyncio
    async def test_missing_file_is_config_absent(self):
        async with client_for(FakeGitHubAPI(contents_status=404)) as client:
            with pytest.raises(ConfigAbsent):
                await client.get_contents(9, "acme", "widgets", ".circleci/config.yml")

    @pytest.mark.asyncio
    async def test_other_contents_errors_are_upstream(self):
        async with client_for(FakeGitHubAPI(contents_status=500)) as client:
            with pytest.raises(UpstreamUnavailable) as excinfo:
                await client.get_contents(9, "acme", "widgets", ".circleci/config.yml")
        assert excinfo.value.status_code == 500

    @pytest.mark.asyncio
    async def test_comment_body_is_posted(self):
        api = FakeGitHubAPI()
        async with client_for(api) as client:
            await client.create_issue_comment(9, "acme", "widgets", 3, "Build Failed")

        post = api.requests[-1]
        assert post.method == "POST"
        assert post.url.path == "/repos/acme/widgets/issues/3/comments"
        assert json.loads(post.content) == {"body": "Build Failed"}

    @pytest.mark.asyncio
    async def test_comment_failure_is_upstream(self):
        async with client_for(FakeGitHubAPI(comment_status=403)) as client:
            with pytest.raises(UpstreamUnavailable) as excinfo:
                await client.create_issue_comment(9, "acme", "widgets", 3, "x")
        assert "Forbidden" in excinfo.value.message

    @pytest.mark.asyncio
    async def test_token_response_without_token_is_upstream(self):
        api = FakeGitHubAPI(token_body={"expires_at": "2999-01-01T00:00:00Z"})
        async with client_for(api) as client:
            with pytest.raises(UpstreamUnavailable) as excinfo:
                await client.get_installation_token(9)
        assert "malformed token response" in excinfo.value.message

    @pytest.mark.asyncio
    async def test_non_json_token_response_is_upstream(self):
        def handler(request):
            return httpx.Response(201, text="<html>oops</html>")

        async with client_for(handler) as client:
            with pytest.raises(UpstreamUnavailable):
                await client.get_installation_token(9)
