"""Tests for the GitHub release registry client."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from ghrelease.errors import AuthError, PublishConflict, RegistryError, TransportError
from ghrelease.infra.github_client import GitHubClient
from ghrelease.domain.release import Asset
from ghrelease.retry import RetryPolicy


def make_response(status=200, body=None, headers=None, content=None):
    response = requests.Response()
    response.status_code = status
    response.headers.update(headers or {})
    if content is not None:
        response._content = content
    else:
        response._content = json.dumps(body if body is not None else {}).encode('utf-8')
    response.url = "https://api.github.com/test"
    return response


RELEASE = {
    'id': 10,
    'tag_name': "v1.0.0",
    'draft': False,
    'prerelease': False,
    'body': "notes",
    'created_at': "2024-01-01T00:00:00Z",
    'assets': [{'id': 5, 'name': "tool.tar.gz", 'size': 3}],
}


@pytest.fixture
def session():
    return requests.Session()


def client_with(session, *responses, retry=None, token="secret-token"):
    session.request = MagicMock(side_effect=list(responses))
    sleeps = []
    client = GitHubClient(token=token, session=session, retry=retry or RetryPolicy(max_retries=2),
                          sleep=sleeps.append)
    client.sleeps = sleeps
    return client


class TestGitHubClientBasics:

    def test_token_header(self, session):
        client = client_with(session)
        assert session.headers['Authorization'] == "token secret-token"
        assert "secret-token" not in repr(client)
        assert "***" in repr(client)

    def test_token_from_env(self, session, monkeypatch):
        monkeypatch.delenv('GHRELEASE_GITHUB_TOKEN', raising=False)
        monkeypatch.setenv('GITHUB_TOKEN', "env-token")
        client = GitHubClient(session=session)
        assert client.token == "env-token"

    def test_get_release(self, session):
        client = client_with(session, make_response(200, RELEASE))
        release = client.get_release("owner/tool", "v1.0.0")
        assert release.tag.raw == "v1.0.0"
        assert release.asset_names == ("tool.tar.gz",)
        method, url = session.request.call_args[0]
        assert method == 'GET'
        assert url.endswith("/repos/owner/tool/releases/tags/v1.0.0")

    def test_get_release_not_found(self, session):
        client = client_with(session, make_response(404, {'message': "Not Found"}))
        assert client.get_release("owner/tool", "v9.9.9") is None

    def test_get_latest_release(self, session):
        client = client_with(session, make_response(200, RELEASE))
        assert client.get_latest_release("owner/tool").id == 10

    def test_list_releases_paginates(self, session):
        page1 = make_response(200, [RELEASE], headers={
            'Link': '<https://api.github.com/repos/owner/tool/releases?page=2>; rel="next"',
        })
        page2 = make_response(200, [dict(RELEASE, id=11, tag_name="v0.9.0")])
        client = client_with(session, page1, page2)
        releases = client.list_releases("owner/tool")
        assert [r.tag.raw for r in releases] == ["v1.0.0", "v0.9.0"]
        assert session.request.call_args_list[1][0][1].endswith("page=2")

    def test_ref_exists(self, session):
        client = client_with(
            session,
            make_response(200, {'sha': "abc"}),
            make_response(404),
            make_response(422, {'message': "No commit found for SHA: nope"}),
        )
        assert client.ref_exists("owner/tool", "main")
        assert not client.ref_exists("owner/tool", "gone")
        assert not client.ref_exists("owner/tool", "nope")

    def test_upload_asset(self, session):
        client = client_with(session, make_response(201, {'id': 7, 'name': "a.zip", 'size': 4}))
        asset = client.upload_asset("owner/tool", 10, "a.zip", b"data", "application/zip")
        assert asset.id == 7
        _, kwargs = session.request.call_args
        assert session.request.call_args[0][1] == \
            "https://uploads.github.com/repos/owner/tool/releases/10/assets"
        assert kwargs['params'] == {'name': "a.zip"}
        assert kwargs['headers']['Content-Type'] == "application/zip"

    def test_update_release_maps_notes_to_body(self, session):
        client = client_with(session, make_response(200, RELEASE))
        client.update_release("owner/tool", 10, notes="new", draft=False)
        assert session.request.call_args[1]['json'] == {'body': "new", 'draft': False}

    def test_download_asset_uses_api(self, session):
        client = client_with(session, make_response(200, content=b"binary"))
        data = client.download_asset("owner/tool", Asset("tool.tar.gz", id=5))
        assert data == b"binary"
        assert session.request.call_args[0][1].endswith("/repos/owner/tool/releases/assets/5")
        assert session.request.call_args[1]['headers']['Accept'] == "application/octet-stream"


class TestGitHubClientErrors:

    def test_server_error_retried(self, session):
        client = client_with(session, make_response(502), make_response(200, RELEASE))
        assert client.get_release("owner/tool", "v1.0.0").id == 10
        assert session.request.call_count == 2
        assert client.sleeps == [1.0]

    def test_server_error_exhausts_budget(self, session):
        client = client_with(session, *[make_response(503) for _ in range(3)])
        with pytest.raises(TransportError) as excinfo:
            client.get_release("owner/tool", "v1.0.0")
        assert excinfo.value.kind == TransportError.TRANSIENT_5XX
        assert session.request.call_count == 3

    def test_timeout(self, session):
        client = client_with(session, requests.Timeout("slow"), retry=RetryPolicy.no_retry())
        with pytest.raises(TransportError) as excinfo:
            client.get_release("owner/tool", "v1.0.0")
        assert excinfo.value.kind == TransportError.TIMEOUT

    def test_connection_error(self, session):
        client = client_with(session, requests.ConnectionError("down"), retry=RetryPolicy.no_retry())
        with pytest.raises(TransportError) as excinfo:
            client.get_release("owner/tool", "v1.0.0")
        assert excinfo.value.kind == TransportError.NETWORK

    def test_auth_error_not_retried(self, session):
        client = client_with(session, make_response(401, {'message': "Bad credentials"}))
        with pytest.raises(AuthError):
            client.get_release("owner/tool", "v1.0.0")
        assert session.request.call_count == 1

    def test_forbidden_is_auth_error(self, session):
        client = client_with(session, make_response(403, {'message': "Forbidden"}))
        with pytest.raises(AuthError):
            client.get_release("owner/tool", "v1.0.0")

    def test_rate_limit(self, session):
        limited = make_response(403, {'message': "API rate limit exceeded"}, headers={
            'X-RateLimit-Remaining': '0',
            'X-RateLimit-Limit': '60',
            'X-RateLimit-Reset': '0',
        })
        client = client_with(session, limited, retry=RetryPolicy.no_retry())
        with pytest.raises(TransportError) as excinfo:
            client.get_release("owner/tool", "v1.0.0")
        assert excinfo.value.kind == TransportError.RATE_LIMITED
        assert client.get_rate_limit_status().remaining == 0

    def test_secondary_rate_limit_uses_retry_after(self, session):
        limited = make_response(429, {'message': "slow down"}, headers={'Retry-After': '4'})
        client = client_with(session, limited, make_response(200, RELEASE))
        client.get_release("owner/tool", "v1.0.0")
        assert client.sleeps == [4.0]

    def test_create_conflict(self, session):
        conflict = make_response(422, {
            'message': "Validation Failed",
            'errors': [{'resource': "Release", 'code': "already_exists", 'field': "tag_name"}],
        })
        client = client_with(session, conflict)
        with pytest.raises(PublishConflict):
            client.create_release("owner/tool", "v1.0.0")

    def test_other_client_error(self, session):
        client = client_with(session, make_response(400, {'message': "Bad"}))
        with pytest.raises(RegistryError) as excinfo:
            client.create_release("owner/tool", "v1.0.0")
        assert excinfo.value.context['status'] == 400
        assert session.request.call_count == 1
