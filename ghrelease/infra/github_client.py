"""
GitHub release registry client for ghrelease.

Provides a clean abstraction over the GitHub releases API:
- Maps HTTP failures onto the ghrelease error taxonomy
- Retries transient failures (timeouts, rate limits, 5xx) with exponential backoff
- Tracks rate limit status from response headers
- Never logs the token
"""

import os
import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime

import requests

from ..domain.release import Asset, Release
from ..errors import AuthError, PublishConflict, RegistryError, TransportError
from ..retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
UPLOADS_URL = "https://uploads.github.com"
USER_AGENT = "ghrelease"


@dataclass
class RateLimitStatus:
    """GitHub API rate limit status."""
    remaining: int
    limit: int
    reset_time: int  # Unix timestamp
    used: int

    @property
    def reset_datetime(self) -> datetime:
        """Get reset time as datetime."""
        return datetime.fromtimestamp(self.reset_time)

    @property
    def seconds_until_reset(self) -> int:
        return max(0, self.reset_time - int(time.time()))

    @property
    def minutes_until_reset(self) -> int:
        """Minutes until rate limit resets."""
        return self.seconds_until_reset // 60

    @property
    def is_low(self) -> bool:
        """Check if rate limit is getting low (< 100 remaining)."""
        return self.remaining < 100


def token_from_env() -> Optional[str]:
    return os.environ.get('GHRELEASE_GITHUB_TOKEN') or os.environ.get('GITHUB_TOKEN')


class GitHubClient:
    """
    Release registry client backed by the GitHub REST API.

    All methods take the repository as "owner/name". Lookups that can
    legitimately miss (a tag with no release) return None; every other
    failure raises.

    Example:
        client = GitHubClient()
        release = client.get_release("owner/tool", "v1.2.3")
        if release:
            print([a.filename for a in release.assets])
    """

    def __init__(
        self,
        token: Optional[str] = None,
        timeout: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
        api_url: str = API_URL,
        uploads_url: str = UPLOADS_URL,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize GitHubClient.

        Args:
            token: GitHub token (defaults to GHRELEASE_GITHUB_TOKEN or GITHUB_TOKEN env var)
            timeout: Per-request timeout in seconds
            retry: Retry budget for transient failures
            session: requests session (injected for tests)
            api_url: REST API base URL
            uploads_url: Asset upload base URL
            sleep: Backoff sleep function (injected for tests)
        """
        self.token = token or token_from_env()
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.api_url = api_url.rstrip('/')
        self.uploads_url = uploads_url.rstrip('/')
        self._sleep = sleep
        self._session = session or requests.Session()
        self._session.headers.update({
            'Accept': 'application/vnd.github+json',
            'User-Agent': USER_AGENT,
        })
        if self.token:
            self._session.headers['Authorization'] = f'token {self.token}'
        self._rate_limit_status: Optional[RateLimitStatus] = None

    def __repr__(self) -> str:
        token = '***' if self.token else None
        return f"GitHubClient(api_url={self.api_url!r}, token={token!r})"

    def _update_rate_limit_from_headers(self, headers: Dict[str, str]) -> None:
        """Update rate limit status from response headers."""
        try:
            remaining = int(headers.get('X-RateLimit-Remaining', -1))
            limit = int(headers.get('X-RateLimit-Limit', -1))
            reset_time = int(headers.get('X-RateLimit-Reset', 0))
            used = int(headers.get('X-RateLimit-Used', 0))
        except (ValueError, TypeError):
            return

        if remaining >= 0 and limit >= 0:
            self._rate_limit_status = RateLimitStatus(
                remaining=remaining,
                limit=limit,
                reset_time=reset_time,
                used=used
            )

            if self._rate_limit_status.is_low:
                logger.warning(
                    f"GitHub API rate limit low: {remaining}/{limit} remaining, "
                    f"resets in {self._rate_limit_status.minutes_until_reset} minutes"
                )

    def get_rate_limit_status(self) -> Optional[RateLimitStatus]:
        """Rate limit status seen on the last API response, if any."""
        return self._rate_limit_status

    @staticmethod
    def _retry_after(response: requests.Response) -> Optional[float]:
        value = response.headers.get('Retry-After')
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text[:200] or response.reason or ''
        if isinstance(data, dict):
            return data.get('message', '') or ''
        return ''

    @staticmethod
    def _is_already_exists(response: requests.Response) -> bool:
        try:
            data = response.json()
        except ValueError:
            return False
        errors = data.get('errors', []) if isinstance(data, dict) else []
        return any(isinstance(e, dict) and e.get('code') == 'already_exists' for e in errors)

    def _request(
        self,
        method: str,
        url: str,
        allow_404: bool = False,
        **kwargs: Any,
    ) -> Optional[requests.Response]:
        """
        Perform one HTTP request and map failures onto the error taxonomy.

        Returns None for a 404 when allow_404 is set.
        """
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise TransportError(f"{method} {url} timed out", kind=TransportError.TIMEOUT, url=url) from e
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}", kind=TransportError.NETWORK, url=url) from e

        self._update_rate_limit_from_headers(response.headers)
        status = response.status_code

        if status < 300:
            return response

        if status == 404 and allow_404:
            return None

        message = self._error_message(response)

        if status == 401:
            raise AuthError(f"GitHub authentication failed: {message}", status=status, url=url)

        if status == 403:
            rate = self._rate_limit_status
            retry_after = self._retry_after(response)
            if response.headers.get('X-RateLimit-Remaining') == '0':
                wait = float(rate.seconds_until_reset) if rate else None
                raise TransportError(f"GitHub API rate limit exceeded: {message}",
                                     kind=TransportError.RATE_LIMITED, status=status,
                                     retry_after=wait, url=url)
            if retry_after is not None:
                raise TransportError(f"GitHub secondary rate limit: {message}",
                                     kind=TransportError.RATE_LIMITED, status=status,
                                     retry_after=retry_after, url=url)
            raise AuthError(f"GitHub denied access: {message}", status=status, url=url)

        if status == 429:
            raise TransportError(f"GitHub API rate limit exceeded: {message}",
                                 kind=TransportError.RATE_LIMITED, status=status,
                                 retry_after=self._retry_after(response), url=url)

        if status >= 500:
            raise TransportError(f"GitHub API error {status}: {message}",
                                 kind=TransportError.TRANSIENT_5XX, status=status, url=url)

        if status == 422 and self._is_already_exists(response):
            raise PublishConflict(f"Resource already exists: {message}", status=status, url=url)

        raise RegistryError(f"GitHub API error {status} for {method} {url}: {message}",
                            status=status, url=url)

    def _send(self, name: str, method: str, url: str, **kwargs: Any) -> Optional[requests.Response]:
        """_request() wrapped in the retry policy."""
        return with_retry(name, self.retry, lambda: self._request(method, url, **kwargs), sleep=self._sleep)

    def _api(self, endpoint: str) -> str:
        return f"{self.api_url}/{endpoint}"

    def _paginate(self, name: str, endpoint: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        url: Optional[str] = self._api(endpoint)
        params: Optional[Dict[str, Any]] = {'per_page': 100}
        while url:
            response = self._send(name, 'GET', url, params=params)
            items.extend(response.json())
            url = response.links.get('next', {}).get('url')
            params = None  # the next link carries its own query
        return items

    # Release lookups

    def get_release(self, repo: str, tag: str) -> Optional[Release]:
        """
        Get a published release by exact tag name.

        Returns:
            Release or None if no release carries that tag
        """
        response = self._send('get_release', 'GET', self._api(f"repos/{repo}/releases/tags/{tag}"),
                              allow_404=True)
        if response is None:
            return None
        return Release.from_api_response(response.json())

    def get_latest_release(self, repo: str) -> Optional[Release]:
        """Get the newest non-draft, non-prerelease release."""
        response = self._send('get_latest_release', 'GET', self._api(f"repos/{repo}/releases/latest"),
                              allow_404=True)
        if response is None:
            return None
        return Release.from_api_response(response.json())

    def list_releases(self, repo: str) -> List[Release]:
        """All releases of a repository, drafts included when the token allows."""
        return [Release.from_api_response(r) for r in self._paginate('list_releases', f"repos/{repo}/releases")]

    def ref_exists(self, repo: str, ref: str) -> bool:
        """True if ``ref`` (branch, tag or commit) resolves in the remote repository."""
        try:
            response = self._send('ref_exists', 'GET', self._api(f"repos/{repo}/commits/{ref}"),
                                  allow_404=True)
        except RegistryError as e:
            # 422 "No commit found for SHA"
            if e.context.get('status') == 422:
                return False
            raise
        return response is not None

    # Release mutation

    def create_release(
        self,
        repo: str,
        tag: str,
        draft: bool = False,
        prerelease: bool = False,
        notes: str = '',
        name: Optional[str] = None,
        target_commitish: Optional[str] = None,
    ) -> Release:
        payload: Dict[str, Any] = {
            'tag_name': tag,
            'name': name or tag,
            'body': notes,
            'draft': draft,
            'prerelease': prerelease,
        }
        if target_commitish:
            payload['target_commitish'] = target_commitish
        logger.debug(f"creating release {tag} on {repo}")
        response = self._send('create_release', 'POST', self._api(f"repos/{repo}/releases"), json=payload)
        return Release.from_api_response(response.json())

    def update_release(self, repo: str, release_id: int, **fields: Any) -> Release:
        """
        Update mutable release fields.

        Args:
            fields: any of draft, prerelease, notes, name
        """
        payload = dict(fields)
        if 'notes' in payload:
            payload['body'] = payload.pop('notes')
        response = self._send('update_release', 'PATCH',
                              self._api(f"repos/{repo}/releases/{release_id}"), json=payload)
        return Release.from_api_response(response.json())

    def delete_release(self, repo: str, release_id: int) -> None:
        self._send('delete_release', 'DELETE', self._api(f"repos/{repo}/releases/{release_id}"))

    # Assets

    def list_assets(self, repo: str, release_id: int) -> List[Asset]:
        items = self._paginate('list_assets', f"repos/{repo}/releases/{release_id}/assets")
        return [Asset.from_api_response(a) for a in items]

    def upload_asset(self, repo: str, release_id: int, filename: str, payload: bytes,
                     content_type: str) -> Asset:
        url = f"{self.uploads_url}/repos/{repo}/releases/{release_id}/assets"
        logger.debug(f"uploading {filename} ({len(payload)} bytes) to release {release_id}")
        response = self._send(
            'upload_asset', 'POST', url,
            params={'name': filename},
            data=payload,
            headers={'Content-Type': content_type},
        )
        return Asset.from_api_response(response.json())

    def delete_asset(self, repo: str, asset_id: int) -> None:
        self._send('delete_asset', 'DELETE', self._api(f"repos/{repo}/releases/assets/{asset_id}"))

    def download_asset(self, repo: str, asset: Asset) -> bytes:
        """
        Download an asset's bytes.

        Goes through the API asset endpoint when the asset id is known so
        that private repositories work with a token.
        """
        if asset.id is not None:
            url = self._api(f"repos/{repo}/releases/assets/{asset.id}")
        else:
            url = asset.download_url
        response = self._send('download_asset', 'GET', url,
                              headers={'Accept': 'application/octet-stream'})
        return response.content
