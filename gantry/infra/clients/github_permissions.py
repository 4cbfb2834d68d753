"""GitHub collaborator permission lookup.

Uses GET /repos/{owner}/{repo}/collaborators/{username}/permission, which
returns {"permission": "admin" | "maintain" | "write" | "triage" | "read" | "none"}.
"""

from __future__ import annotations

import logging

import aiohttp

from gantry.core.errors import PermissionCheckError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 10.0


class GitHubPermissionChecker:
    """PermissionChecker implementation backed by the GitHub REST API."""

    def __init__(
        self,
        repository: str,
        token: str | None = None,
        api_url: str = DEFAULT_API_URL,
        http_session: aiohttp.ClientSession | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.repository = repository
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._http_session = http_session
        self._timeout = timeout

    def permission_url(self, actor: str) -> str:
        return f"{self._api_url}/repos/{self.repository}/collaborators/{actor}/permission"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def permission_level(self, actor: str) -> str | None:
        """Return the actor's permission, or None if they are not a collaborator.

        Raises:
            PermissionCheckError: On transport errors or unexpected responses.
        """
        session = self._http_session
        session_created = session is None
        if session is None:
            session = aiohttp.ClientSession()
        try:
            async with session.get(
                self.permission_url(actor),
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                if response.status == 404:
                    return None
                if response.status != 200:
                    text = await response.text()
                    raise PermissionCheckError(f"HTTP {response.status}: {text[:100]}")
                data = await response.json()
        except (aiohttp.ClientError, TimeoutError) as e:
            raise PermissionCheckError(f"{type(e).__name__}: {e}") from e
        finally:
            if session_created:
                await session.close()

        permission = data.get("permission") if isinstance(data, dict) else None
        logger.debug("Permission of %s on %s: %s", actor, self.repository, permission)
        return permission
