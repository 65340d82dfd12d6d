"""Client for the hosting service's repository API."""

import logging
from types import TracebackType
from urllib.parse import quote

import httpx

from .config import RemoteConfig
from .constants import APP_NAME, DEFAULT_BRANCH
from .exceptions import RemoteApiError

logger = logging.getLogger(APP_NAME)


class RemoteClient:
    """Ensures that a remote repository exists for each project.

    Use as an async context manager so the underlying connection pool is
    closed on exit.
    """

    def __init__(
        self,
        config: RemoteConfig,
        default_branch: str = DEFAULT_BRANCH,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            config: Remote settings (base URL, token, owner, timeout)
            default_branch: Branch name sent when a repository is created
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        self.default_branch = default_branch
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.api_url,
                headers={
                    "Authorization": f"token {self.config.token}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(self.config.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def repo_url(self, name: str) -> str:
        """Clone URL of ``name`` under the configured owner."""
        return self.config.repo_url(name)

    async def ensure_repo(self, name: str) -> bool:
        """Creates the private repository ``owner/name`` if it does not exist.

        Args:
            name: Repository (project) name

        Returns:
            True if the repository was created by this call

        Raises:
            RemoteApiError: On any failure other than "not found"
        """
        client = self._get_client()
        path = f"/repos/{quote(self.config.owner)}/{quote(name)}"
        try:
            response = await client.get(path)
        except httpx.HTTPError as e:
            raise RemoteApiError(f"Failed to check repo {name}: {e}") from e

        if response.status_code == 200:
            return False
        if response.status_code != 404:
            raise RemoteApiError(
                f"Failed to check repo {name}: HTTP {response.status_code} "
                f"{_error_detail(response)}",
                status_code=response.status_code,
            )

        payload = {
            "name": name,
            "private": True,
            "default_branch": self.default_branch,
            "auto_init": False,
        }
        try:
            response = await client.post("/user/repos", json=payload)
        except httpx.HTTPError as e:
            raise RemoteApiError(f"Failed to create repo {name}: {e}") from e

        # 409: created concurrently between our GET and POST.
        if response.status_code == 409:
            return False
        if response.status_code not in (200, 201):
            raise RemoteApiError(
                f"Failed to create repo {name}: HTTP {response.status_code} "
                f"{_error_detail(response)}",
                status_code=response.status_code,
            )

        logger.info(f"[{name}] Created remote repository")
        return True


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return ""
