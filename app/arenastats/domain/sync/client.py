"""
Sync Client - Pushes and pulls statistics snapshots to and from the remote endpoint.

Remote contract:
- POST {base}{accessKey}        push own snapshot (X-Player-ID header)
- GET  {base}{accessKey}        own snapshot
- GET  {base}pid/{accessKey}    peer-aggregated snapshot (X-Player-ID excludes self)
- GET  {base}clear/{accessKey}  drop remote state
- GET  {status}                 liveness ping
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from arenastats.config import Settings
from arenastats.domain.stats.models import StatisticsStore
from arenastats.domain.utils.storage import ACCESS_KEY_KEY, KeyValueStore
from arenastats.exceptions import ConfigurationError, DataError, NetworkError
from arenastats.logging_config import get_logger, log_sync_attempt

logger = get_logger(__name__)

PLAYER_ID_HEADER = "X-Player-ID"


class PullScope(str, Enum):
    """Which snapshot to fetch."""

    OWN = "own"
    PEERS = "peers"


class SnapshotPayload(BaseModel):
    """Response body of a snapshot fetch."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = False
    battle_stats: dict[str, Any] | None = Field(default=None, alias="BattleStats")
    player_info: dict[str, Any] | None = Field(default=None, alias="PlayerInfo")


@dataclass
class RemoteSnapshot:
    """Raw statistics returned by the remote endpoint."""

    success: bool
    battle_stats: dict[str, Any] = field(default_factory=dict)
    player_info: dict[str, Any] = field(default_factory=dict)


class SyncClient:
    """
    HTTP client for the statistics endpoint.

    Push retries with linear backoff; every other call is a single attempt.
    Each attempt carries its own deadline.
    """

    def __init__(
        self,
        settings: Settings,
        storage: KeyValueStore,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the client.

        Args:
            settings: Endpoint URLs and retry policy
            storage: Key-value store holding the access key
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Awaitable used for backoff between push attempts
        """
        self._settings = settings
        self._storage = storage
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def access_key(self) -> str:
        """The caller's identity token; its absence is fatal for any sync call."""
        key = self._storage.get(ACCESS_KEY_KEY)
        if not key:
            raise ConfigurationError("missing_access_key", "Access key not found")
        return str(key)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """One attempt, bounded by the configured deadline."""
        timeout = self._settings.request_timeout
        try:
            return await asyncio.wait_for(
                self._client.request(method, url, **kwargs),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise NetworkError("timeout", f"{method} {url} timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            raise NetworkError("transport_error", f"{method} {url} failed: {e}") from e

    async def push(self, store: StatisticsStore, player_id: str | None) -> bool:
        """
        Post the whole store to the endpoint.

        Args:
            store: Statistics to serialize
            player_id: Local player id sent in the X-Player-ID header

        Returns:
            True once an attempt succeeds

        Raises:
            ConfigurationError: If no access key is stored
            NetworkError: After every attempt failed
        """
        url = f"{self._settings.stats_base_url}{self.access_key()}"
        attempts = self._settings.push_attempts
        headers = {PLAYER_ID_HEADER: str(player_id)} if player_id is not None else {}

        last_error: NetworkError | None = None
        for attempt in range(1, attempts + 1):
            try:
                response = await self._request("POST", url, json=store.to_payload(), headers=headers)
                if not response.is_success and response.status_code != httpx.codes.ACCEPTED:
                    raise NetworkError(
                        "server_error",
                        f"Server error: {response.status_code}",
                        status_code=response.status_code,
                    )
                log_sync_attempt(logger, "push", attempt, player_id=player_id, status_code=response.status_code)
                return True
            except NetworkError as e:
                last_error = e
                log_sync_attempt(
                    logger, "push", attempt,
                    player_id=player_id, status_code=e.status_code, error=e.message,
                )
                if attempt < attempts:
                    await self._sleep(self._settings.push_backoff * attempt)

        raise NetworkError(
            "retries_exhausted",
            f"Push failed after {attempts} attempts: {last_error.message if last_error else 'unknown'}",
            status_code=last_error.status_code if last_error else None,
            attempts=attempts,
        )

    async def pull(
        self,
        scope: PullScope = PullScope.OWN,
        player_id: str | None = None,
    ) -> RemoteSnapshot:
        """
        Fetch the own snapshot or, with PullScope.PEERS, the peer aggregate.

        Does not retry; the caller decides whether to try again.

        Raises:
            ConfigurationError: If no access key is stored
            NetworkError: On a non-success status, timeout or transport failure
            DataError: If the body is not a valid snapshot
        """
        key = self.access_key()
        if scope == PullScope.PEERS:
            url = f"{self._settings.peers_url_prefix}{key}"
            headers = {PLAYER_ID_HEADER: str(player_id)} if player_id is not None else {}
        else:
            url = f"{self._settings.stats_base_url}{key}"
            headers = {}

        response = await self._request("GET", url, headers=headers)
        if not response.is_success:
            log_sync_attempt(
                logger, f"pull:{scope.value}", 1,
                player_id=player_id, status_code=response.status_code,
                error=response.reason_phrase or "request failed",
            )
            raise NetworkError(
                "server_error",
                f"Failed to load {scope.value} statistics: {response.status_code}",
                status_code=response.status_code,
            )
        log_sync_attempt(logger, f"pull:{scope.value}", 1, player_id=player_id, status_code=response.status_code)

        payload = self._parse_snapshot(response)
        if not payload.success:
            return RemoteSnapshot(success=False)
        return RemoteSnapshot(
            success=True,
            battle_stats=payload.battle_stats or {},
            player_info=payload.player_info or {},
        )

    def _parse_snapshot(self, response: httpx.Response) -> SnapshotPayload:
        try:
            return SnapshotPayload.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise DataError("invalid_snapshot", f"Malformed snapshot from server: {e}") from e

    async def clear_remote(self) -> bool:
        """Ask the endpoint to drop all state for this access key."""
        url = f"{self._settings.clear_url_prefix}{self.access_key()}"
        response = await self._request("GET", url)
        if not response.is_success:
            raise NetworkError(
                "server_error",
                f"Failed to clear remote statistics: {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return bool(response.json().get("success", False))
        except (ValueError, AttributeError) as e:
            raise DataError("invalid_response", f"Malformed clear response: {e}") from e

    async def warmup(self) -> bool:
        """Liveness ping to wake a possibly cold endpoint."""
        response = await self._request("GET", self._settings.status_url)
        if not response.is_success:
            raise NetworkError(
                "server_error",
                f"Status check failed: {response.status_code}",
                status_code=response.status_code,
            )
        return True
