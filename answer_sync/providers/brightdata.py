from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

import httpx
from loguru import logger

from answer_sync.config import Settings
from answer_sync.errors import ConfigurationError, ProviderErrorType, classify_provider_error
from answer_sync.extract.payload import extract
from answer_sync.services.logger import log_poll_outcome


@dataclass(frozen=True, slots=True)
class Ready:
    payload: Any
    status_code: int = 200


@dataclass(frozen=True, slots=True)
class NotReady:
    reason: str
    status_code: int | None = None


@dataclass(frozen=True, slots=True)
class TransientError:
    cause: str
    error_type: ProviderErrorType = ProviderErrorType.UNKNOWN


PollOutcome = Union[Ready, NotReady, TransientError]


class SnapshotClient:
    """Polls BrightData dataset snapshots by snapshot id."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.brightdata.com/datasets/v3",
        timeout_s: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key.strip()
        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s)
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> SnapshotClient:
        return cls(
            api_key=settings.brightdata_api_key,
            base_url=settings.brightdata_base_url,
            timeout_s=settings.snapshot_poll_timeout_s,
            **kwargs,
        )

    def snapshot_url(self, snapshot_id: str) -> str:
        return f"{self.base_url}/snapshot/{snapshot_id}"

    def ensure_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError("Missing required configuration: BRIGHTDATA_API_KEY")
        if not self.base_url:
            raise ConfigurationError("Missing required configuration: BRIGHTDATA_BASE_URL")

    async def poll(self, snapshot_id: str) -> PollOutcome:
        """Fetch one snapshot. Never raises for provider-side problems."""
        self.ensure_configured()

        async def _do_request(client: httpx.AsyncClient) -> httpx.Response:
            return await client.get(
                self.snapshot_url(snapshot_id),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )

        try:
            if self._http_client is None:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    response = await _do_request(client)
            else:
                response = await _do_request(self._http_client)
        except httpx.HTTPError as exc:
            error_type = classify_provider_error(exc)
            log_poll_outcome(snapshot_id, "transient_error", kind=error_type.value)
            return TransientError(cause=str(exc) or type(exc).__name__, error_type=error_type)

        # The snapshot may not exist yet, or still be building (202).
        if not response.is_success or response.status_code == 202:
            log_poll_outcome(snapshot_id, "not_ready", kind=f"http_{response.status_code}", status_code=response.status_code)
            return NotReady(reason=f"http_{response.status_code}", status_code=response.status_code)

        try:
            payload = json.loads(response.text)
        except ValueError:
            # Plain-text placeholders are returned until the job completes.
            log_poll_outcome(snapshot_id, "not_ready", kind="not_json", status_code=response.status_code)
            return NotReady(reason="not_json", status_code=response.status_code)

        log_poll_outcome(snapshot_id, "ready", status_code=response.status_code)
        return Ready(payload=payload, status_code=response.status_code)

    async def poll_until_ready(
        self,
        snapshot_id: str,
        *,
        max_attempts: int = 60,
        interval_s: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> PollOutcome:
        """Poll until the payload carries an answer or attempts run out.

        Returns the last outcome seen; a ``Ready`` result may still hold a
        payload without answer text when attempts are exhausted.
        """
        attempts = max(int(max_attempts), 1)
        outcome: PollOutcome = NotReady(reason="not_polled")
        for attempt in range(1, attempts + 1):
            outcome = await self.poll(snapshot_id)
            if isinstance(outcome, Ready) and extract(outcome.payload).is_ready:
                return outcome
            logger.debug(f"Snapshot {snapshot_id} not ready (attempt {attempt}/{attempts})")
            if attempt < attempts:
                await sleep(interval_s)
        logger.warning(f"Snapshot {snapshot_id} still not ready after {attempts} attempts")
        return outcome
