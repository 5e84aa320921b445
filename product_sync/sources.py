from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import quote

import httpx
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import ManifestUnavailable, ShardFetchError

RETRY_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRY_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        f"Attempt {retry_state.attempt_number} failed ({exc!r}), retrying in {delay:.2f}s"
    )


@dataclass
class RetryPolicy:
    """Exponential backoff for transient transport failures and 429/5xx responses."""

    attempts: int = 3
    backoff: float = 1.0
    max_wait: float = 10.0

    async def call(self, func: Callable[[], Awaitable[Any]]) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self.attempts)),
            wait=wait_exponential(multiplier=self.backoff, max=self.max_wait),
            retry=retry_if_exception(is_transient),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                return await func()


class _RemoteSource:
    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        timeout: float = 30.0,
        retry: Optional[RetryPolicy] = None,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry = retry or RetryPolicy()

    def url_for(self, name: str) -> str:
        return f"{self.base_url}/{quote(name.lstrip('/'), safe='/')}"

    async def _get(self, url: str) -> httpx.Response:
        async def attempt() -> httpx.Response:
            response = await self.client.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response

        return await self.retry.call(attempt)


class ManifestResolver(_RemoteSource):
    """Reads the newline-delimited list of shard names."""

    def __init__(self, *args, manifest_name: str = "index.txt", **kwargs):
        super().__init__(*args, **kwargs)
        self.manifest_name = manifest_name

    async def resolve(self) -> List[str]:
        url = self.url_for(self.manifest_name)
        try:
            response = await self._get(url)
        except httpx.HTTPError as exc:
            raise ManifestUnavailable(url, exc) from exc

        shards = [line.strip() for line in response.text.split("\n")]
        shards = [shard for shard in shards if shard]
        logger.info(f"Manifest {url} lists {len(shards)} shards")
        return shards


class ShardFetcher(_RemoteSource):
    """Downloads one shard and decodes it as a JSON array of records."""

    async def fetch(self, shard: str) -> List[Any]:
        url = self.url_for(shard)
        try:
            response = await self._get(url)
        except httpx.HTTPError as exc:
            raise ShardFetchError(shard, exc) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ShardFetchError(shard, f"malformed payload: {exc}") from exc
        if not isinstance(payload, list):
            raise ShardFetchError(
                shard, f"malformed payload: expected a JSON array, got {type(payload).__name__}"
            )
        return payload
