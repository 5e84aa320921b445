"""Pytest configuration and fixtures for product_sync testing."""

from typing import Any, Callable, Dict

import pytest

from product_sync.codec import RecordCodec
from product_sync.etl import ImportOrchestrator
from product_sync.sources import ManifestResolver, RetryPolicy, ShardFetcher
from product_sync.store import InMemoryProductStore
from product_sync.writer import UpsertWriter
from tests.helpers import BASE_URL, FIXED_NOW, NO_RETRY, make_client


@pytest.fixture
def store() -> InMemoryProductStore:
    return InMemoryProductStore()


@pytest.fixture
def make_orchestrator(store) -> Callable[..., ImportOrchestrator]:
    """Build an orchestrator against a fake remote dataset and the ``store`` fixture."""

    def factory(
        routes: Dict[str, Any],
        concurrency: int = 1,
        record_limit=None,
        retry: RetryPolicy = NO_RETRY,
        target_store=None,
    ) -> ImportOrchestrator:
        client = make_client(routes)
        return ImportOrchestrator(
            manifest=ManifestResolver(client, BASE_URL, timeout=1.0, retry=retry),
            fetcher=ShardFetcher(client, BASE_URL, timeout=1.0, retry=retry),
            codec=RecordCodec(record_limit=record_limit, clock=lambda: FIXED_NOW),
            writer=UpsertWriter(target_store if target_store is not None else store),
            concurrency=concurrency,
        )

    return factory
