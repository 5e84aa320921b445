"""Tests for the product query service."""

import pytest

from product_sync.exceptions import StorageError
from product_sync.models import NormalizedRecord, ProductStatus
from product_sync.products import ProductService
from product_sync.store import InMemoryProductStore


@pytest.fixture
def service(store) -> ProductService:
    store.upsert_many(
        [
            ("1", NormalizedRecord(code="1", attributes={"name": "X", "brand": "A"})),
            ("2", NormalizedRecord(code="2", attributes={"name": "Z"})),
        ]
    )
    return ProductService(store)


def test_update_then_get(service):
    service.update("1", {"name": "Y"})

    product = service.get_by_code("1")
    assert product.attributes == {"name": "Y", "brand": "A"}
    assert product.status == ProductStatus.UPDATED


def test_update_with_explicit_status(service):
    product = service.update("1", {"status": "created", "name": "Y"})

    assert product.status == ProductStatus.CREATED
    assert "status" not in product.attributes


@pytest.mark.parametrize("fields", [{"code": "9"}, {"imported_at": "2020-01-01"}])
def test_update_rejects_read_only_fields(service, fields):
    with pytest.raises(ValueError):
        service.update("1", fields)


def test_update_rejects_unknown_status(service):
    with pytest.raises(ValueError):
        service.update("1", {"status": "deleted"})


def test_update_missing_product(service):
    assert service.update("nope", {"name": "Y"}) is None


def test_soft_delete_hides_from_list(service, store):
    deleted = service.soft_delete("1")

    assert deleted.status == ProductStatus.TRASH
    assert [p.code for p in service.list_products()] == ["2"]
    # the row itself is kept
    assert store.find_one("1").status == ProductStatus.TRASH
    assert store.count() == 2


def test_soft_delete_missing_product(service):
    assert service.soft_delete("nope") is None


def test_get_missing_product(service):
    assert service.get_by_code("nope") is None


def test_storage_errors_propagate():
    class DownStore(InMemoryProductStore):
        def find_all(self, exclude_statuses=()):
            raise StorageError("database unavailable")

    with pytest.raises(StorageError):
        ProductService(DownStore()).list_products()


def test_update_keeps_trashed_product_hidden(service):
    service.soft_delete("1")

    product = service.update("1", {"name": "Y"})

    assert product.status == ProductStatus.TRASH
    assert product.attributes["name"] == "Y"
    assert [p.code for p in service.list_products()] == ["2"]


def test_update_with_status_restores_trashed_product(service):
    service.soft_delete("1")

    product = service.update("1", {"status": "updated"})

    assert product.status == ProductStatus.UPDATED
    assert {p.code for p in service.list_products()} == {"1", "2"}


def test_update_only_trashed_product_then_list_is_empty(store):
    store.upsert_one("1", NormalizedRecord(code="1", attributes={"name": "X"}))
    service = ProductService(store)

    service.soft_delete("1")
    service.update("1", {"name": "Y"})

    assert service.list_products() == []
