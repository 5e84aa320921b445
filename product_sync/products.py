from typing import Any, List, Mapping, Optional

from .models import NormalizedRecord, ProductStatus
from .store import ProductStore

READ_ONLY_FIELDS = frozenset({"code", "imported_at"})


class ProductService:
    """Read/update/soft-delete access to stored products."""

    def __init__(self, store: ProductStore):
        self.store = store

    def list_products(self) -> List[NormalizedRecord]:
        return self.store.find_all(exclude_statuses=[ProductStatus.TRASH])

    def get_by_code(self, code: str) -> Optional[NormalizedRecord]:
        return self.store.find_one(code)

    def update(self, code: str, fields: Mapping[str, Any]) -> Optional[NormalizedRecord]:
        """Merge ``fields`` into the product's attributes.

        ``status`` may be set explicitly; otherwise the product is marked
        ``updated``, except that trashed products stay in ``trash``. Raises
        ``ValueError`` for read-only fields or an unknown status.
        """
        blocked = READ_ONLY_FIELDS.intersection(fields)
        if blocked:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(blocked))}")

        attributes = dict(fields)
        if "status" in attributes:
            status = ProductStatus(attributes.pop("status"))
        else:
            current = self.store.find_one(code)
            if current is None:
                return None
            if current.status == ProductStatus.TRASH:
                status = ProductStatus.TRASH
            else:
                status = ProductStatus.UPDATED
        return self.store.update_one(code, attributes=attributes, status=status)

    def soft_delete(self, code: str) -> Optional[NormalizedRecord]:
        return self.store.update_one(code, status=ProductStatus.TRASH)
