from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Tuple

from loguru import logger

from .exceptions import InvalidRecord
from .models import NormalizedRecord, ProductStatus, utc_now


class RecordCodec:
    """Turns raw shard records into store-ready products keyed by ``code``."""

    key_field = "code"

    def __init__(
        self,
        record_limit: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.record_limit = record_limit
        self.clock = clock

    def normalize(self, raw: Any) -> NormalizedRecord:
        if not isinstance(raw, dict):
            raise InvalidRecord(f"expected an object, got {type(raw).__name__}", raw)

        code = raw.get(self.key_field)
        if isinstance(code, bool) or not isinstance(code, (str, int)):
            raise InvalidRecord(f"missing '{self.key_field}'", raw)
        code = str(code).strip()
        if not code:
            raise InvalidRecord(f"empty '{self.key_field}'", raw)

        attributes = {k: v for k, v in raw.items() if k != self.key_field}
        return NormalizedRecord(
            code=code,
            attributes=attributes,
            imported_at=self.clock(),
            status=ProductStatus.CREATED,
        )

    def normalize_batch(self, raws: Iterable[Any]) -> Tuple[List[NormalizedRecord], int]:
        """Normalize up to ``record_limit`` records, returning them with the rejected count."""
        raws = list(raws)
        if self.record_limit is not None:
            raws = raws[: self.record_limit]

        records: List[NormalizedRecord] = []
        rejected = 0
        for raw in raws:
            try:
                records.append(self.normalize(raw))
            except InvalidRecord as exc:
                rejected += 1
                logger.warning(f"Skipping record: {exc.reason}")
        return records, rejected
