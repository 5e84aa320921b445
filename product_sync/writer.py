from typing import Sequence

from loguru import logger

from .exceptions import StorageError, WriteError
from .models import NormalizedRecord, WriteFailure, WriteReport
from .store import ProductStore


class UpsertWriter:
    """Writes normalized products to the store, one upsert per code."""

    def __init__(self, store: ProductStore, bulk: bool = True):
        self.store = store
        self.bulk = bulk and hasattr(store, "upsert_many")

    def write_batch(self, records: Sequence[NormalizedRecord]) -> WriteReport:
        report = WriteReport()
        if not records:
            return report

        if self.bulk:
            try:
                matched, inserted = self.store.upsert_many(
                    [(record.code, record) for record in records]
                )
            except StorageError as exc:
                logger.warning(
                    f"Bulk upsert of {len(records)} products failed, "
                    f"falling back to single upserts: {exc}"
                )
            else:
                report.matched, report.inserted = matched, inserted
                return report

        for record in records:
            try:
                inserted = self.store.upsert_one(record.code, record)
            except StorageError as exc:
                error = WriteError(record.code, exc)
                logger.warning(error.message)
                report.failed.append(WriteFailure(code=record.code, error=str(exc)))
                continue
            if inserted:
                report.inserted += 1
            else:
                report.matched += 1
        return report
