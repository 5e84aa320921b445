from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProductStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    TRASH = "trash"


class RunStatus(str, Enum):
    IDLE = "idle"
    RESOLVING_MANIFEST = "resolving_manifest"
    MANIFEST_FAILED = "manifest_failed"
    PROCESSING_SHARDS = "processing_shards"
    COMPLETED = "completed"


class NormalizedRecord(BaseModel):
    """Product as kept in the store, one row per code."""

    code: str = Field(min_length=1)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    imported_at: datetime = Field(default_factory=utc_now)
    status: ProductStatus = ProductStatus.CREATED


class WriteFailure(BaseModel):
    code: str
    error: str


class WriteReport(BaseModel):
    matched: int = 0
    inserted: int = 0
    failed: List[WriteFailure] = Field(default_factory=list)

    @property
    def written(self) -> int:
        return self.matched + self.inserted


class ShardOutcome(BaseModel):
    """Result of processing one shard: either a write report or an error."""

    shard: str
    ok: bool
    fetched: int = 0
    rejected: int = 0
    report: Optional[WriteReport] = None
    error: Optional[str] = None

    @classmethod
    def succeeded(
        cls, shard: str, fetched: int, rejected: int, report: WriteReport
    ) -> "ShardOutcome":
        return cls(
            shard=shard, ok=True, fetched=fetched, rejected=rejected, report=report
        )

    @classmethod
    def failed(cls, shard: str, error: str) -> "ShardOutcome":
        return cls(shard=shard, ok=False, error=error)


class ImportRun(BaseModel):
    """Diagnostics of a single orchestrator invocation."""

    run_id: str = Field(default_factory=lambda: uuid4().hex)
    trigger: str = "manual"
    status: RunStatus = RunStatus.IDLE
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    shards: List[str] = Field(default_factory=list)
    outcomes: List[ShardOutcome] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed_shards(self) -> List[ShardOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def records_written(self) -> int:
        return sum(o.report.written for o in self.outcomes if o.report is not None)

    @property
    def records_rejected(self) -> int:
        return sum(o.rejected for o in self.outcomes)
