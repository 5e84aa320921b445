import asyncio
from typing import List, Optional

from loguru import logger

from .codec import RecordCodec
from .exceptions import ManifestUnavailable, ShardFetchError
from .models import ImportRun, RunStatus, ShardOutcome, utc_now
from .sources import ManifestResolver, ShardFetcher
from .writer import UpsertWriter


class ImportOrchestrator:
    """Manifest -> shards -> normalize -> upsert.

    Runs never overlap: a call made while another run is in progress returns
    ``None`` straight away. Shards are processed in manifest order, one at a
    time unless ``concurrency`` is raised, and a failing shard is recorded on
    the run without stopping the others.
    """

    def __init__(
        self,
        manifest: ManifestResolver,
        fetcher: ShardFetcher,
        codec: RecordCodec,
        writer: UpsertWriter,
        concurrency: int = 1,
    ):
        self.manifest = manifest
        self.fetcher = fetcher
        self.codec = codec
        self.writer = writer
        self.concurrency = max(1, concurrency)
        self.current_run: Optional[ImportRun] = None
        self.last_run: Optional[ImportRun] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run(self, trigger: str = "manual") -> Optional[ImportRun]:
        if self._lock.locked():
            logger.warning(f"Import already running, skipping {trigger} trigger")
            return None

        async with self._lock:
            run = ImportRun(trigger=trigger)
            self.current_run = run
            try:
                await self._execute(run)
            finally:
                run.finished_at = utc_now()
                self.current_run = None
                self.last_run = run
            return run

    async def _execute(self, run: ImportRun) -> None:
        logger.info(f"Import {run.run_id} started ({run.trigger})")
        run.status = RunStatus.RESOLVING_MANIFEST
        try:
            run.shards = await self.manifest.resolve()
        except ManifestUnavailable as exc:
            run.status = RunStatus.MANIFEST_FAILED
            run.error = exc.message
            logger.opt(exception=exc).error(f"Import {run.run_id} failed: {exc.message}")
            return

        run.status = RunStatus.PROCESSING_SHARDS
        run.outcomes = await self._process_shards(run.shards)
        run.status = RunStatus.COMPLETED

        failed = run.failed_shards
        logger.info(
            f"Import {run.run_id} completed: {len(run.shards)} shards, "
            f"{len(failed)} failed, {run.records_written} records written, "
            f"{run.records_rejected} rejected"
        )

    async def _process_shards(self, shards: List[str]) -> List[ShardOutcome]:
        if self.concurrency == 1:
            return [await self._guarded(shard) for shard in shards]

        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(shard: str) -> ShardOutcome:
            async with semaphore:
                return await self._guarded(shard)

        # gather keeps manifest order in its result list
        return list(await asyncio.gather(*(bounded(shard) for shard in shards)))

    async def _guarded(self, shard: str) -> ShardOutcome:
        try:
            return await self._process_shard(shard)
        except Exception as exc:
            logger.exception(f"Unexpected failure while importing shard {shard}")
            return ShardOutcome.failed(shard, f"unexpected error: {exc!r}")

    async def _process_shard(self, shard: str) -> ShardOutcome:
        try:
            raws = await self.fetcher.fetch(shard)
        except ShardFetchError as exc:
            logger.warning(exc.message)
            return ShardOutcome.failed(shard, exc.message)

        records, rejected = self.codec.normalize_batch(raws)
        report = self.writer.write_batch(records)
        logger.info(
            f"Shard {shard}: {len(records)} records "
            f"({report.inserted} inserted, {report.matched} matched, "
            f"{len(report.failed)} failed, {rejected} rejected)"
        )
        return ShardOutcome.succeeded(
            shard, fetched=len(raws), rejected=rejected, report=report
        )
