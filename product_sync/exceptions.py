from typing import Any, Dict, Optional


class ProductSyncError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ManifestUnavailable(ProductSyncError):
    """The shard manifest could not be fetched. Fatal to a run."""

    def __init__(self, url: str, cause: BaseException):
        self.url = url
        self.cause = cause
        super().__init__(
            f"Failed to fetch manifest {url}: {cause}",
            details={"url": url},
        )


class ShardFetchError(ProductSyncError):
    """One shard could not be fetched or decoded."""

    def __init__(self, shard: str, cause: Any):
        self.shard = shard
        self.cause = cause
        super().__init__(
            f"Failed to fetch shard {shard}: {cause}",
            details={"shard": shard},
        )


class InvalidRecord(ProductSyncError):
    """A raw record has no usable product code."""

    def __init__(self, reason: str, record: Any = None):
        self.reason = reason
        self.record = record
        super().__init__(f"Invalid record: {reason}")


class WriteError(ProductSyncError):
    """Upserting a single record failed."""

    def __init__(self, code: str, cause: BaseException):
        self.code = code
        self.cause = cause
        super().__init__(
            f"Failed to write product {code}: {cause}",
            details={"code": code},
        )


class StorageError(ProductSyncError):
    """Generic failure of the underlying product store."""
