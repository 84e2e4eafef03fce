"""Exception hierarchy for the price pipeline.

Driver exceptions (psycopg2, httpx, pydantic) never leave the module that
talks to the driver; they are re-raised as one of these types with the
original exception chained.
"""


class LivestockError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(LivestockError, ValueError):
    """Invalid start-up configuration."""


class MalformedMessageError(LivestockError):
    """A feed message could not be decoded into a price record."""


class StorageError(LivestockError):
    """The backing store is unavailable or rejected a read or write."""


class RecordRejectedError(StorageError):
    """The store refused this particular record; retrying cannot succeed."""


class UpstreamUnavailableError(LivestockError):
    """The external price API could not be reached or returned an error."""


__all__ = [
    "LivestockError",
    "ConfigError",
    "MalformedMessageError",
    "StorageError",
    "RecordRejectedError",
    "UpstreamUnavailableError",
]
