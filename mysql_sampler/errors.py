"""Exception types raised by the sampler."""

from typing import Optional


class SamplerError(Exception):
    """Base class for every error the sampler reports."""


class ConfigError(SamplerError):
    """Configuration file or instance block is invalid."""


class DatabaseConnectionError(SamplerError):
    """Server unreachable, authentication or TLS failure."""

    def __init__(self, message: str, host: Optional[str] = None, database: Optional[str] = None):
        super().__init__(message)
        self.host = host
        self.database = database


class QueryError(SamplerError):
    """
    A query failed.

    ``reason`` is ``"rejected"`` when the server refused the statement and
    ``"fetch"`` when the result could not be materialized client-side.
    """

    REJECTED = "rejected"
    FETCH = "fetch"

    def __init__(self, message: str, query: str, reason: str = REJECTED):
        super().__init__(message)
        self.query = query
        self.reason = reason


class SchemaError(SamplerError):
    """A result set does not have the shape a reader requires."""

    def __init__(self, message: str, query: Optional[str] = None):
        super().__init__(message)
        self.query = query
