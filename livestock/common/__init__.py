"""Common utilities shared by the consumer and the API."""

from .logging_utils import configure_logging

__all__ = ["configure_logging"]
