"""Query API for current stock prices."""

from .app import create_app
from .service import ExternalPrices, QueryService

__all__ = ["create_app", "QueryService", "ExternalPrices"]
