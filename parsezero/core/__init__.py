"""
parsezero.core: record model, dirty tracking, collection proxies, query
compiler and persistence for a Parse style JSON REST store.
"""

from parsezero.core.config import ClientConfig, Registry, config
from parsezero.core.interfaces import AbstractClient, AbstractTransport
from parsezero.core.types import DataKind, HttpMethod

__all__ = [
    # Types
    "DataKind",
    "HttpMethod",
    # Configuration
    "ClientConfig",
    "Registry",
    "config",
    # Abstract Base Classes
    "AbstractClient",
    "AbstractTransport",
]
