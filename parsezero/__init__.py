"""
parsezero: a client side object mapper for Parse style JSON REST stores.
"""

from parsezero.client import (
    BatchOperation,
    Client,
    HTTPTransport,
    MemoryTransport,
    configure,
    destroy_all,
    save_all,
)
from parsezero.core.collections import (
    CollectionProxy,
    PointerCollectionProxy,
    RelationCollectionProxy,
)
from parsezero.core.config import Registry, config
from parsezero.core.exceptions import (
    ConfigError,
    DuplicatePropertyError,
    IllegalStateError,
    InvalidConstraintError,
    ParseZeroError,
    RecordNotSavedError,
    UnsupportedChainError,
    UnsupportedOperatorError,
)
from parsezero.core.model import Record
from parsezero.core.pointer import Pointer
from parsezero.core.properties import BelongsTo, HasMany, Property
from parsezero.core.query import Query
from parsezero.core.types import DataKind
from parsezero.core.values import ACL, Bytes, File, GeoPoint

__all__ = [
    # Records
    "Record",
    "Property",
    "BelongsTo",
    "HasMany",
    "DataKind",
    "Pointer",
    "Query",
    # Values
    "ACL",
    "Bytes",
    "File",
    "GeoPoint",
    # Collections
    "CollectionProxy",
    "PointerCollectionProxy",
    "RelationCollectionProxy",
    # Configuration
    "Registry",
    "config",
    "configure",
    "Client",
    "HTTPTransport",
    "MemoryTransport",
    # Batches
    "BatchOperation",
    "save_all",
    "destroy_all",
    # Exceptions
    "ParseZeroError",
    "ConfigError",
    "DuplicatePropertyError",
    "IllegalStateError",
    "InvalidConstraintError",
    "RecordNotSavedError",
    "UnsupportedChainError",
    "UnsupportedOperatorError",
]

__version__ = "0.1.0"
