from parsezero.client.batch import BatchOperation, destroy_all, save_all
from parsezero.client.client import Client, configure
from parsezero.client.testing import MemoryTransport
from parsezero.client.transport import HTTPTransport

__all__ = [
    "BatchOperation",
    "Client",
    "configure",
    "destroy_all",
    "HTTPTransport",
    "MemoryTransport",
    "save_all",
]
