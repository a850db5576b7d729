"""
Batched submission of prepared requests.

Requests are sent through the batch endpoint of the store in segments. Each
response is paired with the request that produced it, and through the
request's tag with the record it came from:

    songs = Song.query().where(genre="rock").results()
    for song in songs:
        song.plays = 0
    batch = save_all(songs)
    batch.success
"""
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from cytoolz import concat, partition_all, unique

from parsezero.core.classes import Request, Response
from parsezero.core.config import config
from parsezero.core.exceptions import ConfigError
from parsezero.core.model import Record

logger = logging.getLogger(__name__)

Callback = Callable[[Request, Response], Any]


def _request_key(request: Request) -> str:
    # identical requests of one record are sent once
    return json.dumps([request.signature(), request.tag], sort_keys=True, default=str)


class BatchOperation:
    """
    An ordered set of requests submitted together. Accepts requests, records
    (their change requests), other batches and iterables of those.
    """

    def __init__(self, requests: Any = None, client: Any = None):
        self.requests: List[Request] = []
        self.responses: List[Response] = []
        self._client = client
        if requests is not None:
            self.add(requests)

    @property
    def client(self):
        client = self._client if self._client is not None else config.client
        if client is None:
            raise ConfigError("No client configured for batch. Call parsezero.client.configure() first.")
        return client

    def add(self, item: Any) -> List[Request]:
        if isinstance(item, BatchOperation):
            self.requests.extend(item.requests)
        elif isinstance(item, Request):
            self.requests.append(item)
        elif hasattr(item, "change_requests"):
            self.requests.extend(r for r in item.change_requests() if isinstance(r, Request))
        elif hasattr(item, "__iter__") and not isinstance(item, (str, bytes, dict)):
            for entry in item:
                self.add(entry)
        else:
            raise TypeError(f"Cannot add {item!r} to a batch")
        return self.requests

    def change_requests(self, force: bool = False) -> List[Request]:
        return list(self.requests)

    def as_json(self) -> Dict[str, Any]:
        return {"requests": [request.signature() for request in self.requests]}

    def clear(self) -> None:
        self.requests.clear()
        self.responses = []

    @property
    def success(self) -> bool:
        return bool(self.responses) and all(response.success for response in self.responses)

    @property
    def is_error(self) -> bool:
        return bool(self.responses) and not self.success

    def submit(self, segment: Optional[int] = None, callback: Optional[Callback] = None) -> List[Response]:
        """
        Send the requests in segments of `segment` (the batch_segment setting
        by default) and return the responses in request order. `callback` is
        called with each request and its response.
        """
        segment = segment or config.batch_segment
        if segment < 1:
            raise ValueError(f"Batch segment must be positive, got {segment}")
        self.requests = list(unique(self.requests, key=_request_key))
        slices = [list(s) for s in partition_all(segment, self.requests)]
        if not slices:
            self.responses = []
            return self.responses
        client = self.client
        logger.debug(f"Submitting {len(self.requests)} requests in {len(slices)} batches")
        with ThreadPoolExecutor(max_workers=max(1, config.batch_workers)) as executor:
            replies = list(executor.map(client.batch_request, slices))
        self.responses = list(concat(replies))
        failed = sum(1 for response in self.responses if response.is_error)
        if failed:
            logger.warning(f"{failed} of {len(self.responses)} batched requests failed")
        if callback is not None:
            for request, response in zip(self.requests, self.responses):
                callback(request, response)
        return self.responses

    save = submit

    def __iter__(self) -> Iterator[Request]:
        return iter(self.requests)

    def __len__(self) -> int:
        return len(self.requests)

    def __repr__(self):
        return f"<BatchOperation {len(self.requests)} requests>"


def _rebinder(records: Dict[int, Record]) -> Callback:
    def rebind(request: Request, response: Response) -> None:
        record = records.get(request.tag)
        if record is not None:
            record.apply_batch_response(request, response)

    return rebind


def save_all(records: Iterable[Any], merge: bool = True, force: bool = False, client: Any = None) -> BatchOperation:
    """
    Save the changes of `records` through batched requests. With `merge`,
    successful results are folded back into their records and the changes
    they carried are cleared. Save hooks do not run.
    """
    batch = BatchOperation(client=client)
    by_tag: Dict[int, Record] = {}
    for record in records:
        if not isinstance(record, Record):
            continue
        by_tag[id(record)] = record
        batch.add(record.change_requests(force=force))
    batch.submit(callback=_rebinder(by_tag) if merge else None)
    return batch


def destroy_all(records: Iterable[Any], client: Any = None) -> BatchOperation:
    """Delete the saved records of `records` through batched requests."""
    batch = BatchOperation(client=client)
    by_tag: Dict[int, Record] = {}
    for record in records:
        request = record.destroy_request() if isinstance(record, Record) else None
        if request is None:
            continue
        by_tag[id(record)] = record
        batch.add(request)
    batch.submit(callback=_rebinder(by_tag))
    return batch
