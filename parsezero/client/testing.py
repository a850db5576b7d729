"""
In-memory transport for tests.

MemoryTransport records every request and replies with scripted responses
(first in, first out) or, when none are queued, with its handler:

    transport = MemoryTransport()
    transport.reply({"objectId": "abc", "createdAt": "2024-01-01T00:00:00.000Z"})
    configure(transport=transport)
    Song(title="x").save()
    transport.requests[0].body  # {"title": "x"}
"""
import threading
from collections import deque
from typing import Any, Callable, Dict, List, Optional, Union

from parsezero.core.classes import Request, Response
from parsezero.core.interfaces import AbstractTransport

Handler = Callable[[Request], Union[Response, Dict[str, Any], List[Any], None]]


class MemoryTransport(AbstractTransport):
    def __init__(self, handler: Optional[Handler] = None):
        self.handler = handler
        self.requests: List[Request] = []
        self._responses = deque()
        self._lock = threading.Lock()

    def reply(self, result: Any = None, **kwargs) -> "MemoryTransport":
        """Queue a successful response."""
        result = result if result is not None else {}
        if isinstance(result, dict) and "count" in result:
            kwargs.setdefault("count", result["count"])
        self._responses.append(Response(result=result, http_status=200, **kwargs))
        return self

    def fail(self, error: str = "Internal server error", code: int = 1, http_status: int = 400) -> "MemoryTransport":
        """Queue an error response."""
        self._responses.append(Response(code=code, error=error, http_status=http_status))
        return self

    def send(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Response:
        request = Request(method=method, path=path, body=body, query=query, headers=headers)
        with self._lock:
            self.requests.append(request)
            scripted = self._responses.popleft() if self._responses else None
        if scripted is not None:
            return scripted
        if self.handler is not None:
            result = self.handler(request)
            if isinstance(result, Response):
                return result
            return Response.from_payload(result if result is not None else {}, http_status=200)
        return Response(result={}, http_status=200)

    def requests_for(self, method: Optional[str] = None, path: Optional[str] = None) -> List[Request]:
        return [
            r
            for r in self.requests
            if (method is None or r.method.value == method.lower())
            and (path is None or r.path == path)
        ]

    @property
    def last_request(self) -> Optional[Request]:
        return self.requests[-1] if self.requests else None

    def reset(self) -> None:
        with self._lock:
            self.requests.clear()
            self._responses.clear()
