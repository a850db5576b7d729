import logging
from typing import Any, Dict, List, Optional

from parsezero.core.classes import Request, Response
from parsezero.core.config import config
from parsezero.core.interfaces import AbstractClient, AbstractTransport
from parsezero.core.types import HttpMethod

logger = logging.getLogger(__name__)

SESSION_TOKEN_HEADER = "X-Parse-Session-Token"
CLASSES_PATH = "classes"
BATCH_PATH = "batch"


class Client(AbstractClient):
    """Maps object and query operations to the REST paths of the store."""

    def __init__(self, transport: AbstractTransport, url_prefix: str = ""):
        self.transport = transport
        self.url_prefix = url_prefix.strip("/")

    def _path(self, *parts: str) -> str:
        segments = [self.url_prefix] if self.url_prefix else []
        segments.extend(str(p) for p in parts if p)
        return "/".join(segments)

    def request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, Any]] = None,
        session_token: Optional[str] = None,
    ) -> Response:
        headers = {SESSION_TOKEN_HEADER: session_token} if session_token else None
        response = self.transport.send(method, path, body=body, query=query, headers=headers)
        if response.is_error:
            logger.debug(f"{str(method).upper()} {path} -> [{response.code}] {response.error}")
        return response

    def send_request(self, request: Request, session_token: Optional[str] = None) -> Response:
        """Send a prepared request, e.g. one of `Record.change_requests()`."""
        response = self.request(
            request.method.value,
            self._path(request.path),
            body=request.body,
            query=request.query,
            session_token=session_token,
        )
        return response.model_copy(update={"request": request})

    def batch_request(self, requests: List[Request], session_token: Optional[str] = None) -> List[Response]:
        """
        Send `requests` in one call to the batch endpoint. Returns one response
        per request, in order; a failed call fails every request of the batch.
        """
        body = {"requests": [self._batch_entry(request) for request in requests]}
        response = self.request(
            HttpMethod.POST.value, self._path(BATCH_PATH), body=body, session_token=session_token
        )
        if response.is_batch:
            responses = response.batch_responses()
        elif response.is_error:
            responses = [response] * len(requests)
        else:
            responses = []
        if len(responses) < len(requests):
            logger.warning(f"Batch reply has {len(responses)} entries for {len(requests)} requests")
            missing = Response.failure("No reply for batched request")
            responses = responses + [missing] * (len(requests) - len(responses))
        return [
            reply.model_copy(update={"request": request}) for request, reply in zip(requests, responses)
        ]

    def _batch_entry(self, request: Request) -> Dict[str, Any]:
        entry = {"method": request.method.value.upper(), "path": "/" + self._path(request.path)}
        if request.body is not None:
            entry["body"] = request.body
        return entry

    def create_object(self, class_name: str, body: Dict[str, Any], session_token: Optional[str] = None) -> Response:
        return self.request(
            HttpMethod.POST.value, self._path(CLASSES_PATH, class_name), body=body, session_token=session_token
        )

    def update_object(
        self, class_name: str, object_id: str, body: Dict[str, Any], session_token: Optional[str] = None
    ) -> Response:
        return self.request(
            HttpMethod.PUT.value,
            self._path(CLASSES_PATH, class_name, object_id),
            body=body,
            session_token=session_token,
        )

    def delete_object(self, class_name: str, object_id: str, session_token: Optional[str] = None) -> Response:
        return self.request(
            HttpMethod.DELETE.value, self._path(CLASSES_PATH, class_name, object_id), session_token=session_token
        )

    def fetch_object(self, class_name: str, object_id: str, session_token: Optional[str] = None) -> Response:
        return self.request(
            HttpMethod.GET.value, self._path(CLASSES_PATH, class_name, object_id), session_token=session_token
        )

    def find_objects(self, class_name: str, query: Dict[str, Any], session_token: Optional[str] = None) -> Response:
        return self.request(
            HttpMethod.GET.value, self._path(CLASSES_PATH, class_name), query=query, session_token=session_token
        )


def configure(
    url: Optional[str] = None,
    app_id: Optional[str] = None,
    api_key: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    transport: Optional[AbstractTransport] = None,
    registry: Any = None,
    url_prefix: str = "",
    **settings,
) -> Client:
    """
    Install the default client.

        configure(url="https://api.example.com/parse", app_id="app", api_key="key")

    Extra keyword arguments are passed on to `config.configure`.
    """
    if transport is None:
        if not url:
            raise ValueError("configure() requires a url or a transport")
        from parsezero.client.transport import HTTPTransport

        transport = HTTPTransport(url, app_id=app_id, api_key=api_key, headers=headers)
    client = Client(transport, url_prefix=url_prefix)
    if registry is not None:
        settings["registry"] = registry
    config.configure(client=client, **settings)
    return client
