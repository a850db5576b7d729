import logging
from typing import Any, Dict, Optional

import httpx

from parsezero.core.classes import Response
from parsezero.core.interfaces import AbstractTransport
from parsezero.core.types import HttpMethod

logger = logging.getLogger(__name__)

APP_ID_HEADER = "X-Parse-Application-Id"
API_KEY_HEADER = "X-Parse-REST-API-Key"


class HTTPTransport(AbstractTransport):
    """Sends requests to the store over httpx."""

    def __init__(
        self,
        url: str,
        app_id: Optional[str] = None,
        api_key: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = url.rstrip("/")
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        if app_id:
            self.headers[APP_ID_HEADER] = app_id
        if api_key:
            self.headers[API_KEY_HEADER] = api_key
        self.timeout = timeout
        self._http = http_client or httpx.Client(timeout=timeout)

    def send(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Response:
        method = HttpMethod(str(method).lower())
        url = f"{self.base_url}/{path.lstrip('/')}"
        request_headers = {**self.headers, **(headers or {})}
        json_body = body if method in (HttpMethod.POST, HttpMethod.PUT) else None
        logger.debug(f"{method.value.upper()} {url}")
        try:
            resp = self._http.request(
                method.value.upper(),
                url,
                json=json_body,
                params=query,
                headers=request_headers,
            )
        except httpx.HTTPError as exc:
            logger.error(f"{method.value.upper()} {url} failed: {exc}")
            return Response.failure(str(exc))

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        if resp.status_code >= 400 and not (isinstance(payload, dict) and "error" in payload):
            return Response(
                code=resp.status_code,
                error=resp.reason_phrase or f"HTTP {resp.status_code}",
                http_status=resp.status_code,
            )
        return Response.from_payload(payload, http_status=resp.status_code)

    def close(self) -> None:
        self._http.close()
