from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from parsezero.core.classes import Request, Response


class AbstractTransport(ABC):
    """
    The network boundary of the client. Implementations send one request to
    the store and return the interpreted `Response`; transport failures are
    reported as error responses rather than raised.
    """

    @abstractmethod
    def send(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Response:
        """
        Send a request to the store.

        Args:
            method: One of get, post, put or delete.
            path: The path relative to the server url, e.g. "classes/Song/abc".
            body: JSON body for post and put requests.
            query: Query string parameters.
            headers: Extra headers for this request only.

        Returns:
            Response: The interpreted response.
        """
        pass

    def close(self) -> None:
        pass


class AbstractClient(ABC):
    """The object and query operations the record layer relies on."""

    @abstractmethod
    def create_object(self, class_name: str, body: Dict[str, Any], session_token: Optional[str] = None) -> Response:
        pass

    @abstractmethod
    def update_object(self, class_name: str, object_id: str, body: Dict[str, Any], session_token: Optional[str] = None) -> Response:
        pass

    @abstractmethod
    def delete_object(self, class_name: str, object_id: str, session_token: Optional[str] = None) -> Response:
        pass

    @abstractmethod
    def fetch_object(self, class_name: str, object_id: str, session_token: Optional[str] = None) -> Response:
        pass

    @abstractmethod
    def find_objects(self, class_name: str, query: Dict[str, Any], session_token: Optional[str] = None) -> Response:
        pass

    @abstractmethod
    def batch_request(self, requests: List[Request], session_token: Optional[str] = None) -> List[Response]:
        """
        Send prepared requests through the batch endpoint.

        Returns:
            List[Response]: One response per request, in order.
        """
        pass
