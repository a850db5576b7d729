import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from parsezero.core.types import DataKind, HttpMethod

# Parse-style error codes used by the client
OBJECT_NOT_FOUND = 101
CONNECTION_FAILED = 100
INVALID_SESSION_TOKEN = 209

# Envelope keys of the batch endpoint reply
BATCH_SUCCESS = "success"
BATCH_ERROR = "error"


class Request(BaseModel):
    """
    An outbound request against the store, tagged with the identity of the
    record that produced it so batched responses can be correlated.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    method: HttpMethod
    path: str
    body: Optional[Dict[str, Any]] = None
    query: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    tag: Optional[Any] = None

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, value):
        if isinstance(value, str):
            value = value.lower()
        return value

    def signature(self) -> Dict[str, Any]:
        return {"method": self.method.value.upper(), "path": self.path, "body": self.body}


class Response(BaseModel):
    """
    The interpreted reply of the store. A response is successful when it
    carries neither an error code nor an error message.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    code: Optional[int] = None
    error: Optional[str] = None
    result: Any = None
    http_status: Optional[int] = None
    count: Optional[int] = None
    request: Optional[Request] = None

    @classmethod
    def from_payload(cls, payload: Any, http_status: Optional[int] = None) -> "Response":
        """Build a response from the decoded JSON body of the store."""
        if isinstance(payload, dict) and ("error" in payload or "code" in payload):
            error = payload.get("error")
            return cls(
                code=payload.get("code") or http_status,
                error=error if isinstance(error, str) or error is None else str(error),
                http_status=http_status,
            )
        count = None
        if isinstance(payload, dict) and "count" in payload:
            count = payload.get("count")
        return cls(result=payload, http_status=http_status, count=count)

    @classmethod
    def failure(cls, error: str, code: Optional[int] = None, http_status: Optional[int] = None):
        return cls(code=code or CONNECTION_FAILED, error=error, http_status=http_status)

    @property
    def success(self) -> bool:
        return self.code is None and self.error is None

    @property
    def is_error(self) -> bool:
        return not self.success

    @property
    def object_not_found(self) -> bool:
        return self.code == OBJECT_NOT_FOUND

    @property
    def results(self) -> List[Any]:
        """The list of result objects, whether the store sent a list or a `results` envelope."""
        if self.is_error or self.result is None:
            return []
        if isinstance(self.result, dict) and "results" in self.result:
            return list(self.result["results"] or [])
        if isinstance(self.result, list):
            return self.result
        return [self.result]

    @property
    def is_batch(self) -> bool:
        return self.success and isinstance(self.result, list)

    def batch_responses(self) -> List["Response"]:
        """
        Split the reply of the batch endpoint into one response per batched
        request. Each entry is a `{"success": ...}` or `{"error": ...}` envelope.
        """
        if not self.is_batch:
            return [self]
        responses = []
        for entry in self.result:
            if isinstance(entry, dict) and BATCH_ERROR in entry:
                error = entry[BATCH_ERROR]
                payload = error if isinstance(error, dict) else {"error": str(error)}
                responses.append(Response.from_payload(payload))
            elif isinstance(entry, dict) and BATCH_SUCCESS in entry:
                responses.append(Response(result=entry[BATCH_SUCCESS]))
            else:
                responses.append(Response(result=entry))
        return responses

    def __bool__(self):
        return self.success


class SessionInfo(BaseModel):
    session_token: str = Field(min_length=1)


@dataclass
class PropertyDefinition:
    """One row of a record type's schema table."""

    name: str
    kind: Union[DataKind, Any]
    field: str
    required: bool = False
    default: Union[Any, Callable[[], Any]] = None
    enum: Optional[List[Any]] = None
    target: Optional[str] = None
    through: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_base(self) -> bool:
        return bool(self.metadata.get("base"))

    @property
    def is_reference(self) -> bool:
        return self.kind in (DataKind.POINTER, DataKind.RELATION) or self.through is not None

    def default_value(self) -> Any:
        if callable(self.default):
            return self.default()
        return copy.deepcopy(self.default)
