"""
Scalar wire value types and their serialization contract.

Each type accepts the loose forms the store may send (hashes, lists, plain
strings) through `typecast` and emits its `__type` hash through `as_json`.
"""
import base64
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from parsezero.core.pointer import Pointer
from parsezero.core.types import (
    TYPE_BYTES,
    TYPE_DATE,
    TYPE_FIELD,
    TYPE_FILE,
    TYPE_GEOPOINT,
)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a date from a datetime, a date, an ISO-8601 string or a
    `{"__type": "Date", "iso": ...}` hash. Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        value = value.get("iso")
        if value is None:
            return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Cannot parse a date from {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def iso_date(value: datetime) -> str:
    value = parse_date(value).astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def encode_date(value: Any) -> Dict[str, str]:
    return {TYPE_FIELD: TYPE_DATE, "iso": iso_date(value)}


# ---------------------------------------------------------------------------
# GeoPoint
# ---------------------------------------------------------------------------

class GeoPoint:
    type_name = TYPE_GEOPOINT

    def __init__(self, latitude: Any = None, longitude: Any = None):
        self.latitude = 0.0
        self.longitude = 0.0
        if isinstance(latitude, GeoPoint):
            self.latitude, self.longitude = latitude.latitude, latitude.longitude
        elif isinstance(latitude, dict):
            self.latitude = float(latitude.get("latitude", latitude.get("lat", 0.0)))
            self.longitude = float(latitude.get("longitude", latitude.get("lng", 0.0)))
        elif isinstance(latitude, (list, tuple)) and len(latitude) == 2:
            self.latitude, self.longitude = float(latitude[0]), float(latitude[1])
        elif latitude is not None and longitude is not None:
            self.latitude, self.longitude = float(latitude), float(longitude)

    @classmethod
    def typecast(cls, value: Any) -> Optional["GeoPoint"]:
        if value is None or value == "":
            return None
        return value if isinstance(value, GeoPoint) else cls(value)

    def to_list(self):
        return [self.latitude, self.longitude]

    def as_json(self) -> Dict[str, Any]:
        return {TYPE_FIELD: TYPE_GEOPOINT, "latitude": self.latitude, "longitude": self.longitude}

    def __eq__(self, other):
        if not isinstance(other, GeoPoint):
            return NotImplemented
        return self.latitude == other.latitude and self.longitude == other.longitude

    def __hash__(self):
        return hash((self.latitude, self.longitude))

    def __repr__(self):
        return f"<GeoPoint [{self.latitude},{self.longitude}]>"


# ---------------------------------------------------------------------------
# File
# ---------------------------------------------------------------------------

class File:
    """A reference to a file stored by the remote store. Uploading is not handled here."""

    type_name = TYPE_FILE

    def __init__(self, name: Any = None, url: Optional[str] = None):
        self.name = None
        self.url = url
        if isinstance(name, File):
            self.name, self.url = name.name, name.url
        elif isinstance(name, dict):
            self.name = name.get("name")
            self.url = name.get("url", url)
        elif isinstance(name, str) and name.startswith("http") and url is None:
            self.url = name
            self.name = name.rsplit("/", 1)[-1]
        else:
            self.name = name

    @classmethod
    def typecast(cls, value: Any) -> Optional["File"]:
        if value is None or value == "":
            return None
        return value if isinstance(value, File) else cls(value)

    def as_json(self) -> Dict[str, Any]:
        return {TYPE_FIELD: TYPE_FILE, "name": self.name, "url": self.url}

    def __eq__(self, other):
        if not isinstance(other, File):
            return NotImplemented
        return self.url == other.url and self.name == other.name

    def __hash__(self):
        return hash((self.name, self.url))

    def __repr__(self):
        return f"<File {self.name!r} url={self.url!r}>"


# ---------------------------------------------------------------------------
# Bytes
# ---------------------------------------------------------------------------

class Bytes:
    type_name = TYPE_BYTES

    def __init__(self, value: Any = ""):
        if isinstance(value, Bytes):
            self.base64 = value.base64
        elif isinstance(value, dict):
            self.base64 = value.get("base64", "")
        elif isinstance(value, (bytes, bytearray)):
            self.base64 = base64.b64encode(bytes(value)).decode("ascii")
        else:
            self.base64 = str(value or "")

    @classmethod
    def typecast(cls, value: Any) -> Optional["Bytes"]:
        if value is None or value == "":
            return None
        return value if isinstance(value, Bytes) else cls(value)

    def decoded(self) -> bytes:
        return base64.b64decode(self.base64 or "")

    def as_json(self) -> Dict[str, Any]:
        return {TYPE_FIELD: TYPE_BYTES, "base64": self.base64}

    def __eq__(self, other):
        if not isinstance(other, Bytes):
            return NotImplemented
        return self.base64 == other.base64

    def __hash__(self):
        return hash(self.base64)


# ---------------------------------------------------------------------------
# ACL
# ---------------------------------------------------------------------------

PUBLIC = "*"


class Permission:
    def __init__(self, read: Any = None, write: Any = None):
        if isinstance(read, dict):
            self.read = bool(read.get("read"))
            self.write = bool(read.get("write"))
        else:
            self.read = bool(read)
            self.write = bool(write)

    def __bool__(self):
        return self.read or self.write

    def __eq__(self, other):
        if not isinstance(other, Permission):
            return NotImplemented
        return self.read == other.read and self.write == other.write

    def as_json(self) -> Dict[str, bool]:
        h = {}
        if self.read:
            h["read"] = True
        if self.write:
            h["write"] = True
        return h


class ACL:
    """
    Access control list keyed by user id, "role:<name>" or "*".

    Changes are reported to the owning record through its `will_change`
    hook so that the acl attribute is dirty tracked.
    """

    def __init__(self, permissions: Optional[Dict[str, Any]] = None, owner: Any = None):
        self.permissions: Dict[str, Permission] = {}
        self.owner = None
        if isinstance(permissions, ACL):
            permissions = permissions.as_json()
        for key, value in (permissions or {}).items():
            self.apply(key, value)
        self.owner = owner

    @classmethod
    def typecast(cls, value: Any, owner: Any = None) -> Optional["ACL"]:
        if value is None:
            return None
        return cls(value, owner=owner)

    @classmethod
    def everyone(cls, read: bool = True, write: bool = True) -> "ACL":
        acl = cls()
        acl.apply(PUBLIC, read, write)
        return acl

    def will_change(self):
        hook = getattr(self.owner, "will_change", None)
        if callable(hook):
            hook("acl")

    def apply(self, key: Any, read: Any = None, write: Any = None) -> Dict[str, Permission]:
        if isinstance(key, Pointer):
            key = key.id
        if not key:
            raise ValueError("Invalid ACL key: must be an objectId, a role or '*'")
        key = PUBLIC if key == "public" else str(key)
        permission = read if isinstance(read, Permission) else Permission(read, write)
        if self.permissions.get(key) != permission:
            self.will_change()
            self.permissions[key] = permission
        return self.permissions

    def apply_role(self, name: str, read: Any = None, write: Any = None):
        return self.apply(f"role:{name}", read, write)

    def delete(self, key: Any):
        if isinstance(key, Pointer):
            key = key.id
        if key in self.permissions:
            self.will_change()
            del self.permissions[key]

    def snapshot(self) -> "ACL":
        return ACL(self.as_json())

    def as_json(self) -> Dict[str, Dict[str, bool]]:
        return {k: v.as_json() for k, v in self.permissions.items() if v}

    def __eq__(self, other):
        if isinstance(other, ACL):
            return self.as_json() == other.as_json()
        if isinstance(other, dict):
            return self.as_json() == other
        return NotImplemented

    def __repr__(self):
        return f"ACL({self.as_json()!r})"


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def encode_value(value: Any) -> Any:
    """Resolve local values into their JSON wire representation."""
    if isinstance(value, Pointer):
        return value.pointer().as_json()
    if hasattr(value, "as_json"):
        return value.as_json()
    if isinstance(value, (datetime, date)):
        return encode_date(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [encode_value(item) for item in value]
    return value
