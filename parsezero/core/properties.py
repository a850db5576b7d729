"""
Declarative property table of record types.

Each record type owns a `Schema`, a table of `PropertyDefinition` rows keyed
by attribute name. Descriptors (`Property`, `BelongsTo`, `HasMany`) only add
rows and forward attribute access to the generic `Record.get`/`Record.set`
entry points, which consult the table to coerce values.
"""
import logging
from typing import Any, Dict, List, Optional

from parsezero.core.classes import PropertyDefinition
from parsezero.core.collections import (
    CollectionProxy,
    PointerCollectionProxy,
    RelationCollectionProxy,
)
from parsezero.core.exceptions import DuplicatePropertyError
from parsezero.core.field_utils import camelize, classify, singularize
from parsezero.core.pointer import Pointer
from parsezero.core.types import (
    CLASS_NAME,
    OP_ADD,
    OP_ADD_RELATION,
    OP_ADD_UNIQUE,
    OP_DELETE,
    OP_FIELD,
    OP_INCREMENT,
    OP_REMOVE,
    OP_REMOVE_RELATION,
    TYPE_FIELD,
    TYPE_RELATION,
    DataKind,
)
from parsezero.core.values import ACL, Bytes, File, GeoPoint, parse_date

logger = logging.getLogger(__name__)

# Returned by format_value for values that must not be stored
INVALID = object()

NUMERIC_KINDS = (DataKind.INTEGER, DataKind.FLOAT)
TRUE_STRINGS = ("true", "yes", "1", "on")
FALSE_STRINGS = ("false", "no", "0", "off", "")


class Schema:
    """The property table of one record type."""

    def __init__(self, owner: str = "") -> None:
        self.owner = owner
        self.fields: Dict[str, PropertyDefinition] = {}
        # attribute name -> remote field name
        self.field_map: Dict[str, str] = {}
        # remote field name -> attribute name
        self.remote: Dict[str, str] = {}

    def copy(self, owner: str) -> "Schema":
        schema = Schema(owner)
        schema.fields = dict(self.fields)
        schema.field_map = dict(self.field_map)
        schema.remote = dict(self.remote)
        return schema

    def declare(self, definition: PropertyDefinition) -> PropertyDefinition:
        if definition.name in self.fields:
            raise DuplicatePropertyError(
                f"Property {self.owner}#{definition.name} already defined with "
                f"kind {_kind_name(self.fields[definition.name].kind)}"
            )
        if definition.field in self.remote:
            raise DuplicatePropertyError(
                f"Remote field {self.owner}#{definition.field} of '{definition.name}' "
                f"conflicts with property '{self.remote[definition.field]}'"
            )
        self.fields[definition.name] = definition
        self.field_map[definition.name] = definition.field
        self.remote[definition.field] = definition.name
        return definition

    def lookup(self, key: str) -> Optional[PropertyDefinition]:
        """Find a definition by attribute name or remote field name."""
        definition = self.fields.get(key)
        if definition is None and key in self.remote:
            definition = self.fields[self.remote[key]]
        return definition

    @property
    def base_keys(self) -> List[str]:
        return [name for name, d in self.fields.items() if d.is_base]

    @property
    def relations(self) -> Dict[str, str]:
        return {name: d.target for name, d in self.fields.items() if d.kind == DataKind.RELATION}

    @property
    def references(self) -> Dict[str, str]:
        return {
            name: d.target
            for name, d in self.fields.items()
            if d.target and d.kind != DataKind.RELATION
        }

    def __contains__(self, key: str) -> bool:
        return self.lookup(key) is not None

    def __iter__(self):
        return iter(self.fields.values())


def _kind_name(kind: Any) -> str:
    return kind.value if isinstance(kind, DataKind) else getattr(kind, "__name__", str(kind))


def _target_name(target: Any) -> Optional[str]:
    if target is None or isinstance(target, str):
        return target
    return getattr(target, "class_name", None) or target.__name__


def resolve_kind(kind: Any) -> Any:
    if isinstance(kind, DataKind):
        return kind
    if isinstance(kind, str):
        try:
            return DataKind(kind.lower())
        except ValueError:
            logger.warning(f"Unknown data kind '{kind}', values will pass through unchanged")
            return kind
    return kind


class BaseProperty:
    """Descriptor forwarding attribute access to the record's schema entry points."""

    def __init__(self, field: Optional[str] = None, required: bool = False):
        self.field = field
        self.required = required
        self.name: Optional[str] = None

    def __set_name__(self, owner, name):
        self.name = name

    def definition(self, name: str) -> PropertyDefinition:
        raise NotImplementedError

    def __get__(self, instance, owner):
        if instance is None:
            return self
        return instance.get(self.name)

    def __set__(self, instance, value):
        instance.set(self.name, value)


class Property(BaseProperty):
    """
    A typed attribute.

        class Song(Record):
            title = Property(DataKind.STRING, required=True)
            plays = Property("integer", default=0)
            genre = Property(enum=["rock", "jazz"])
    """

    def __init__(
        self,
        kind: Any = DataKind.STRING,
        field: Optional[str] = None,
        required: bool = False,
        default: Any = None,
        enum: Optional[List[Any]] = None,
        base: bool = False,
    ):
        super().__init__(field=field, required=required)
        self.kind = resolve_kind(kind)
        self.default = default
        self.enum = list(enum) if enum is not None else None
        self.base = base

    def definition(self, name: str) -> PropertyDefinition:
        return PropertyDefinition(
            name=name,
            kind=self.kind,
            field=self.field or camelize(name),
            required=self.required,
            default=self.default,
            enum=self.enum,
            metadata={"base": self.base},
        )


class BelongsTo(BaseProperty):
    """A pointer to a single record of another type, `song` targets "Song" by default."""

    def __init__(self, target: Any = None, field: Optional[str] = None, required: bool = False):
        super().__init__(field=field, required=required)
        self.target = target

    def definition(self, name: str) -> PropertyDefinition:
        return PropertyDefinition(
            name=name,
            kind=DataKind.POINTER,
            field=self.field or camelize(name),
            required=self.required,
            target=_target_name(self.target) or classify(name),
        )


class HasMany(BaseProperty):
    """
    A collection of records of another type, stored either inline as an
    array of pointers (`through="array"`) or in a join table
    (`through="relation"`). `songs` targets "Song" by default.
    """

    THROUGH = ("array", "relation")

    def __init__(
        self,
        target: Any = None,
        through: str = "array",
        field: Optional[str] = None,
        required: bool = False,
    ):
        super().__init__(field=field, required=required)
        if through not in self.THROUGH:
            raise ValueError(f"HasMany through must be one of {self.THROUGH}, got '{through}'")
        self.target = target
        self.through = through

    def definition(self, name: str) -> PropertyDefinition:
        kind = DataKind.RELATION if self.through == "relation" else DataKind.ARRAY
        return PropertyDefinition(
            name=name,
            kind=kind,
            field=self.field or camelize(name),
            required=self.required,
            target=_target_name(self.target) or classify(singularize(name)),
            through=self.through,
        )


def is_operation(value: Any) -> bool:
    return isinstance(value, dict) and OP_FIELD in value


def _current_list(current: Any) -> List[Any]:
    if isinstance(current, CollectionProxy):
        return current.snapshot()
    if isinstance(current, (list, tuple)):
        return list(current)
    return []


def format_operation(kind: Any, current: Any, value: Dict[str, Any]) -> Any:
    """
    Resolve a server style operation hash against the current value.
    Unknown operations, and operations that do not apply to `kind`, are
    returned unchanged.
    """
    op = value.get(OP_FIELD)
    if op == OP_DELETE:
        return None
    if op == OP_INCREMENT and kind in NUMERIC_KINDS:
        amount = value.get("amount") or 0
        if isinstance(current, bool) or not isinstance(current, (int, float)):
            current = 0
        return current + amount
    if kind == DataKind.ARRAY and op in (OP_ADD, OP_REMOVE, OP_ADD_UNIQUE):
        items = _current_list(current)
        objects = value.get("objects") or []
        if op == OP_ADD:
            return items + list(objects)
        if op == OP_REMOVE:
            return [item for item in items if item not in objects]
        for obj in objects:
            if obj not in items:
                items.append(obj)
        return items
    return value


def _to_integer(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_boolean(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
    return bool(value)


def _decode_items(owner: Any, items: Any, class_name: Optional[str]) -> List[Any]:
    items = [item for item in (items or []) if item is not None]
    return owner.registry().decode_objects(items, class_name=class_name)


def _format_pointer(definition: PropertyDefinition, value: Any, owner: Any) -> Any:
    if value is None or isinstance(value, Pointer):
        return value
    if isinstance(value, dict) and (value.get(CLASS_NAME) or value.get("objectId")):
        decoded = owner.registry().build(value, class_name=None if value.get(CLASS_NAME) else definition.target)
        if decoded is not None:
            return decoded
    logger.warning(
        f"[{type(owner).__name__}] Invalid value {value!r} for pointer field "
        f"'{definition.name}', expected a {definition.target} record or pointer"
    )
    return INVALID


def _format_array(definition: PropertyDefinition, value: Any, owner: Any) -> Any:
    if value is None:
        return None
    proxy_class = PointerCollectionProxy if definition.through == "array" else CollectionProxy
    if isinstance(value, CollectionProxy):
        value.delegate = owner
        value.key = definition.name
        return value
    if not isinstance(value, (list, tuple, set)):
        value = [value]
    items = [item for item in value if item is not None]
    if proxy_class is PointerCollectionProxy:
        items = [i for i in items if isinstance(i, Pointer)] + _decode_items(
            owner, [i for i in items if not isinstance(i, Pointer)], definition.target
        )
    proxy = proxy_class(items, key=definition.name, parse_class=definition.target)
    proxy.delegate = owner
    return proxy


def _format_relation(definition: PropertyDefinition, value: Any, owner: Any, current: Any) -> Any:
    parse_class = definition.target
    if isinstance(value, RelationCollectionProxy):
        value.delegate = owner
        value.key = definition.name
        return value
    if value is None or (is_operation(value) and value.get(OP_FIELD) == OP_DELETE):
        proxy = RelationCollectionProxy([], key=definition.name, parse_class=parse_class)
    elif isinstance(value, dict) and value.get(TYPE_FIELD) == TYPE_RELATION:
        parse_class = value.get(CLASS_NAME) or parse_class
        objects = _decode_items(owner, value.get("objects"), parse_class)
        proxy = RelationCollectionProxy(objects, key=definition.name, parse_class=parse_class)
    elif is_operation(value) and value.get(OP_FIELD) in (OP_ADD_RELATION, OP_REMOVE_RELATION):
        parse_class = value.get(CLASS_NAME) or parse_class
        objects = _decode_items(owner, value.get("objects"), parse_class)
        items = _current_list(current)
        if value[OP_FIELD] == OP_ADD_RELATION:
            items.extend(obj for obj in objects if obj not in items)
        else:
            items = [item for item in items if item not in objects]
        proxy = RelationCollectionProxy(key=definition.name, parse_class=parse_class)
        proxy._collection = items
        proxy.loaded = current.loaded if isinstance(current, CollectionProxy) else bool(items)
    elif isinstance(value, (list, tuple)):
        objects = _decode_items(
            owner, [v for v in value if not isinstance(v, Pointer)], parse_class
        )
        objects = [v for v in value if isinstance(v, Pointer)] + objects
        proxy = RelationCollectionProxy(objects, key=definition.name, parse_class=parse_class)
    else:
        logger.warning(
            f"[{type(owner).__name__}] Invalid value {value!r} for relation field "
            f"'{definition.name}', expected a list or a relation"
        )
        return INVALID
    proxy.delegate = owner
    return proxy


SCALAR_TYPES = {
    DataKind.GEOPOINT: GeoPoint,
    DataKind.FILE: File,
    DataKind.BYTES: Bytes,
}


def format_value(definition: PropertyDefinition, value: Any, owner: Any, current: Any = None) -> Any:
    """
    Coerce `value` into the canonical local form of the definition's kind.
    Returns `INVALID` for values a reference field cannot hold.
    """
    kind = definition.kind
    if kind == DataKind.RELATION:
        return _format_relation(definition, value, owner, current)
    if kind == DataKind.ARRAY:
        return _format_array(definition, value, owner)
    if value is None:
        return None
    if kind == DataKind.STRING:
        return str(value)
    if kind == DataKind.INTEGER:
        return _to_integer(value)
    if kind == DataKind.FLOAT:
        return _to_float(value)
    if kind == DataKind.BOOLEAN:
        return _to_boolean(value)
    if kind == DataKind.DATE:
        return parse_date(value)
    if kind == DataKind.OBJECT:
        return value
    if kind == DataKind.POINTER:
        return _format_pointer(definition, value, owner)
    if kind == DataKind.ACL:
        return ACL.typecast(value, owner=owner)
    if kind in SCALAR_TYPES:
        return SCALAR_TYPES[kind].typecast(value)
    if hasattr(kind, "typecast"):
        return kind.typecast(value)
    logger.warning(
        f"[{type(owner).__name__}] Unknown kind {kind!r} for '{definition.name}', "
        f"value passes through unchanged"
    )
    return value
