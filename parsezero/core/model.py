from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from parsezero.core.actions import Actions
from parsezero.core.changes import ChangeSet
from parsezero.core.collections import CollectionProxy, RelationCollectionProxy
from parsezero.core.config import config
from parsezero.core.exceptions import ConfigError
from parsezero.core.pointer import Pointer
from parsezero.core.properties import (
    INVALID,
    BaseProperty,
    Property,
    Schema,
    format_operation,
    format_value,
    is_operation,
)
from parsezero.core.query import Query, _scope_result
from parsezero.core.types import (
    CLASS_NAME,
    CREATED_AT,
    DELETE_OP,
    ID,
    OBJECT_ID,
    TYPE_FIELD,
    UPDATED_AT,
    DataKind,
)
from parsezero.core.values import encode_value

logger = logging.getLogger(__name__)

HOOK_EVENTS = ("before_save", "after_save", "before_destroy", "after_destroy")
IDENTIFIER_KEYS = (ID, OBJECT_ID)


class Record(Actions, Pointer):
    """
    Base class of record types.

        @registry.register
        class Song(Record):
            title = Property(DataKind.STRING, required=True)
            plays = Property(DataKind.INTEGER, default=0)
            artist = BelongsTo("Artist")
            fans = HasMany("User", through="relation")

    Every subclass gets its own copy of its parent's schema table; the base
    fields below are declared once, by this class.
    """

    class_name: str = "Record"
    client: Any = None
    raise_on_save_failure: Optional[bool] = None
    schema: Schema
    _registry = None
    _scopes: Dict[str, Callable[..., Query]] = {}
    _hooks: Dict[str, List[Callable]] = {}

    id = Property(DataKind.STRING, field=OBJECT_ID, base=True)
    created_at = Property(DataKind.DATE, field=CREATED_AT, base=True)
    updated_at = Property(DataKind.DATE, field=UPDATED_AT, base=True)
    acl = Property(DataKind.ACL, field="ACL")

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if "class_name" not in cls.__dict__:
            cls.class_name = cls.__name__
        cls.schema = cls.schema.copy(cls.__name__)
        cls._scopes = dict(cls._scopes)
        cls._hooks = {event: list(fns) for event, fns in cls._hooks.items()}
        for name, attr in list(cls.__dict__.items()):
            if isinstance(attr, BaseProperty):
                cls.schema.declare(attr.definition(name))

    def __init__(self, attributes: Union[Dict[str, Any], str, Pointer, None] = None, **kwargs):
        self._values: Dict[str, Any] = {}
        self._changes = ChangeSet()
        self._fetch_lock = False
        self._session_token: Optional[str] = None
        if isinstance(attributes, Pointer):
            attributes = {ID: attributes.id}
        elif isinstance(attributes, str):
            attributes = {ID: attributes}
        attributes = {**(attributes or {}), **kwargs}
        pristine = bool(attributes.get(OBJECT_ID) or attributes.get(ID))
        self.apply_attributes(attributes, track=not pristine)
        # defaults would turn a pointer into a partially fetched record
        if not self.is_pointer:
            self.apply_defaults()
        if pristine:
            self.clear_changes()

    # -- Type level configuration --

    @classmethod
    def registry(cls):
        return cls._registry if cls._registry is not None else config.registry

    @classmethod
    def connection(cls):
        client = cls.client if cls.client is not None else config.client
        if client is None:
            raise ConfigError(
                f"No client configured for {cls.__name__}. Call parsezero.client.configure() first."
            )
        return client

    @classmethod
    def declare(cls, name: str, kind: Any = DataKind.STRING, **options) -> Property:
        """Declare a property after class creation: `Song.declare("plays", "integer")`."""
        prop = Property(kind, **options)
        cls.schema.declare(prop.definition(name))
        prop.__set_name__(cls, name)
        setattr(cls, name, prop)
        return prop

    @classmethod
    def fields(cls) -> Dict[str, Any]:
        return {name: d.kind for name, d in cls.schema.fields.items()}

    @classmethod
    def field_map(cls) -> Dict[str, str]:
        return dict(cls.schema.field_map)

    @classmethod
    def relations(cls) -> Dict[str, str]:
        return cls.schema.relations

    @classmethod
    def on(cls, event: str, fn: Optional[Callable] = None):
        """
        Register a callback for before_save, after_save, before_destroy or
        after_destroy. A before callback returning False aborts the action.
        Usable as a decorator.
        """
        if event not in HOOK_EVENTS:
            raise ValueError(f"Unknown event '{event}', expected one of {HOOK_EVENTS}")

        def decorator(func):
            cls._hooks.setdefault(event, []).append(func)
            return func

        if fn is None:
            return decorator
        return decorator(fn)

    @classmethod
    def scope(cls, name: str, body: Callable[..., Optional[Query]]) -> None:
        """
        Register a named query builder. `body(query, *args, **kwargs)` receives
        a query on this type and returns the refined query.

            Song.scope("popular", lambda q, n=1000: q.where(plays__gte=n))
            Song.popular()
            Song.query().popular(500).order("-plays")
        """
        if name in cls.__dict__ or hasattr(Query, name):
            raise ConfigError(f"Scope '{name}' of {cls.__name__} conflicts with an existing attribute")
        cls._scopes[name] = body

        def scoped(klass, *args, **kwargs):
            query = klass.query()
            return _scope_result(query, body(query, *args, **kwargs), name)

        scoped.__name__ = name
        setattr(cls, name, classmethod(scoped))

    @classmethod
    def scopes(cls) -> Dict[str, Callable[..., Query]]:
        return cls._scopes

    # -- Building and pointers --

    @classmethod
    def build(cls, json: Dict[str, Any]) -> "Record":
        """Decode a server object hash, the result is pristine."""
        body = {k: v for k, v in (json or {}).items() if k not in (TYPE_FIELD, CLASS_NAME)}
        return cls(body)

    @classmethod
    def pointer_to(cls, object_id: Optional[str]) -> Optional[Pointer]:
        if object_id is None:
            return None
        return Pointer(cls.class_name, object_id)

    def pointer(self) -> Pointer:
        return Pointer(self.class_name, self.id)

    @property
    def is_pointer(self) -> bool:
        return (
            self._values.get(ID) is not None
            and self._values.get("created_at") is None
            and self._values.get("updated_at") is None
        )

    @property
    def is_fetched(self) -> bool:
        return not self.is_new and not self.is_pointer

    @property
    def is_new(self) -> bool:
        return not self._values.get(ID)

    @property
    def is_persisted(self) -> bool:
        return not self.is_new and not self.changed and not self.is_pointer

    @property
    def existed(self) -> bool:
        created_at, updated_at = self._values.get("created_at"), self._values.get("updated_at")
        if self.is_new or created_at is None or updated_at is None:
            return False
        return created_at != updated_at

    # -- Generic attribute access --

    @classmethod
    def _definition(cls, name: str):
        definition = cls.schema.fields.get(name)
        if definition is None:
            raise AttributeError(f"{cls.__name__} has no property '{name}'")
        return definition

    def get(self, name: str) -> Any:
        definition = self._definition(name)
        value = self._values.get(name)
        if value is None and self.is_pointer:
            self.autofetch(name)
            value = self._values.get(name)
        if name not in self._values and definition.default is not None:
            self.set(name, definition.default_value(), track=True)
            value = self._values.get(name)
        if definition.kind in (DataKind.ARRAY, DataKind.RELATION) and not isinstance(value, CollectionProxy):
            value = format_value(definition, [], self)
            self._values[name] = value
        return value

    def set(self, name: str, value: Any, track: bool = True) -> None:
        """
        Coerce `value` for the declared kind of `name` and store it. The prior
        value is kept in the change set when tracking and the value differs.
        """
        definition = self._definition(name)
        current = self._values.get(name)
        if is_operation(value) and definition.kind != DataKind.RELATION:
            value = format_operation(definition.kind, current, value)
        if is_operation(value) and definition.kind != DataKind.RELATION:
            # unknown operations are kept as they are
            formatted = value
        else:
            formatted = format_value(definition, value, self, current=current)
        if formatted is INVALID:
            return
        if track and formatted != current:
            self.will_change(name)
        self._values[name] = formatted

    def will_change(self, name: str) -> None:
        self._changes.will_change(name, self._values.get(name))

    def apply_defaults(self) -> None:
        for name, definition in self.schema.fields.items():
            if definition.default is not None and name not in self._values:
                self.get(name)

    def apply_attributes(self, attributes: Optional[Dict[str, Any]], track: bool = False) -> None:
        """Set attributes keyed by attribute name or remote field name."""
        if not isinstance(attributes, dict):
            return
        for key, value in attributes.items():
            definition = self.schema.lookup(key)
            if definition is None:
                continue
            self.set(definition.name, value, track=track)

    def set_attributes(self, attributes: Optional[Dict[str, Any]], track: bool = False) -> None:
        """Like apply_attributes but the identifier is never overwritten."""
        if not isinstance(attributes, dict):
            return
        self.apply_attributes(
            {k: v for k, v in attributes.items() if k not in IDENTIFIER_KEYS}, track=track
        )

    def attributes(self) -> Dict[str, Any]:
        return {name: self._values.get(name) for name in self.schema.fields}

    # -- Dirty tracking --

    @property
    def changed(self) -> List[str]:
        return self._changes.keys()

    def is_changed(self, name: Optional[str] = None) -> bool:
        if name is None:
            return bool(self._changes)
        return name in self._changes

    @property
    def changes(self) -> Dict[str, List[Any]]:
        return self._changes.changes(self._values.get)

    def _proxies(self) -> List[CollectionProxy]:
        return [v for v in self._values.values() if isinstance(v, CollectionProxy)]

    def rollback(self) -> None:
        """Restore the values of changed attributes and clear the change set."""
        for name, original in self._changes.items():
            current = self._values.get(name)
            if isinstance(current, CollectionProxy) and current.changed:
                current.rollback()
            else:
                self.set(name, original, track=False)
        self._changes.discard()

    def clear_changes(self) -> None:
        self._changes.discard()
        for proxy in self._proxies():
            proxy.clear_changes()

    def clear_attribute_changes(self, names: Iterable[str]) -> None:
        names = list(names)
        self._changes.discard(names)
        for name in names:
            value = self._values.get(name)
            if isinstance(value, CollectionProxy):
                value.changes_applied()

    def changes_applied(self) -> None:
        self._changes.discard()
        for proxy in self._proxies():
            proxy.changes_applied()

    def attribute_changes(self) -> bool:
        return any(
            name in self.schema.fields and self.schema.fields[name].kind != DataKind.RELATION
            for name in self.changed
        )

    def relation_changes(self) -> bool:
        return bool(self.relation_updates())

    def relation_updates(self) -> Dict[str, RelationCollectionProxy]:
        """Remote field -> relation proxy, for relation attributes with pending changes."""
        updates = {}
        for name in self.changed:
            definition = self.schema.fields.get(name)
            if definition is None or definition.kind != DataKind.RELATION:
                continue
            proxy = self._values.get(name)
            if isinstance(proxy, RelationCollectionProxy) and proxy.changed:
                updates[definition.field] = proxy
        return updates

    def attribute_updates(self, include_all: bool = False) -> Dict[str, Any]:
        """
        Remote field keyed wire values of the changed attributes. Base fields
        are skipped unless `include_all`, null values become a Delete operation.
        """
        updates = {}
        for name in self.changed:
            definition = self.schema.fields.get(name)
            if definition is None or definition.kind == DataKind.RELATION:
                continue
            if definition.is_base and not include_all:
                continue
            value = self._values.get(name)
            updates[definition.field] = dict(DELETE_OP) if value is None else encode_value(value)
        return updates

    def validate(self) -> List[str]:
        """Messages for missing required attributes and values outside their enumeration."""
        errors = []
        for name, definition in self.schema.fields.items():
            value = self._values.get(name)
            if definition.required and (value is None or value == "" or value == []):
                errors.append(f"{name} can't be blank")
            if definition.enum is not None and value is not None and value not in definition.enum:
                errors.append(f"{name} must be one of {definition.enum!r}, got {value!r}")
        return errors

    @property
    def is_valid(self) -> bool:
        return not self.validate()

    # -- Fetching --

    def fetch(self, force: bool = False) -> "Record":
        """Fetch the body of a pointer in place. Applied values are not tracked."""
        if not force and not self.is_pointer:
            return self
        response = self.connection().fetch_object(
            self.class_name, self.id, session_token=self._session_token
        )
        if response.is_error:
            logger.error(f"Fetch of {self.sig} failed: [{response.code}] {response.error}")
            return self
        self.apply_attributes(response.result, track=False)
        self.clear_changes()
        return self

    def reload(self) -> "Record":
        return self.fetch(force=True)

    def autofetch(self, name: str) -> bool:
        definition = self.schema.fields.get(name)
        if (
            self._fetch_lock
            or not config.autofetch
            or not self.is_pointer
            or definition is None
            or definition.is_base
            or name == "acl"
        ):
            return False
        logger.debug(f"Autofetching {self.sig} for '{name}'")
        self._fetch_lock = True
        try:
            self.fetch()
        finally:
            self._fetch_lock = False
        return True

    # -- Collection proxy hooks --

    def fetch_collection(self, key: str) -> Optional[List[Any]]:
        definition = self.schema.fields.get(key)
        if definition is None or definition.kind != DataKind.RELATION or self.is_new:
            return None
        return self.relation_query(key).results()

    def relation_query(self, key: str) -> Query:
        """The query on the foreign class for the members of relation `key`."""
        definition = self._definition(key)
        target = self.registry().find_class(definition.target) or definition.target
        return (
            Query(target, registry=self.registry())
            .where({(definition.field, "related_to"): self.pointer()})
            .limit("max")
        )

    def commit_relation_updates(self, key: Optional[str] = None) -> bool:
        return self.update_relations()

    # -- Queries --

    @classmethod
    def query(cls, constraints: Optional[Dict[str, Any]] = None, **lookups) -> Query:
        return Query(cls, constraints, **lookups)

    @classmethod
    def where(cls, *args, **lookups) -> Query:
        return cls.query().where(*args, **lookups)

    @classmethod
    def all(cls, constraints: Optional[Dict[str, Any]] = None, **lookups) -> List["Record"]:
        return cls.query(constraints, **lookups).results()

    @classmethod
    def first(cls, constraints: Optional[Dict[str, Any]] = None, **lookups) -> Optional["Record"]:
        return cls.query(constraints, **lookups).first()

    @classmethod
    def count(cls, constraints: Optional[Dict[str, Any]] = None, **lookups) -> int:
        return cls.query(constraints, **lookups).count()

    @classmethod
    def find(cls, object_id: str) -> Optional["Record"]:
        response = cls.connection().fetch_object(cls.class_name, object_id)
        if response.is_error:
            if not response.object_not_found:
                logger.error(f"Find {cls.class_name}#{object_id} failed: [{response.code}] {response.error}")
            return None
        return cls.build(response.result)

    # -- Serialization --

    def as_json(self) -> Dict[str, Any]:
        body = {TYPE_FIELD: "Object", CLASS_NAME: self.class_name}
        for name, definition in self.schema.fields.items():
            value = self._values.get(name)
            if value is None:
                continue
            if isinstance(value, RelationCollectionProxy):
                body[definition.field] = value.as_json()
            else:
                body[definition.field] = encode_value(value)
        return body

    def __repr__(self):
        if self.is_pointer:
            return f"<{type(self).__name__} pointer {self.sig}>"
        return f"<{type(self).__name__} {self.sig} changed={self.changed}>"


Record.schema = Schema("Record")
for _name, _attr in list(Record.__dict__.items()):
    if isinstance(_attr, BaseProperty):
        Record.schema.declare(_attr.definition(_name))
