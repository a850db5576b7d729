"""
Change tracked collection proxies for array and relation attributes.

A proxy wraps the ordered list of an attribute and reports changes to its
owning record (the delegate) through hooks named after the record methods:

    fetch_collection(key)         lazy load of the list
    will_change(key)              the list is about to change
    relation_query(key)           query on the foreign class of a relation
    commit_relation_updates(key)  persist pending relation changes
    op_add(key, items) ...        immediate atomic operations

A proxy used without a delegate, or with a delegate lacking a hook, treats
the forwarded call as a no-op.
"""
import logging
from typing import Any, Iterable, Iterator, List, Optional

from parsezero.core.pointer import Pointer, to_pointers
from parsezero.core.values import encode_value

logger = logging.getLogger(__name__)

_UNSET = object()


def _flatten(items: Iterable[Any]) -> List[Any]:
    flat = []
    for item in items:
        if isinstance(item, (list, tuple, CollectionProxy)):
            flat.extend(item)
        else:
            flat.append(item)
    return flat


def _without(items: List[Any], item: Any) -> List[Any]:
    return [existing for existing in items if existing != item]


class CollectionProxy:
    """An ordered, change tracked list backing an array attribute."""

    def __init__(
        self,
        collection: Optional[Iterable[Any]] = None,
        delegate: Any = None,
        key: Optional[str] = None,
        parse_class: Optional[str] = None,
    ):
        self.delegate = delegate
        self.key = key
        self.parse_class = parse_class
        self._collection: List[Any] = list(collection) if isinstance(collection, (list, tuple)) else []
        self.loaded = len(self._collection) > 0
        self._original: Any = _UNSET

    # -- Delegate forwarding --

    def forward(self, method: str, *args) -> Any:
        hook = getattr(self.delegate, method, None)
        if not callable(hook):
            return None
        return hook(*args)

    def has_hook(self, method: str) -> bool:
        return callable(getattr(self.delegate, method, None))

    # -- Loading --

    def _needs_load(self) -> bool:
        return not self._collection and not self.loaded

    def _merge_loaded(self, fetched: List[Any]) -> List[Any]:
        return fetched

    @property
    def collection(self) -> List[Any]:
        if self._needs_load():
            fetched = self.forward("fetch_collection", self.key)
            if fetched is not None:
                self._collection = self._merge_loaded(list(fetched))
            self.loaded = True
        return self._collection

    @collection.setter
    def collection(self, items: Iterable[Any]) -> None:
        self.notify_will_change()
        self._collection = list(items)
        self.loaded = True

    def set_collection(self, items: Iterable[Any]) -> None:
        """Replace the list without change tracking."""
        self._collection = list(items)
        self.loaded = True

    def reset(self) -> None:
        self.loaded = False
        self._collection = []

    def reload(self) -> List[Any]:
        self.reset()
        return self.collection

    # -- Change tracking --

    def notify_will_change(self) -> None:
        if self._original is _UNSET:
            self._original = list(self._collection)
        self.forward("will_change", self.key)

    @property
    def changed(self) -> bool:
        return self._original is not _UNSET

    def snapshot(self) -> List[Any]:
        return list(self._collection)

    def rollback(self) -> None:
        if self._original is not _UNSET:
            self._collection = list(self._original)
        self._original = _UNSET

    def changes_applied(self) -> None:
        self._original = _UNSET

    clear_changes = changes_applied

    # -- Local edits --

    def _prepare(self, items: Iterable[Any]) -> List[Any]:
        return _flatten(items)

    def add(self, *items) -> List[Any]:
        items = self._prepare(items)
        if items:
            self.notify_will_change()
            self.collection.extend(items)
        return self._collection

    push = add
    append = add

    def add_unique(self, *items) -> List[Any]:
        items = self._prepare(items)
        if not items:
            return self._collection
        self.notify_will_change()
        collection = self.collection
        for item in items:
            if item not in collection:
                collection.append(item)
        return self._collection

    push_unique = add_unique

    def remove(self, *items) -> List[Any]:
        items = _flatten(items)
        if items:
            self.notify_will_change()
            collection = self.collection
            for item in items:
                collection = _without(collection, item)
            self._collection = collection
        return self._collection

    delete = remove

    def clear(self) -> None:
        self.notify_will_change()
        self._collection = []
        self.loaded = True

    # -- Immediate atomic operations --

    def _atomic(self, method: str, items: Optional[List[Any]] = None) -> Any:
        if not self.has_hook(method):
            return False
        if items is None:
            result = self.forward(method, self.key)
        else:
            result = self.forward(method, self.key, items)
        self.reset()
        return result

    def atomic_add(self, *items) -> Any:
        """Send an `Add` operation for `items` right away and reset the proxy."""
        return self._atomic("op_add", _flatten(items))

    def atomic_add_unique(self, *items) -> Any:
        return self._atomic("op_add_unique", _flatten(items))

    def atomic_remove(self, *items) -> Any:
        return self._atomic("op_remove", _flatten(items))

    def atomic_destroy(self) -> Any:
        """Delete the whole field remotely and reset the proxy."""
        return self._atomic("op_destroy")

    # -- List protocol --

    def __iter__(self) -> Iterator[Any]:
        return iter(self.collection)

    def __len__(self) -> int:
        return len(self.collection)

    def __contains__(self, item: Any) -> bool:
        return item in self.collection

    def __getitem__(self, index):
        return self.collection[index]

    def __eq__(self, other):
        if isinstance(other, CollectionProxy):
            return self._collection == other._collection
        if isinstance(other, list):
            return self._collection == other
        return NotImplemented

    __hash__ = None

    def __or__(self, other) -> List[Any]:
        result = list(self.collection)
        for item in _flatten([other]):
            if item not in result:
                result.append(item)
        return result

    def __and__(self, other) -> List[Any]:
        others = _flatten([other])
        return [item for item in self.collection if item in others]

    def __sub__(self, other) -> List[Any]:
        others = _flatten([other])
        return [item for item in self.collection if item not in others]

    def __add__(self, other) -> List[Any]:
        return list(self.collection) + _flatten([other])

    def count(self) -> int:
        return len(self.collection)

    def first(self) -> Any:
        collection = self.collection
        return collection[0] if collection else None

    def last(self) -> Any:
        collection = self.collection
        return collection[-1] if collection else None

    def to_list(self) -> List[Any]:
        return list(self.collection)

    def as_json(self) -> List[Any]:
        return encode_value(list(self.collection))

    def __repr__(self):
        return f"<{type(self).__name__} changed={self.changed} {self._collection!r}>"


class PointerCollectionProxy(CollectionProxy):
    """A collection of references to records stored inline as an array of pointers."""

    def _registry(self):
        hook = getattr(self.delegate, "registry", None)
        registry = hook() if callable(hook) else None
        if registry is None:
            from parsezero.core.config import config

            registry = config.registry
        return registry

    def _prepare(self, items: Iterable[Any]) -> List[Any]:
        prepared = []
        registry = None
        for item in _flatten(items):
            if isinstance(item, Pointer):
                prepared.append(item)
                continue
            if isinstance(item, dict):
                registry = registry or self._registry()
                decoded = registry.decode_objects([item], class_name=self.parse_class)
                if decoded:
                    prepared.extend(decoded)
                    continue
            logger.warning(
                f"Dropping {item!r} from '{self.key}': not a record or pointer"
            )
        return prepared

    def atomic_add(self, *items) -> Any:
        return self._atomic("op_add", to_pointers(self._prepare(items)))

    def atomic_add_unique(self, *items) -> Any:
        return self._atomic("op_add_unique", to_pointers(self._prepare(items)))

    def atomic_remove(self, *items) -> Any:
        return self._atomic("op_remove", to_pointers(self._prepare(items)))

    def pointers(self) -> List[Pointer]:
        return to_pointers(self.collection)

    def fetch(self) -> List[Any]:
        """Fetch the body of every unfetched record of the collection."""
        for item in self.collection:
            if getattr(item, "is_pointer", False) and hasattr(item, "fetch"):
                item.fetch()
        return self._collection

    def as_json(self) -> List[Any]:
        return [pointer.as_json() for pointer in self.pointers()]


class RelationCollectionProxy(PointerCollectionProxy):
    """
    A collection backed by a join table. Local edits are kept as pending
    additions and removals until committed; an item is never pending in both.
    """

    def __init__(self, collection=None, delegate=None, key=None, parse_class=None):
        super().__init__(collection, delegate=delegate, key=key, parse_class=parse_class)
        self.additions: List[Any] = []
        self.removals: List[Any] = []

    def _needs_load(self) -> bool:
        return not self.loaded

    def _merge_loaded(self, fetched: List[Any]) -> List[Any]:
        merged = [item for item in fetched if item not in self.removals]
        merged.extend(item for item in self.additions if item not in merged)
        return merged

    @property
    def changed(self) -> bool:
        return bool(self.additions or self.removals) or super().changed

    def add(self, *items) -> List[Any]:
        items = self._prepare(items)
        if not items:
            return self._collection
        self.notify_will_change()
        for item in items:
            if item in self.removals:
                self.removals = _without(self.removals, item)
            elif item not in self.additions:
                self.additions.append(item)
            if item not in self._collection:
                self._collection.append(item)
        return self._collection

    push = add
    append = add
    add_unique = add

    def remove(self, *items) -> List[Any]:
        items = self._prepare(items)
        if not items:
            return self._collection
        self.notify_will_change()
        for item in items:
            if item in self.additions:
                self.additions = _without(self.additions, item)
            elif item not in self.removals:
                self.removals.append(item)
            self._collection = _without(self._collection, item)
        return self._collection

    delete = remove

    def query(self, constraints: Optional[dict] = None):
        """The query on the foreign class matching the members of this relation."""
        query = self.forward("relation_query", self.key)
        if query is not None and constraints:
            query = query.conditions(constraints)
        return query

    def all(self, constraints: Optional[dict] = None) -> List[Any]:
        query = self.query({"limit": "max", **(constraints or {})})
        if query is None:
            return self.collection
        return query.results()

    def atomic_add(self, *items) -> Any:
        if not self.has_hook("op_add_relation"):
            return False
        return self.forward("op_add_relation", self.key, to_pointers(self._prepare(items)))

    atomic_add_unique = atomic_add

    def atomic_remove(self, *items) -> Any:
        if not self.has_hook("op_remove_relation"):
            return False
        return self.forward("op_remove_relation", self.key, to_pointers(self._prepare(items)))

    def save(self) -> bool:
        """Commit pending additions and removals through the owning record."""
        if not self.additions and not self.removals:
            return True
        result = self.forward("commit_relation_updates", self.key)
        if result:
            self.changes_applied()
        return bool(result)

    def rollback(self) -> None:
        super().rollback()
        self.additions = []
        self.removals = []

    def changes_applied(self) -> None:
        super().changes_applied()
        self.additions = []
        self.removals = []

    clear_changes = changes_applied

    def as_json(self) -> dict:
        return {"__type": "Relation", "className": self.parse_class}
