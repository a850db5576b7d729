from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from parsezero.core.config import config
from parsezero.core.constraints import (
    Constraint,
    Order,
    combine_or,
    compile,
    merge,
    parse_lookup,
)
from parsezero.core.exceptions import UnsupportedChainError

logger = logging.getLogger(__name__)

# Condition keys routed to query options instead of constraints
SPECIAL_KEYS = ("order", "keys", "include", "includes", "limit", "skip", "session", "session_token")


class Query:
    """
    A chainable query on a remote class.

        Query("Song").where(plays__gte=10).order("-plays").limit(5).results()

    Chained calls return a new query, the receiver is left unchanged.
    """

    def __init__(
        self,
        class_name: Union[str, type],
        constraints: Optional[Dict[str, Any]] = None,
        client: Any = None,
        registry: Any = None,
        **lookups,
    ):
        model = None
        if isinstance(class_name, type):
            model = class_name
            class_name = model.class_name
        self.class_name = class_name
        self._model = model
        self._client = client
        self._registry = registry
        # Constraints and already compiled filter maps
        self._where: List[Union[Constraint, Dict[str, Any]]] = []
        self._order: List[Order] = []
        self._keys: List[str] = []
        self._includes: List[str] = []
        self._limit: Optional[int] = None
        self._skip = 0
        self._count = False
        self.session_token: Optional[str] = None
        if constraints:
            self._apply_conditions(constraints)
        if lookups:
            self._add_where(lookups)

    def _clone(self) -> "Query":
        qs = Query(self._model or self.class_name, client=self._client, registry=self._registry)
        qs.class_name = self.class_name
        qs._where = list(self._where)
        qs._order = list(self._order)
        qs._keys = list(self._keys)
        qs._includes = list(self._includes)
        qs._limit = self._limit
        qs._skip = self._skip
        qs._count = self._count
        qs.session_token = self.session_token
        return qs

    # -- Collaborators --

    @property
    def registry(self):
        if self._registry is not None:
            return self._registry
        if self._model is not None:
            return self._model.registry()
        return config.registry

    @property
    def model(self):
        if self._model is not None:
            return self._model
        return self.registry.find_class(self.class_name)

    @property
    def client(self):
        if self._client is not None:
            return self._client
        model = self.model
        if model is not None and model.client is not None:
            return model.client
        return config.client

    # -- Chaining methods --

    def _compile_lookup(self, key: Any, value: Any) -> Constraint:
        if isinstance(key, tuple):
            field, operator = key
        else:
            field, operator = parse_lookup(str(key))
        return compile(field, operator, value, formatter=config.field_formatter, registry=self.registry)

    def _compile_lookups(self, args: Iterable[Any], lookups: Dict[str, Any]) -> List[Constraint]:
        nodes = []
        for arg in args:
            if isinstance(arg, Constraint):
                nodes.append(arg)
            elif isinstance(arg, dict):
                nodes.extend(self._compile_lookup(k, v) for k, v in arg.items())
            else:
                raise TypeError(f"Cannot build a constraint from {arg!r}")
        nodes.extend(self._compile_lookup(k, v) for k, v in lookups.items())
        return nodes

    def _add_where(self, lookups: Dict[str, Any]) -> None:
        self._where.extend(self._compile_lookups([lookups], {}))

    def _apply_conditions(self, conditions: Dict[str, Any]) -> None:
        where = {}
        for key, value in conditions.items():
            if key == "order":
                values = value if isinstance(value, (list, tuple)) else [value]
                self._order.extend(Order.parse(v) for v in values)
            elif key == "keys":
                self._keys.extend(value if isinstance(value, (list, tuple)) else [value])
            elif key in ("include", "includes"):
                self._includes.extend(value if isinstance(value, (list, tuple)) else [value])
            elif key == "limit":
                self._limit = self._clamp_limit(value)
            elif key == "skip":
                self._skip = self._clamp_skip(value)
            elif key in ("session", "session_token"):
                self.session_token = value
            else:
                where[key] = value
        if where:
            self._add_where(where)

    def conditions(self, conditions: Optional[Dict[str, Any]] = None, **kwargs) -> "Query":
        """Apply a dict of lookups where the special keys set the query options."""
        qs = self._clone()
        qs._apply_conditions({**(conditions or {}), **kwargs})
        return qs

    def where(self, *args, **lookups) -> "Query":
        qs = self._clone()
        qs._where.extend(self._compile_lookups(args, lookups))
        return qs

    def or_where(self, *args, **lookups) -> "Query":
        """
        Add an alternative to the current filter. The existing clauses
        become the first branch of a single compound-OR constraint.
        """
        nodes = self._compile_lookups(args, lookups)
        return self._or_filter(merge(nodes))

    def _or_filter(self, filter_map: Dict[str, Any]) -> "Query":
        qs = self._clone()
        if not filter_map:
            return qs
        current = self.compile_where()
        if not current:
            qs._where = [filter_map]
            return qs
        combined = combine_or([current, filter_map])
        qs._where = [compile(None, "or", combined["$or"], formatter=None)]
        return qs

    def __or__(self, other: "Query") -> "Query":
        if not isinstance(other, Query):
            return NotImplemented
        if other.class_name != self.class_name:
            raise ValueError(
                f"Cannot combine queries on '{self.class_name}' and '{other.class_name}'"
            )
        other_where = other.compile_where()
        if not other_where or not self.compile_where():
            # an unconstrained side matches everything
            qs = self._clone()
            qs._where = []
            return qs
        return self._or_filter(other_where)

    def related_to(self, field: str, pointer: Any) -> "Query":
        return self.where({(field, "related_to"): pointer})

    def order(self, *fields: Union[str, Order]) -> "Query":
        qs = self._clone()
        qs._order.extend(Order.parse(f) for f in fields)
        return qs

    def keys(self, *fields: str) -> "Query":
        qs = self._clone()
        qs._keys.extend(fields)
        return qs

    def includes(self, *fields: str) -> "Query":
        qs = self._clone()
        qs._includes.extend(fields)
        return qs

    def _clamp_limit(self, value: Any) -> Optional[int]:
        if value is None:
            return None
        if value in ("max", "all"):
            return config.max_limit
        return max(0, min(int(value), config.max_limit))

    def _clamp_skip(self, value: Any) -> int:
        return max(0, min(int(value or 0), config.max_skip))

    def limit(self, value: Union[int, str, None]) -> "Query":
        qs = self._clone()
        qs._limit = self._clamp_limit(value)
        return qs

    def skip(self, value: int) -> "Query":
        qs = self._clone()
        qs._skip = self._clamp_skip(value)
        return qs

    def session(self, token: Optional[str]) -> "Query":
        qs = self._clone()
        qs.session_token = token
        return qs

    # -- Compilation --

    def compile_where(self) -> Dict[str, Any]:
        return merge(self._where)

    def compile(self, encode: bool = True) -> Dict[str, Any]:
        """
        Build the query parameters of the find request. `where` is JSON
        encoded when `encode` is true.
        """
        formatter = config.field_formatter
        q: Dict[str, Any] = {}
        if self._count:
            q["count"] = 1
            q["limit"] = 0
        elif self._limit is not None:
            q["limit"] = self._limit
        if self._skip > 0:
            q["skip"] = self._skip
        if self._includes:
            q["include"] = ",".join(formatter(str(f)) for f in self._includes)
        if self._keys:
            q["keys"] = ",".join(formatter(str(f)) for f in self._keys)
        if self._order:
            q["order"] = ",".join(o.formatted(formatter) for o in self._order)
        where = self.compile_where()
        if where:
            q["where"] = json.dumps(where) if encode else where
        return q

    # -- Terminal operations --

    def _find(self, query: Dict[str, Any]):
        client = self.client
        if client is None:
            raise RuntimeError(
                "No client configured. Call parsezero.client.configure() first."
            )
        logger.debug(f"Query {self.class_name}: {query}")
        response = client.find_objects(self.class_name, query, session_token=self.session_token)
        if response.is_error:
            logger.error(f"Query on {self.class_name} failed: [{response.code}] {response.error}")
        return response

    def decode(self, items: Iterable[Dict[str, Any]]) -> List[Any]:
        model = self.model
        if model is not None:
            return [model.build(item) for item in items if isinstance(item, dict)]
        return self.registry.decode_objects(items, class_name=self.class_name)

    def results(self, raw: bool = False) -> List[Any]:
        """
        Run the query. Limits above the store page size are fetched page by
        page with increasing skips.
        """
        page_size = config.page_size
        if self._limit is None or self._limit <= page_size:
            items = self._find(self.compile()).results
        else:
            items = []
            remaining = self._limit
            skip = self._skip
            while remaining > 0 and skip <= config.max_skip:
                page = self._clone()
                page._limit = min(page_size, remaining)
                page._skip = skip
                batch = self._find(page.compile()).results
                items.extend(batch)
                if len(batch) < page._limit:
                    break
                remaining -= len(batch)
                skip += len(batch)
        return list(items) if raw else self.decode(items)

    def all(self, conditions: Optional[Dict[str, Any]] = None) -> List[Any]:
        return self.conditions(conditions).results()

    def first(self, n: int = 1) -> Any:
        items = self.limit(n).results()
        if n == 1:
            return items[0] if items else None
        return items

    def count(self) -> int:
        qs = self._clone()
        qs._count = True
        response = qs._find(qs.compile())
        if response.is_error:
            return 0
        if response.count is not None:
            return int(response.count)
        return 0

    def __iter__(self):
        return iter(self.results())

    # -- Scopes --

    def __getattr__(self, name: str) -> Callable[..., "Query"]:
        if name.startswith("_"):
            raise AttributeError(name)
        model = self.model
        body = model.scopes().get(name) if model is not None else None
        if body is None:
            raise UnsupportedChainError(
                f"'{name}' is not a query method or a scope of '{self.class_name}'"
            )

        def scoped(*args, **kwargs):
            return _scope_result(self, body(self, *args, **kwargs), name)

        return scoped

    def __repr__(self):
        return f"<Query {self.class_name} {self.compile(encode=False)!r}>"


def _scope_result(query: Query, result: Any, name: str) -> Query:
    if result is None:
        return query
    if not isinstance(result, Query):
        raise UnsupportedChainError(
            f"Scope '{name}' of '{query.class_name}' must return a Query, got {type(result).__name__}"
        )
    return result
