"""
Query constraint compiler.

A constraint binds an operation (a field and an operator name) to a value and
builds the JSON filter fragment the store understands. Operator names follow
the `field__operator` lookup convention:

    compile("plays", "gte", 10).build()      -> {"plays": {"$gte": 10}}
    merge([compile("plays", "gte", 10),
           compile("plays", "lt", 20)])      -> {"plays": {"$gte": 10, "$lt": 20}}
    combine_or([{"a": 1}, {"b": 2}])         -> {"$or": [{"a": 1}, {"b": 2}]}
"""
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type, Union

from cytoolz import merge_with

from parsezero.core.exceptions import InvalidConstraintError, UnsupportedOperatorError
from parsezero.core.field_utils import camelize, classify, columnize
from parsezero.core.pointer import Pointer, is_pointer_hash
from parsezero.core.types import CLASS_NAME, ID, OBJECT_ID
from parsezero.core.values import GeoPoint, encode_value

logger = logging.getLogger(__name__)

LOOKUP_SEP = "__"

# operator name -> constraint class
CONSTRAINTS: Dict[str, Type["Constraint"]] = {}


def register(*names: str) -> Callable[[Type["Constraint"]], Type["Constraint"]]:
    """Register a constraint class under one or more operator names."""

    def decorator(cls):
        for name in names:
            CONSTRAINTS[name] = cls
        return cls

    return decorator


def encode_constraint_value(value: Any) -> Any:
    """Encode a constraint operand for the wire."""
    if hasattr(value, "compile_where") and hasattr(value, "class_name"):
        return {"where": value.compile_where(), CLASS_NAME: value.class_name}
    if isinstance(value, re.Pattern):
        return value.pattern
    if isinstance(value, (list, tuple, set)):
        return [encode_constraint_value(item) for item in value]
    return encode_value(value)


class Operation:
    """A field bound to an operator name, e.g. Operation("plays", "gte")."""

    def __init__(self, operand: Optional[str], operator: str = "eq"):
        self.operand = OBJECT_ID if operand == ID else operand
        self.operator = operator

    @property
    def handler(self) -> Optional[Type["Constraint"]]:
        return CONSTRAINTS.get(self.operator)

    @property
    def valid(self) -> bool:
        return self.handler is not None

    def constraint(self, value: Any = None, **options) -> "Constraint":
        if not self.valid:
            raise UnsupportedOperatorError(f"Unsupported query operator '{self.operator}'")
        return self.handler(self, value, **options)

    def __eq__(self, other):
        if not isinstance(other, Operation):
            return NotImplemented
        return self.operand == other.operand and self.operator == other.operator

    def __hash__(self):
        return hash((self.operand, self.operator))

    def __repr__(self):
        return f"<Operation {self.operand}__{self.operator}>"


class Constraint:
    """
    Base constraint. Subclasses set `key` to the wire operator and override
    `validate` and `build` where the generic `{field: {key: value}}` form
    does not fit.
    """

    key: Optional[str] = None
    # Constraints are merged in ascending precedence, later ones win.
    precedence: int = 100

    def __init__(self, operation: Operation, value: Any = None, source: Optional[str] = None, registry: Any = None):
        self.operation = operation
        self.value = value
        self.source = source if source is not None else operation.operand
        self.registry = registry
        self.validate()

    @property
    def operand(self) -> Optional[str]:
        return self.operation.operand

    @property
    def operator(self) -> str:
        return self.operation.operator

    def validate(self) -> None:
        pass

    def formatted_value(self) -> Any:
        return encode_constraint_value(self.value)

    def build(self) -> Dict[str, Any]:
        if self.key is None:
            return {self.operand: self.formatted_value()}
        return {self.operand: {self.key: self.formatted_value()}}

    def as_json(self) -> Dict[str, Any]:
        return self.build()

    def __eq__(self, other):
        if not isinstance(other, Constraint):
            return NotImplemented
        return self.build() == other.build()

    def __repr__(self):
        return f"<{type(self).__name__} {self.build()!r}>"


def _require_bool(constraint: Constraint) -> None:
    if not isinstance(constraint.value, bool):
        raise InvalidConstraintError(
            f"'{constraint.operator}' on '{constraint.source}' requires a boolean, "
            f"got {constraint.value!r}"
        )


def _to_geopoint(value: Any) -> GeoPoint:
    if isinstance(value, GeoPoint):
        return value
    if isinstance(value, dict) or (isinstance(value, (list, tuple)) and len(value) == 2):
        return GeoPoint(value)
    raise InvalidConstraintError(f"Invalid geo point {value!r}")


@register("or")
class CompoundQueryConstraint(Constraint):
    key = "$or"
    precedence = 0

    def build(self):
        clauses = self.formatted_value()
        if not isinstance(clauses, list):
            clauses = [clauses]
        return {self.key: clauses}


@register("eq", "eql")
class EqualityConstraint(Constraint):
    """Matches a field value. A query operand becomes an `$inQuery` match."""

    precedence = 200

    def build(self):
        if hasattr(self.value, "compile_where"):
            return {self.operand: {"$inQuery": self.formatted_value()}}
        return {self.operand: self.formatted_value()}


@register("ne", "not")
class NotEqualConstraint(Constraint):
    key = "$ne"


@register("lt", "before")
class LessThanConstraint(Constraint):
    key = "$lt"


@register("lte", "on_or_before")
class LessOrEqualConstraint(Constraint):
    key = "$lte"


@register("gt", "after")
class GreaterThanConstraint(Constraint):
    key = "$gt"


@register("gte", "on_or_after")
class GreaterOrEqualConstraint(Constraint):
    key = "$gte"


class ListConstraint(Constraint):
    """Coerces scalars into a one element list and drops null entries."""

    def formatted_value(self):
        value = self.value
        if value is None:
            value = []
        elif not isinstance(value, (list, tuple, set)):
            value = [value]
        return [encode_constraint_value(item) for item in value if item is not None]


@register("in", "contained_in")
class ContainedInConstraint(ListConstraint):
    key = "$in"


@register("nin", "not_in", "not_contained_in")
class NotContainedInConstraint(ListConstraint):
    key = "$nin"


@register("all", "contains_all")
class ContainsAllConstraint(ListConstraint):
    key = "$all"


@register("exists")
class ExistsConstraint(Constraint):
    key = "$exists"

    def validate(self):
        _require_bool(self)


@register("null")
class NullabilityConstraint(Constraint):
    """`null=True` matches a missing field, `null=False` a present one."""

    def validate(self):
        _require_bool(self)

    def build(self):
        if self.value:
            return {self.operand: {"$exists": False}}
        return {self.operand: {"$ne": None}}


@register("select")
class SelectionConstraint(Constraint):
    """
    Matches a field against a key of the results of another query. The value
    is a `{"key": remote_key, "query": query}` dict or a `(key, query)` pair.
    """

    key = "$select"

    def validate(self):
        value = self.value
        if isinstance(value, (list, tuple)) and len(value) == 2:
            value = {"key": value[0], "query": value[1]}
        if not isinstance(value, dict) or "key" not in value or "query" not in value:
            raise InvalidConstraintError(
                f"'{self.operator}' on '{self.source}' requires a key and a query"
            )
        self.value = value

    def formatted_value(self):
        return {"query": encode_constraint_value(self.value["query"]), "key": self.value["key"]}


@register("reject")
class RejectionConstraint(SelectionConstraint):
    key = "$dontSelect"


@register("like", "regex")
class RegularExpressionConstraint(Constraint):
    key = "$regex"

    def build(self):
        fragment = {self.key: self.formatted_value()}
        if isinstance(self.value, re.Pattern) and self.value.flags & re.IGNORECASE:
            fragment["$options"] = "i"
        return {self.operand: fragment}


@register("related_to", "rel")
class RelationQueryConstraint(Constraint):
    """Matches objects whose relation field `key` on `object` contains them."""

    key = "$relatedTo"

    def validate(self):
        if not (isinstance(self.value, Pointer) or is_pointer_hash(self.value)):
            raise InvalidConstraintError(
                f"'{self.operator}' on '{self.source}' requires a pointer, got {self.value!r}"
            )

    def formatted_value(self):
        if isinstance(self.value, Pointer):
            return self.value.pointer().as_json()
        return encode_value(Pointer(self.value[CLASS_NAME], self.value[OBJECT_ID]))

    def build(self):
        return {self.key: {"object": self.formatted_value(), "key": self.operand}}


class SubQueryConstraint(Constraint):
    def validate(self):
        if not (hasattr(self.value, "compile_where") or isinstance(self.value, dict)):
            raise InvalidConstraintError(
                f"'{self.operator}' on '{self.source}' requires a query"
            )


@register("in_query", "join")
class InQueryConstraint(SubQueryConstraint):
    key = "$inQuery"


@register("not_in_query", "exclude")
class NotInQueryConstraint(SubQueryConstraint):
    key = "$notInQuery"


@register("near")
class NearSphereQueryConstraint(Constraint):
    """
    Geo proximity. The value is a GeoPoint, a `[lat, lng]` pair or a
    `[lat, lng, miles]` triple adding a maximum distance.
    """

    key = "$nearSphere"

    def validate(self):
        value = self.value
        if isinstance(value, (list, tuple)) and len(value) == 3:
            value = value[:2]
        _to_geopoint(value)

    def build(self):
        value = self.value
        max_miles = None
        if isinstance(value, (list, tuple)) and len(value) == 3:
            value, max_miles = value[:2], value[2]
        fragment = {self.key: _to_geopoint(value).as_json()}
        if max_miles is not None and float(max_miles) > 0:
            fragment["$maxDistanceInMiles"] = float(max_miles)
        return {self.operand: fragment}


@register("within_box")
class WithinGeoBoxQueryConstraint(Constraint):
    key = "$within"

    def validate(self):
        if not isinstance(self.value, (list, tuple)) or len(self.value) != 2:
            raise InvalidConstraintError(
                f"'{self.operator}' on '{self.source}' requires a south-west and a north-east point"
            )
        self.value = [_to_geopoint(point) for point in self.value]

    def build(self):
        return {self.operand: {self.key: {"$box": [p.as_json() for p in self.value]}}}


@register("within_polygon")
class WithinPolygonQueryConstraint(Constraint):
    key = "$geoWithin"

    def validate(self):
        if not isinstance(self.value, (list, tuple)) or len(self.value) < 3:
            raise InvalidConstraintError(
                f"'{self.operator}' on '{self.source}' requires at least 3 points"
            )
        self.value = [_to_geopoint(point) for point in self.value]

    def build(self):
        return {self.operand: {self.key: {"$polygon": [p.as_json() for p in self.value]}}}


@register("text_search")
class FullTextSearchQueryConstraint(Constraint):
    """
    Full text search. The value is the search term, or a dict with a `term`
    and the optional `case_sensitive`, `language` and `diacritic_sensitive`
    parameters.
    """

    key = "$text"

    def validate(self):
        value = self.value
        if isinstance(value, str):
            value = {"term": value}
        if not isinstance(value, dict):
            raise InvalidConstraintError(
                f"'{self.operator}' on '{self.source}' requires a term, got {value!r}"
            )
        params = {}
        for name, param in value.items():
            name = "$" + camelize(str(name).lstrip("$"))
            params[name] = param
        if not params.get("$term"):
            raise InvalidConstraintError(
                f"'{self.operator}' on '{self.source}' requires a term, got {value!r}"
            )
        params["$term"] = str(params["$term"])
        self.value = params

    def build(self):
        return {self.operand: {self.key: {"$search": dict(self.value)}}}


@register("id")
class ObjectIdConstraint(Constraint):
    """
    Matches a pointer field by objectId. The target class is derived from the
    field name: `song` targets "Song", `my_song` targets "MySong".
    """

    def target_class(self) -> str:
        name = classify(str(self.source))
        if self.registry is not None:
            model = self.registry.find_class(name)
            if model is not None:
                return model.class_name
        return name

    def validate(self):
        value = self.value
        if isinstance(value, Pointer):
            return
        if not isinstance(value, str) or not value:
            raise InvalidConstraintError(
                f"'{self.operator}' on '{self.source}' requires an objectId, got {value!r}"
            )

    def formatted_value(self):
        if isinstance(self.value, Pointer):
            return self.value.pointer().as_json()
        return Pointer(self.target_class(), self.value).as_json()


def compile(
    field: Optional[str],
    operator: str,
    value: Any,
    formatter: Optional[Callable[[str], str]] = columnize,
    registry: Any = None,
) -> Constraint:
    """
    Compile a `(field, operator, value)` triple into a constraint node.

    Raises:
        UnsupportedOperatorError: If no constraint is registered for `operator`.
        InvalidConstraintError: If `value` does not fit the operator.
    """
    if operator not in CONSTRAINTS:
        raise UnsupportedOperatorError(f"Unsupported query operator '{operator}'")
    operand = field
    if field is not None and formatter is not None:
        operand = formatter(str(field))
    return Operation(operand, operator).constraint(value, source=field, registry=registry)


def _deep_merge(*maps: Dict[str, Any]) -> Dict[str, Any]:
    def combine(values):
        if all(isinstance(v, dict) for v in values):
            return _deep_merge(*values)
        return values[-1]

    return merge_with(combine, *maps)


def merge(nodes: Iterable[Union[Constraint, Dict[str, Any]]]) -> Dict[str, Any]:
    """
    Deep merge the built fragments of `nodes` into one filter map. Operators
    on the same field coexist; a repeated operator on a field keeps the last value.
    """
    nodes = list(nodes or [])
    ordered = sorted(
        nodes, key=lambda n: n.precedence if isinstance(n, Constraint) else Constraint.precedence
    )
    fragments = [n.build() if isinstance(n, Constraint) else n for n in ordered]
    fragments = [f for f in fragments if f]
    if not fragments:
        return {}
    return _deep_merge(*fragments)


def combine_or(filter_maps: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Combine filter maps into one compound-OR node. Inputs that are themselves
    a bare `$or` node are flattened into the result.
    """
    branches: List[Dict[str, Any]] = []
    for filter_map in filter_maps or []:
        if not filter_map:
            continue
        if set(filter_map.keys()) == {"$or"}:
            branches.extend(filter_map["$or"])
        else:
            branches.append(filter_map)
    return compile(None, "or", branches, formatter=None).build()


def parse_lookup(lookup: str) -> Tuple[str, str]:
    """
    Split a `field__operator` lookup. A trailing segment that is not a
    registered operator is part of the field name.

        parse_lookup("plays__gte") -> ("plays", "gte")
        parse_lookup("plays")      -> ("plays", "eq")
    """
    if LOOKUP_SEP in lookup:
        field, operator = lookup.rsplit(LOOKUP_SEP, 1)
        if field and operator in CONSTRAINTS:
            return field, operator
    return lookup, "eq"


class Order:
    """A sort order. `Order("-plays")` sorts descending on plays."""

    ASC = "asc"
    DESC = "desc"

    def __init__(self, field: str, direction: Optional[str] = None):
        field = str(field)
        if direction is None:
            direction = self.DESC if field.startswith("-") else self.ASC
            field = field.lstrip("-")
        if direction not in (self.ASC, self.DESC):
            raise ValueError(f"Invalid order direction '{direction}'")
        self.field = field
        self.direction = direction

    @classmethod
    def parse(cls, value: Union["Order", str]) -> "Order":
        return value if isinstance(value, Order) else cls(value)

    def formatted(self, formatter: Optional[Callable[[str], str]] = columnize) -> str:
        field = formatter(self.field) if formatter else self.field
        return f"-{field}" if self.direction == self.DESC else field

    def __str__(self):
        return self.formatted()

    def __eq__(self, other):
        if not isinstance(other, Order):
            return NotImplemented
        return self.field == other.field and self.direction == other.direction

    def __hash__(self):
        return hash((self.field, self.direction))

    def __repr__(self):
        return f"Order({self.formatted(None)!r})"
