"""
Persistence of records: create or update, relation commits, destroy and
immediate atomic field operations.

A save runs the attribute request first. Relation changes are committed
afterwards in separate requests, since the store does not accept relation
operations together with other field updates:

    unchanged -> create | update -> commit relations -> changes applied

An attribute failure aborts before any relation request. A relation failure
leaves the attributes saved and the relation changes pending, so that the
relation half can be retried alone.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from parsezero.core.classes import Request, Response, SessionInfo
from parsezero.core.config import config
from parsezero.core.constraints import parse_lookup
from parsezero.core.exceptions import IllegalStateError, RecordNotSavedError
from parsezero.core.field_utils import columnize
from parsezero.core.pointer import to_pointers
from parsezero.core.types import (
    CREATED_AT,
    DELETE_OP,
    OBJECT_ID,
    OP_ADD,
    OP_ADD_RELATION,
    OP_ADD_UNIQUE,
    OP_FIELD,
    OP_INCREMENT,
    OP_REMOVE,
    OP_REMOVE_RELATION,
    UPDATED_AT,
    HttpMethod,
)
from parsezero.core.values import encode_value

logger = logging.getLogger(__name__)

CLASSES_PATH = "classes"


class RelationAction:
    """An AddRelation or RemoveRelation operation on one relation field."""

    ADD = OP_ADD_RELATION
    REMOVE = OP_REMOVE_RELATION

    def __init__(self, field: str, polarity: bool = True, objects: Optional[List[Any]] = None):
        self.key = field
        self.polarity = polarity
        self.objects = to_pointers(objects or [])

    @property
    def operation(self) -> str:
        return self.ADD if self.polarity else self.REMOVE

    def as_json(self) -> Dict[str, Any]:
        return {
            self.key: {
                OP_FIELD: self.operation,
                "objects": [pointer.as_json() for pointer in self.objects],
            }
        }

    def __repr__(self):
        return f"<RelationAction {self.operation} {self.key} {len(self.objects)} objects>"


def validate_session_token(session: Any, action: str) -> Optional[str]:
    """
    Normalize the session argument of a persistence action. Accepts None, a
    non-empty token string or an object with a `session_token` attribute.
    """
    if session is None:
        return None
    token = getattr(session, "session_token", session)
    try:
        return SessionInfo(session_token=token).session_token
    except ValidationError as exc:
        raise ValueError(
            f"Invalid session for {action}: expected a session token string or an "
            f"object with a session_token, got {session!r}"
        ) from exc


class Actions:
    """Persistence operations mixed into Record."""

    # -- Helpers --

    def uri_path(self) -> str:
        if self.is_new:
            return f"{CLASSES_PATH}/{self.class_name}"
        return f"{CLASSES_PATH}/{self.class_name}/{self.id}"

    def _should_raise(self, autoraise: bool = False) -> bool:
        if autoraise:
            return True
        configured = type(self).raise_on_save_failure
        if configured is None:
            configured = config.raise_on_save_failure
        return bool(configured)

    def _run_hooks(self, event: str) -> bool:
        for hook in type(self)._hooks.get(event, []):
            if hook(self) is False:
                logger.debug(f"{event} hook {hook!r} halted {self.class_name}")
                return False
        return True

    def _remote_field(self, field: str) -> str:
        definition = self.schema.lookup(field)
        return definition.field if definition is not None else columnize(field)

    # -- Payloads --

    def relation_change_operations(self) -> List[Dict[str, Any]]:
        """`[additions, removals]`, each a remote field keyed dict of relation operations."""
        additions: Dict[str, Any] = {}
        removals: Dict[str, Any] = {}
        for field, proxy in self.relation_updates().items():
            if proxy.additions:
                additions.update(RelationAction(field, True, proxy.additions).as_json())
            if proxy.removals:
                removals.update(RelationAction(field, False, proxy.removals).as_json())
        return [additions, removals]

    def changes_payload(self) -> Dict[str, Any]:
        """The attribute updates plus the first non-empty half of the relation changes."""
        payload = self.attribute_updates()
        if self.relation_changes():
            operations = [ops for ops in self.relation_change_operations() if ops]
            if operations:
                payload.update(operations[0])
        return payload

    def change_requests(self, force: bool = False) -> List[Request]:
        """
        The requests a save would send: the attribute request when attributes
        changed (or `force`), then one request per non-empty relation half for
        records that have an id.
        """
        requests = []
        tag = id(self)
        if self.attribute_changes() or force:
            method = HttpMethod.POST if self.is_new else HttpMethod.PUT
            requests.append(
                Request(method=method, path=self.uri_path(), body=self.attribute_updates(), tag=tag)
            )
        if not self.is_new and self.relation_changes():
            for operations in self.relation_change_operations():
                if operations:
                    requests.append(
                        Request(method=HttpMethod.PUT, path=self.uri_path(), body=operations, tag=tag)
                    )
        return requests

    def destroy_request(self) -> Optional[Request]:
        if self.is_new:
            return None
        return Request(method=HttpMethod.DELETE, path=self.uri_path(), tag=id(self))

    def apply_batch_response(self, request: Request, response: Response) -> bool:
        """
        Fold the response to one of this record's batched requests back into
        the record. Only the changes carried by `request` are cleared; a
        relation half clears its own pending list.
        """
        if response.is_error:
            logger.error(
                f"Batched {request.method.value.upper()} of {self.sig} failed: "
                f"[{response.code}] {response.error}"
            )
            return False
        if request.method == HttpMethod.DELETE:
            self.set("id", None, track=False)
            self.changes_applied()
            return True
        result = response.result if isinstance(response.result, dict) else {}
        if request.method == HttpMethod.POST:
            self.set("id", result.get(OBJECT_ID) or self.id, track=False)
            updated_at = result.get(UPDATED_AT) or result.get(CREATED_AT)
            if updated_at:
                self.set("updated_at", updated_at, track=False)
        self.set_attributes(result, track=False)

        applied = []
        relations = self.relations()
        for key, value in (request.body or {}).items():
            definition = self.schema.lookup(key)
            if definition is None:
                continue
            if definition.name not in relations:
                applied.append(definition.name)
                continue
            proxy = self._values.get(definition.name)
            if proxy is None or not isinstance(value, dict):
                continue
            if value.get(OP_FIELD) == OP_ADD_RELATION:
                proxy.additions = []
            elif value.get(OP_FIELD) == OP_REMOVE_RELATION:
                proxy.removals = []
            if not proxy.additions and not proxy.removals:
                applied.append(definition.name)
        self.clear_attribute_changes(applied)
        return True

    # -- Persistence --

    def create(self) -> bool:
        response = self.connection().create_object(
            self.class_name, self.attribute_updates(), session_token=self._session_token
        )
        if response.is_error:
            logger.error(f"Error creating {self.class_name}: [{response.code}] {response.error}")
            return False
        result = response.result or {}
        self.set("id", result.get(OBJECT_ID) or self.id, track=False)
        self.set("created_at", result.get(CREATED_AT) or self.created_at, track=False)
        updated_at = result.get(UPDATED_AT) or result.get(CREATED_AT) or self.updated_at
        self.set("updated_at", updated_at, track=False)
        # pre-save hooks on the server may have rewritten fields
        self.set_attributes(result, track=False)
        return True

    def update(self) -> bool:
        if not self.attribute_changes():
            return True
        for message in self.validate():
            logger.warning(f"[{self.class_name}] warning: {message}")
        response = self.connection().update_object(
            self.class_name, self.id, self.attribute_updates(), session_token=self._session_token
        )
        if response.is_error:
            logger.error(f"Error updating {self.sig}: [{response.code}] {response.error}")
            return False
        self.set_attributes(response.result, track=False)
        return True

    def update_relations(self) -> bool:
        """
        Commit pending relation additions and removals. The two halves are
        sent as independent requests; the fields of the last completed
        response are applied locally.

        Raises:
            IllegalStateError: If the record has no id.
        """
        if self.is_new:
            raise IllegalStateError(
                f"Cannot commit relation changes of a {self.class_name} without an id"
            )
        additions, removals = self.relation_change_operations()
        bodies = [body for body in (removals, additions) if body]
        if not bodies:
            return True
        client = self.connection()
        token = self._session_token

        def dispatch(body):
            logger.debug(f"Committing relation changes of {self.sig}: {list(body)}")
            return client.update_object(self.class_name, self.id, body, session_token=token)

        responses = []
        with ThreadPoolExecutor(max_workers=max(1, config.relation_workers)) as executor:
            futures = [executor.submit(dispatch, body) for body in bodies]
            for future in as_completed(futures):
                responses.append(future.result())

        failed = [response for response in responses if response.is_error]
        for response in failed:
            logger.error(
                f"Error updating relations of {self.sig}: [{response.code}] {response.error}"
            )
        if failed:
            return False
        self.set_attributes(responses[-1].result, track=False)
        relation_keys = [name for name in self.changed if name in self.relations()]
        for name in relation_keys:
            proxy = self._values.get(name)
            if proxy is not None:
                proxy.changes_applied()
        self.clear_attribute_changes(relation_keys)
        return True

    def save(self, session: Any = None, autoraise: bool = False) -> bool:
        """
        Create or update the record, then commit relation changes.

        Returns:
            bool: Whether all requests succeeded. True when nothing changed.

        Raises:
            RecordNotSavedError: On failure, when `autoraise` or the
                raise_on_save_failure setting of the type or the process is on.
            ValueError: If `session` is not a valid session.
        """
        self._session_token = validate_session_token(session, "save")
        try:
            if not self.changed:
                return True
            if not self._run_hooks("before_save"):
                return False
            success = self.create() if self.is_new else self.update()
            if success:
                if self.relation_changes():
                    relations = self.relations()
                    self.clear_attribute_changes([n for n in self.changed if n not in relations])
                    success = self.update_relations()
                    if success:
                        self.changes_applied()
                    elif self._should_raise(autoraise):
                        raise RecordNotSavedError(
                            self, f"Failed updating relations. {self.class_name} partially saved."
                        )
                else:
                    self.changes_applied()
            elif self._should_raise(autoraise):
                raise RecordNotSavedError(
                    self, f"Failed to create or save attributes. {self.class_name} was not saved."
                )
            if success:
                self._run_hooks("after_save")
            return success
        finally:
            self._session_token = None

    def save_or_raise(self, session: Any = None) -> bool:
        return self.save(session=session, autoraise=True)

    def destroy(self, session: Any = None) -> bool:
        """Delete the record remotely. A record that was never saved is not destroyed."""
        self._session_token = validate_session_token(session, "destroy")
        try:
            if self.is_new:
                return False
            if not self._run_hooks("before_destroy"):
                return False
            response = self.connection().delete_object(
                self.class_name, self.id, session_token=self._session_token
            )
            if response.is_error:
                logger.error(f"Error destroying {self.sig}: [{response.code}] {response.error}")
                if self._should_raise():
                    raise RecordNotSavedError(self, f"Failed to destroy {self.sig}.")
                return False
            self.set("id", None, track=False)
            self.changes_applied()
            self._run_hooks("after_destroy")
            return True
        finally:
            self._session_token = None

    # -- Atomic field operations --

    def operate_field(self, field: str, operation: Any) -> bool:
        """
        Send a single operation on `field` right away, bypassing the change set.
        `operation` is an operation hash or a RelationAction.
        """
        if self.is_new:
            raise IllegalStateError(
                f"Cannot operate on field '{field}' of a {self.class_name} without an id"
            )
        if isinstance(operation, RelationAction):
            body = operation.as_json()
        else:
            body = {self._remote_field(field): encode_value(operation)}
        response = self.connection().update_object(
            self.class_name, self.id, body, session_token=self._session_token
        )
        if response.is_error:
            logger.error(
                f"Error performing {body} on {self.sig}: [{response.code}] {response.error}"
            )
            return False
        self.set_attributes(response.result, track=False)
        return True

    def op_add(self, field: str, objects: List[Any]) -> bool:
        return self.operate_field(field, {OP_FIELD: OP_ADD, "objects": list(objects)})

    def op_add_unique(self, field: str, objects: List[Any]) -> bool:
        return self.operate_field(field, {OP_FIELD: OP_ADD_UNIQUE, "objects": list(objects)})

    def op_remove(self, field: str, objects: List[Any]) -> bool:
        return self.operate_field(field, {OP_FIELD: OP_REMOVE, "objects": list(objects)})

    def op_destroy(self, field: str) -> bool:
        return self.operate_field(field, dict(DELETE_OP))

    def op_increment(self, field: str, amount: Any = 1) -> bool:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ValueError(f"Increment amount for '{field}' must be a number, got {amount!r}")
        return self.operate_field(field, {OP_FIELD: OP_INCREMENT, "amount": amount})

    def op_add_relation(self, field: str, objects: List[Any]) -> bool:
        pointers = to_pointers(objects)
        if not pointers:
            return False
        return self.operate_field(field, RelationAction(self._remote_field(field), True, pointers))

    def op_remove_relation(self, field: str, objects: List[Any]) -> bool:
        pointers = to_pointers(objects)
        if not pointers:
            return False
        return self.operate_field(field, RelationAction(self._remote_field(field), False, pointers))

    # -- Type level helpers --

    @classmethod
    def first_or_create(
        cls,
        query_attrs: Optional[Dict[str, Any]] = None,
        resource_attrs: Optional[Dict[str, Any]] = None,
    ):
        """
        The first record matching `query_attrs`, or a new unsaved record built
        from the plain equality lookups of `query_attrs` and `resource_attrs`.
        """
        query_attrs = dict(query_attrs or {})
        record = cls.query(query_attrs).first()
        if record is not None:
            return record
        attributes = {}
        for key, value in query_attrs.items():
            field, operator = parse_lookup(str(key))
            if operator == "eq" and cls.schema.lookup(field) is not None:
                attributes[field] = value
        attributes.update(resource_attrs or {})
        return cls(attributes)

    @classmethod
    def first_or_create_or_raise(
        cls,
        query_attrs: Optional[Dict[str, Any]] = None,
        resource_attrs: Optional[Dict[str, Any]] = None,
    ):
        """Like first_or_create, saving a new record and raising if the save fails."""
        record = cls.first_or_create(query_attrs, resource_attrs)
        if record.is_new:
            record.save_or_raise()
        return record
