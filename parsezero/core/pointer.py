from typing import Any, Dict, Iterable, List, Optional

from parsezero.core.types import CLASS_NAME, OBJECT_ID, TYPE_FIELD, TYPE_POINTER


class Pointer:
    """
    A reference to a remote record: its class name and objectId, no body.

    Record extends this class, so anything that accepts a pointer accepts a
    full record as well.
    """

    type_name = TYPE_POINTER

    def __init__(self, class_name: str, object_id: Any):
        self.class_name = str(class_name)
        self.id = str(object_id) if object_id is not None else None

    @property
    def object_id(self) -> Optional[str]:
        return self.id

    @property
    def is_present(self) -> bool:
        return bool(self.class_name) and bool(self.id)

    @property
    def is_pointer(self) -> bool:
        return self.is_present

    @property
    def is_fetched(self) -> bool:
        """A bare reference never carries a body."""
        return False

    @property
    def sig(self) -> str:
        return f"{self.class_name}#{self.id}"

    def pointer(self) -> "Pointer":
        return Pointer(self.class_name, self.id)

    def as_json(self) -> Dict[str, Any]:
        return {TYPE_FIELD: TYPE_POINTER, CLASS_NAME: self.class_name, OBJECT_ID: self.id}

    def fetch(self, client=None) -> Optional[Dict[str, Any]]:
        """Fetch the body of the referenced record. Returns the raw result hash."""
        if client is None:
            from parsezero.core.config import config

            client = config.client
        response = client.fetch_object(self.class_name, self.id)
        if response.is_error:
            return None
        return response.result

    def __eq__(self, other):
        if isinstance(other, Pointer):
            if self.id is None and other.id is None:
                return self is other
            return self.class_name == other.class_name and self.id == other.id
        if isinstance(other, dict):
            class_name = other.get(CLASS_NAME)
            object_id = other.get(OBJECT_ID)
            return (
                self.id is not None
                and class_name == self.class_name
                and object_id == self.id
            )
        return NotImplemented

    def __hash__(self):
        if self.id is None:
            return id(self)
        return hash((self.class_name, self.id))

    def __repr__(self):
        return f"<Pointer {self.sig}>"


def is_pointer_hash(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and bool(value.get(CLASS_NAME))
        and bool(value.get(OBJECT_ID))
    )


def to_pointers(items: Iterable[Any]) -> List[Pointer]:
    """
    Convert a list of records, pointers and pointer hashes into pointers.
    Anything else is dropped.
    """
    pointers = []
    for item in items or []:
        if isinstance(item, Pointer):
            if item.id is not None:
                pointers.append(item.pointer())
        elif is_pointer_hash(item):
            pointers.append(Pointer(item[CLASS_NAME], item[OBJECT_ID]))
    return pointers


def object_ids(items: Iterable[Any]) -> List[str]:
    return [item.id for item in items or [] if isinstance(item, Pointer) and item.id]
