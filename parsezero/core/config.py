from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Type

import networkx as nx

from parsezero.core.exceptions import ConfigError
from parsezero.core.field_utils import columnize
from parsezero.core.pointer import Pointer, is_pointer_hash
from parsezero.core.types import CLASS_NAME, OBJECT_ID, TYPE_FIELD, TYPE_OBJECT, TYPE_POINTER

logger = logging.getLogger(__name__)


class ClientConfig:
    """
    Process configuration for the client.

    Developers configure:
      - The default client used by record types without their own.
      - The registry used to decode polymorphic reference payloads.
      - Save failure behaviour, field name formatting and autofetch.
      - The size and concurrency of batched submissions.
      - The paging constants of the store.
    """

    client: Any = None
    raise_on_save_failure: bool = False
    field_formatter: Callable[[str], str] = staticmethod(columnize)
    autofetch: bool = True
    relation_workers: int = 2
    batch_workers: int = 2
    batch_segment: int = 50

    # Paging constants of the store
    default_limit: int = 100
    max_limit: int = 11_000
    page_size: int = 1_000
    max_skip: int = 10_000

    def __init__(self) -> None:
        self.registry = Registry()

    def configure(self, **kwargs) -> None:
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)
            else:
                raise AttributeError(f"Invalid configuration key: {key}")

    def format_field(self, name: str) -> str:
        return self.field_formatter(name)


class Registry:
    """
    Maps remote class names to record types.

    The registry is populated at startup with `register`, then frozen. Once
    frozen it is read-only and its reference graph has been validated.
    """

    def __init__(self) -> None:
        self._models: Dict[str, Type] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def models(self) -> Dict[str, Type]:
        return dict(self._models)

    def register(self, model: Optional[Type] = None, class_name: Optional[str] = None):
        """
        Register a record type. Usable directly or as a class decorator:

            @registry.register
            class Song(Record): ...
        """

        def decorator(cls: Type) -> Type:
            if self._frozen:
                raise ConfigError(
                    f"Cannot register {cls.__name__}: the registry is frozen."
                )
            name = class_name or getattr(cls, "class_name", None) or cls.__name__
            existing = self._models.get(name)
            if existing is not None and existing is not cls:
                raise ConfigError(
                    f"Class name '{name}' is already registered to {existing.__name__}."
                )
            self._models[name] = cls
            cls._registry = self
            logger.debug(f"Registered {cls.__name__} as '{name}'")
            return cls

        if model is None:
            return decorator
        return decorator(model)

    def find_class(self, class_name: Optional[str]) -> Optional[Type]:
        if not class_name:
            return None
        return self._models.get(class_name)

    def __contains__(self, class_name: str) -> bool:
        return class_name in self._models

    def build_model_graph(self, graph: Optional[nx.DiGraph] = None) -> nx.DiGraph:
        """
        Build a directed graph of the registered record types. Each reference
        field becomes a "ClassName::field" node linking its owner to its target.
        """
        if graph is None:
            graph = nx.DiGraph()
        for name, model in self._models.items():
            graph.add_node(name, model=model)
            for definition in model.schema.fields.values():
                if not definition.target:
                    continue
                field_node = f"{name}::{definition.name}"
                graph.add_node(field_node, data=definition)
                graph.add_edge(name, field_node)
                graph.add_edge(field_node, definition.target)
        return graph

    def validate_references(self) -> bool:
        """
        Validate that every pointer and relation field of a registered type
        targets a registered type.

        Raises:
            ConfigError: If a field targets an unregistered class.
        """
        graph = self.build_model_graph()
        for name in self._models:
            for _, field_node in graph.out_edges(name):
                if "::" not in field_node:
                    continue
                definition = graph.nodes[field_node].get("data")
                if definition.target not in self._models:
                    field_name = field_node.split("::")[-1]
                    raise ConfigError(
                        f"Class '{name}' field '{field_name}' references unregistered "
                        f"class '{definition.target}'. Register '{definition.target}' "
                        f"before freezing the registry."
                    )
        return True

    def freeze(self) -> "Registry":
        self.validate_references()
        self._frozen = True
        return self

    def build(self, json: Any, class_name: Optional[str] = None) -> Any:
        """
        Decode a pointer or object hash into an instance of its registered
        record type. Unregistered pointers decode to a bare `Pointer`.
        """
        if not isinstance(json, dict):
            return None
        name = class_name or json.get(CLASS_NAME)
        model = self.find_class(name)
        if model is not None:
            body = {k: v for k, v in json.items() if k not in (TYPE_FIELD, CLASS_NAME)}
            return model.build(body)
        if name and json.get(OBJECT_ID) and json.get(TYPE_FIELD, TYPE_POINTER) in (TYPE_POINTER, TYPE_OBJECT):
            return Pointer(name, json[OBJECT_ID])
        logger.warning(f"Cannot decode object of unregistered class '{name}'")
        return None

    def decode_objects(self, items: Iterable[Any], class_name: Optional[str] = None) -> List[Any]:
        """
        Decode a list of records, pointers and pointer hashes. Records and
        pointers are kept as they are, anything that cannot be decoded is dropped.
        """
        decoded = []
        for item in items or []:
            if isinstance(item, Pointer):
                decoded.append(item)
            elif isinstance(item, dict) and (is_pointer_hash(item) or class_name):
                value = self.build(item, class_name=None if item.get(CLASS_NAME) else class_name)
                if value is not None:
                    decoded.append(value)
        return decoded


config = ClientConfig()
