import copy
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional


def snapshot(value: Any) -> Any:
    """A detached copy of `value` safe to keep as the prior value of an attribute."""
    if hasattr(value, "snapshot"):
        return value.snapshot()
    if isinstance(value, (list, dict, set)):
        return copy.copy(value)
    return value


class ChangeSet:
    """
    Per-instance record of changed attributes and their values before the
    first change since the last clear.
    """

    def __init__(self) -> None:
        self._original: Dict[str, Any] = {}

    def will_change(self, name: str, current: Any) -> None:
        """Remember `current` as the prior value of `name` unless already changed."""
        if name not in self._original:
            self._original[name] = snapshot(current)

    def original(self, name: str, default: Any = None) -> Any:
        return self._original.get(name, default)

    def changes(self, current: Callable[[str], Any]) -> Dict[str, List[Any]]:
        """Map of attribute name to `[old, new]`, `current` reads the new value."""
        return {name: [old, current(name)] for name, old in self._original.items()}

    def discard(self, names: Optional[Iterable[str]] = None) -> None:
        if names is None:
            self._original.clear()
            return
        for name in names:
            self._original.pop(name, None)

    def items(self):
        return list(self._original.items())

    def keys(self) -> List[str]:
        return list(self._original.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._original

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._original))

    def __len__(self) -> int:
        return len(self._original)

    def __bool__(self) -> bool:
        return bool(self._original)

    def __repr__(self):
        return f"ChangeSet({self.keys()!r})"
