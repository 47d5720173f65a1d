import copy
import threading
from collections.abc import Callable, Iterator, MutableMapping
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")
R = TypeVar("R")

Listener = Callable[[object, object | None], None]


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database.

    Documents are keyed "<collection>:<id>". Listeners registered with
    ``subscribe`` are called with (key, value) after every write, and with
    (key, None) after a delete.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}
        self._listeners: list[Listener] = []
        self._lock = threading.RLock()

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._store[key] = value
        self._notify(key, value)

    def get(self, key: K) -> V | None:
        return self._store.get(key)

    def delete(self, key: K) -> None:
        with self._lock:
            existed = self._store.pop(key, None) is not None
        if existed:
            self._notify(key, None)

    def all(self) -> list[V]:
        return list(self._store.values())

    def collection(self, prefix: str) -> list[V]:
        return [
            v
            for k, v in self._store.items()
            if isinstance(k, str) and k.startswith(f"{prefix}:")
        ]

    def clear(self) -> None:
        self._store.clear()

    def __iter__(self) -> Iterator[V]:
        return iter(self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def transaction(self, key: K, mutate: Callable[[V], R]) -> R:
        """
        Atomically read, modify and write back the value at ``key``.

        ``mutate`` works on a copy; if it raises, the stored value is left
        untouched. Raises KeyError if there is nothing at ``key``.
        """
        with self._lock:
            current = self._store.get(key)
            if current is None:
                raise KeyError(key)
            working = copy.deepcopy(current)
            result = mutate(working)
            self._store[key] = working
        self._notify(key, working)
        return result

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: K, value: V | None) -> None:
        for listener in list(self._listeners):
            listener(key, value)
