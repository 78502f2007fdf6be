"""Small event primitives used by the headless form loader.

They stand in for the browser's listener registry, ``MutationObserver`` and
``CustomEvent`` dispatch so the loader and patcher can run over a parsed
document.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable

from bs4 import BeautifulSoup, Tag

from formblock.core.logging import log_error

DomListener = Callable[[Tag], None]
MutationCallback = Callable[[list[Tag]], None]
BusCallback = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class Subscription:
    """Handle returned by every registration; ``unsubscribe`` is idempotent."""

    _cancel: Callable[[], None] | None = None
    active: bool = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._cancel is not None:
            self._cancel()
            self._cancel = None


@dataclass(slots=True, eq=False)
class _ListenerEntry:
    element: Tag
    event: str
    callback: DomListener


class EventRegistry:
    """Element listeners keyed by element identity and event name."""

    def __init__(self) -> None:
        self._listeners: dict[tuple[int, str], list[_ListenerEntry]] = {}

    def add_listener(self, element: Tag, event: str, callback: DomListener) -> Subscription:
        key = (id(element), event)
        entry = _ListenerEntry(element=element, event=event, callback=callback)
        self._listeners.setdefault(key, []).append(entry)

        def _cancel() -> None:
            entries = self._listeners.get(key, [])
            if entry in entries:
                entries.remove(entry)
            if not entries:
                self._listeners.pop(key, None)

        return Subscription(_cancel)

    def listener_count(self, element: Tag, event: str) -> int:
        return len(self._listeners.get((id(element), event), []))

    def dispatch(self, element: Tag, event: str) -> int:
        entries = list(self._listeners.get((id(element), event), []))
        for entry in entries:
            entry.callback(element)
        return len(entries)


@dataclass(slots=True, eq=False)
class _Observation:
    root: Tag
    callback: MutationCallback


def _is_within(node: Tag, root: Tag) -> bool:
    if node is root:
        return True
    return any(parent is root for parent in node.parents)


class DomObserver:
    """Delivers reports of inserted nodes to observers of an ancestor root."""

    def __init__(self) -> None:
        self._observations: list[_Observation] = []

    def observe(self, root: Tag, callback: MutationCallback) -> Subscription:
        observation = _Observation(root=root, callback=callback)
        self._observations.append(observation)

        def _cancel() -> None:
            if observation in self._observations:
                self._observations.remove(observation)

        return Subscription(_cancel)

    def is_observing(self, root: Tag) -> bool:
        return any(observation.root is root for observation in self._observations)

    def report_added(self, nodes: Iterable[Tag]) -> int:
        added = [node for node in nodes if isinstance(node, Tag)]
        delivered = 0
        for observation in list(self._observations):
            matching = [node for node in added if _is_within(node, observation.root)]
            if matching:
                observation.callback(matching)
                delivered += 1
        return delivered


class EventBus:
    """Named page-level events, the counterpart of ``CustomEvent`` dispatch."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[BusCallback]] = {}
        self.history: list[tuple[str, dict[str, Any]]] = []

    def subscribe(self, name: str, callback: BusCallback) -> Subscription:
        self._subscribers.setdefault(name, []).append(callback)

        def _cancel() -> None:
            callbacks = self._subscribers.get(name, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return Subscription(_cancel)

    def dispatch(self, name: str, detail: dict[str, Any]) -> None:
        self.history.append((name, detail))
        for callback in list(self._subscribers.get(name, [])):
            try:
                callback(detail)
            except Exception as exc:
                log_error("Event listener failed", event=name, error=str(exc))


def class_list(element: Tag) -> list[str]:
    value = element.get("class")
    if not value:
        return []
    if isinstance(value, str):
        return value.split()
    return list(value)


def has_class(element: Tag, name: str) -> bool:
    return name in class_list(element)


def add_class(element: Tag, name: str) -> bool:
    classes = class_list(element)
    if name in classes:
        return False
    element["class"] = [*classes, name]
    return True


def remove_classes(element: Tag, *names: str) -> bool:
    classes = class_list(element)
    remaining = [value for value in classes if value not in names]
    if len(remaining) == len(classes):
        return False
    if remaining:
        element["class"] = remaining
    else:
        del element["class"]
    return True


def owner_document(element: Tag) -> BeautifulSoup:
    if isinstance(element, BeautifulSoup):
        return element
    for parent in element.parents:
        if isinstance(parent, BeautifulSoup):
            return parent
    raise ValueError("Element is not attached to a document")
