"""Task handler registry.

Handlers are classes exposing ``name``, ``version``, ``max_attempts`` and
``execute(task, queue)``. A fresh instance is created for every lease so
handlers may keep per-lease state on ``self``.
"""
from .exceptions import UnknownTaskError

_handlers: dict = {}


def register(handler_cls):
    name = getattr(handler_cls, "name", None)
    if not name:
        raise ValueError(f"{handler_cls!r} has no task name")
    _handlers[name] = handler_cls
    return handler_cls


def handler_for(name: str):
    try:
        handler_cls = _handlers[name]
    except KeyError:
        raise UnknownTaskError(f"No handler registered for task '{name}'")
    return handler_cls()


def registered_names() -> list:
    return sorted(_handlers)
