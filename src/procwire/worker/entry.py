"""Entry point and transport resolution shared by host and worker.

Entry points cross the process boundary by import path
(``"package.module:function"``), so only module-level callables qualify.
The host checks the arity before spawning; the worker resolves the same
path again and calls it, passing a transport when it takes one argument.
"""

from __future__ import annotations

import importlib
import inspect
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from procwire.errors import InvalidEntryPoint

logger = logging.getLogger(__name__)

#: Process-wide default transport factory for one-argument entry points.
DEFAULT_TRANSPORT: str | None = "zmq:Context"

_REQUIRED_POSITIONAL = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


@dataclass(frozen=True)
class EntryPoint:
    """A resolved, importable worker entry point."""

    path: str
    wants_transport: bool
    search_path: str | None = None


def set_default_transport(path: str | None) -> None:
    """Replace the process-wide default transport factory."""
    global DEFAULT_TRANSPORT
    DEFAULT_TRANSPORT = path


def resolve_import_path(path: str) -> Any:
    """Import ``"module:qualname"`` and return the named object."""
    module_name, sep, qualname = path.partition(":")
    if not sep or not module_name or not qualname:
        msg = f"Invalid import path '{path}' — expected 'module:attribute'"
        raise InvalidEntryPoint(msg)

    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as exc:
        msg = f"Cannot import module '{module_name}': {exc}"
        raise InvalidEntryPoint(msg) from exc

    for part in qualname.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as exc:
            msg = f"Module '{module_name}' has no attribute '{qualname}'"
            raise InvalidEntryPoint(msg) from exc
    return obj


def load_entry_point(entry: str | Callable[..., Any]) -> EntryPoint:
    """Validate *entry* and return its import path and calling convention.

    Raises:
        InvalidEntryPoint: *entry* is not importable by path, or takes
            anything other than zero or one positional argument.
    """
    if isinstance(entry, str):
        path = entry
        target = resolve_import_path(path)
    elif callable(entry):
        path = _import_path_of(entry)
        target = entry
    else:
        msg = f"Entry point must be a callable or import path, got {type(entry).__name__}"
        raise InvalidEntryPoint(msg)

    if not callable(target):
        msg = f"Entry point '{path}' is not callable"
        raise InvalidEntryPoint(msg)

    arity = _positional_arity(target, path)
    if arity not in (0, 1):
        msg = (
            f"Entry point '{path}' must take zero or one argument, "
            f"but requires {arity}"
        )
        raise InvalidEntryPoint(msg)

    return EntryPoint(
        path=path,
        wants_transport=arity == 1,
        search_path=_search_path_for(path),
    )


def open_transport(path: str) -> Any:
    """Create a fresh transport from the factory named by *path*."""
    factory = resolve_import_path(path)
    return factory()


def close_transport(transport: Any) -> None:
    """Tear *transport* down: destroy(linger=0), else close(), else term()."""
    destroy = getattr(transport, "destroy", None)
    if callable(destroy):
        # zmq.Context: close every socket without lingering, then terminate.
        destroy(linger=0)
        return
    close = getattr(transport, "close", None)
    if callable(close):
        close()
        return
    term = getattr(transport, "term", None)
    if callable(term):
        term()
        return
    logger.warning("Transport %r has no destroy(), close() or term()", transport)


def _import_path_of(func: Callable[..., Any]) -> str:
    module_name = getattr(func, "__module__", None)
    qualname = getattr(func, "__qualname__", None)
    if not module_name or not qualname:
        msg = f"Entry point {func!r} has no module-level name"
        raise InvalidEntryPoint(msg)
    if "<" in qualname:
        msg = (
            f"Entry point '{qualname}' is a lambda or nested function; "
            "workers can only import module-level callables"
        )
        raise InvalidEntryPoint(msg)
    if module_name == "__main__":
        msg = (
            f"Entry point '{qualname}' lives in __main__, "
            "which a worker process cannot import"
        )
        raise InvalidEntryPoint(msg)

    path = f"{module_name}:{qualname}"
    if resolve_import_path(path) is not func:
        msg = f"Entry point {func!r} is not reachable as '{path}'"
        raise InvalidEntryPoint(msg)
    return path


def _positional_arity(target: Callable[..., Any], path: str) -> int:
    try:
        signature = inspect.signature(target)
    except (TypeError, ValueError) as exc:
        msg = f"Cannot inspect the signature of '{path}': {exc}"
        raise InvalidEntryPoint(msg) from exc

    required = 0
    for param in signature.parameters.values():
        if param.default is not inspect.Parameter.empty:
            continue
        if param.kind in _REQUIRED_POSITIONAL:
            required += 1
        elif param.kind is inspect.Parameter.KEYWORD_ONLY:
            msg = f"Entry point '{path}' requires keyword argument '{param.name}'"
            raise InvalidEntryPoint(msg)
    return required


def _search_path_for(path: str) -> str | None:
    """Directory a fresh interpreter needs on sys.path to import *path*."""
    module_name = path.partition(":")[0]
    module = sys.modules.get(module_name)
    filename = getattr(module, "__file__", None)
    if not filename:
        return None

    root = Path(filename).resolve().parent
    if Path(filename).name == "__init__.py":
        root = root.parent
    for _ in range(module_name.count(".")):
        root = root.parent
    return str(root)
