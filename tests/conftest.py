"""Pytest configuration and fixtures for callbackgen tests."""

from __future__ import annotations

import importlib
import sys
from pathlib import Path
from textwrap import dedent

import pytest

from callbackgen.run import generate_source
from callbackgen.source_resolver import SourceResolver
from callbackgen.writer_dto import GenerateOptions

SAMPLE_PACKAGE = "chat"

TYPES_SOURCE = '''
"""Callback types of the chat sample."""

from __future__ import annotations

from collections.abc import Callable
from typing import NewType, Protocol

RequestId = NewType("RequestId", str)


class Snapshot:
    def __init__(self, version: int) -> None:
        self.version = version


class SnapshotCallback(Protocol):
    def __call__(self, snapshot: Snapshot, *, full: bool = False) -> None: ...


TextMessageCallback = Callable[[str, int], None]
'''

USER_SOURCE = '''
"""A chat user with callback fields."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import ClassVar

from chat.types import RequestId, SnapshotCallback, TextMessageCallback

StatusCallback = Callable[[str], None]


class User:
    registry: ClassVar[dict[str, "User"]] = {}

    _lock: threading.Lock
    snapshot_callbacks: list[SnapshotCallback]
    messageByRequestIdCallbacks: dict[RequestId, list[TextMessageCallback]] | None
    closed_callbacks: list[Callable[[], None]]
    status_callbacks: list[StatusCallback]
    pending_callbacks: dict[str, list[TextMessageCallback]]
    flagCallbacks: int
    name: str

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self.snapshot_callbacks = []
        self.messageByRequestIdCallbacks = None
        self.closed_callbacks = []
        self.status_callbacks = []
        self.pending_callbacks = {}
        self.flagCallbacks = 0

    def display_name(self) -> str:
        return self.name
'''

ROOM_SOURCE = '''
"""A chat room; its methods use `r` as receiver."""

from __future__ import annotations

from chat import types


class Room:
    def __init__(r) -> None:
        r.members: list[str] = []
        r.joined_callbacks: list[types.TextMessageCallback] = []

    def size(r) -> int:
        return len(r.members)
'''

BOX_SOURCE = '''
"""A box keyed by a type whose parameter name matches a local of the generated methods."""

from __future__ import annotations

from collections.abc import Callable
from typing import NewType

Found = NewType("Found", str)

DoneCallback = Callable[[], None]


class Box:
    doneByFoundCallbacks: dict[Found, list[DoneCallback]] | None

    def __init__(self) -> None:
        self.doneByFoundCallbacks = None
'''


def write_sample_package(root: Path) -> Path:
    """Write the `chat` sample package below `root`.

    Args:
        root: Directory that becomes the import root of the package.

    Returns:
        The package directory.
    """
    package = root / SAMPLE_PACKAGE
    package.mkdir()
    (package / "__init__.py").write_text("")
    (package / "types.py").write_text(dedent(TYPES_SOURCE))
    (package / "user.py").write_text(dedent(USER_SOURCE))
    (package / "room.py").write_text(dedent(ROOM_SOURCE))
    (package / "box.py").write_text(dedent(BOX_SOURCE))
    return package


@pytest.fixture
def sample_package(tmp_path):
    """Provide the directory of a freshly written `chat` sample package."""
    return write_sample_package(tmp_path)


@pytest.fixture
def resolver(sample_package):
    """Provide a resolver that has loaded the sample package."""
    return SourceResolver.from_paths([sample_package])


@pytest.fixture
def generate(resolver):
    """Provide a function that generates the callback module for types of the sample package."""

    def _generate(type_names: str = "User", **options) -> str:
        return generate_source(resolver, type_names.split(","), GenerateOptions(**options)).source

    return _generate


@pytest.fixture
def import_generated(sample_package, monkeypatch):
    """Provide a function that writes generated source into the sample package and imports it.

    The sample package is removed from `sys.modules` afterwards, so every test imports its own copy.
    """
    monkeypatch.syspath_prepend(str(sample_package.parent))

    def _import(source: str, module_name: str = "user_callbacks"):
        (sample_package / f"{module_name}.py").write_text(source)
        importlib.invalidate_caches()
        return importlib.import_module(f"{SAMPLE_PACKAGE}.{module_name}")

    yield _import

    for name in list(sys.modules):
        if name == SAMPLE_PACKAGE or name.startswith(f"{SAMPLE_PACKAGE}."):
            del sys.modules[name]
