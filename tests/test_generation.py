"""Tests for the generated module text.

Tests cover:
- Method naming for plain and keyed fields, in both naming styles
- Method bodies of the sequence and keyed sequence templates
- Import section and type name qualification
- Locking and identity options
- Determinism of the output
"""

from __future__ import annotations

import ast

import pytest

from callbackgen.errors import UnexpectedFieldShapeError
from callbackgen.receiver import collect_receiver_names
from callbackgen.run import generate_source, generated_header
from callbackgen.source_resolver import SourceResolver
from callbackgen.type_model import NamedType, SequenceType, SignatureType, TargetType
from callbackgen.writer import Writer
from callbackgen.writer_dto import CallbackField, GenerateOptions


def method_names(source: str, class_name: str) -> list[str]:
    """Names of the methods of a class in generated source, in order."""
    tree = ast.parse(source)
    class_def = next(node for node in tree.body if isinstance(node, ast.ClassDef) and node.name == class_name)
    return [node.name for node in class_def.body if isinstance(node, ast.FunctionDef)]


class TestModuleLayout:
    """Test the overall structure of the generated module."""

    def test_output_is_valid_python(self, generate):
        """Test that the generated module parses."""
        ast.parse(generate())

    def test_docstring_and_future_import(self, generate):
        """Test the module docstring and the postponed evaluation of annotations."""
        source = generate()
        lines = source.splitlines()

        assert lines[0] == '"""This is an automatically generated callback module for `User`."""'
        assert "from __future__ import annotations" in lines

    def test_header(self, resolver):
        """Test that the header comment is written first."""
        header = generated_header(["-t", "User", "chat"])
        source = generate_source(resolver, ["User"], header=header).source

        assert source.splitlines()[0] == '# Code generated by "callbackgen -t User chat"; DO NOT EDIT.'

    def test_mixin_class(self, generate):
        """Test that one mixin class is generated per type."""
        source = generate("User,Room")

        assert "class UserCallbacksMixin:" in source
        assert "class RoomCallbacksMixin:" in source
        assert '"""Callback registration for `chat.user.User`."""' in source
        assert source.index("class UserCallbacksMixin:") < source.index("class RoomCallbacksMixin:")

    def test_field_annotations(self, generate):
        """Test that the mixin re-declares the callback fields for type checkers."""
        source = generate()

        assert "    snapshot_callbacks: list[SnapshotCallback]\n" in source
        assert "    messageByRequestIdCallbacks: dict[RequestId, list[TextMessageCallback]] | None\n" in source
        assert "    closed_callbacks: list[Callable[[], None]]\n" in source

    def test_deterministic(self, generate):
        """Test that generating twice gives identical output."""
        assert generate("User,Room") == generate("User,Room")

    def test_type_without_callback_fields(self, sample_package):
        """Test that a type without callback fields gets an empty mixin and no runtime import."""
        (sample_package / "plain.py").write_text("class Plain:\n    name: str\n")
        source = generate_source(SourceResolver.from_paths([sample_package]), ["Plain"]).source

        assert "class PlainCallbacksMixin:" in source
        assert "same_callback" not in source
        assert method_names(source, "PlainCallbacksMixin") == []


class TestMethodNames:
    """Test the names of generated methods."""

    def test_snake_case_names(self, generate):
        """Test the default naming style."""
        assert method_names(generate(), "UserCallbacksMixin") == [
            "on_snapshot",
            "emit_snapshot",
            "remove_on_snapshot",
            "on_message_by_request_id",
            "emit_message_by_request_id",
            "remove_on_message_by_request_id",
            "on_closed",
            "emit_closed",
            "remove_on_closed",
            "on_status",
            "emit_status",
            "remove_on_status",
        ]

    def test_pascal_case_names(self, generate):
        """Test the PascalCase naming style."""
        names = method_names(generate(method_style="pascal"), "UserCallbacksMixin")

        assert names[:6] == [
            "OnSnapshot",
            "EmitSnapshot",
            "RemoveOnSnapshot",
            "OnMessageByRequestId",
            "EmitMessageByRequestId",
            "RemoveOnMessageByRequestId",
        ]

    def test_skipped_fields_have_no_methods(self, generate):
        """Test that fields of unsupported shapes are left out."""
        source = generate()

        assert "pending" not in source
        assert "flag" not in source.lower()
        assert "registry" not in source


class TestSequenceTemplate:
    """Test the methods generated for a list of callbacks."""

    def test_register(self, generate):
        """Test that registration appends."""
        assert (
            "    def on_snapshot(self, cb: SnapshotCallback) -> None:\n"
            "        self.snapshot_callbacks.append(cb)\n"
        ) in generate()

    def test_emit_forwards_parameters(self, generate):
        """Test that emit repeats the callback parameters and iterates over a snapshot of the list."""
        assert (
            "    def emit_snapshot(self, snapshot: chat.types.Snapshot, *, full: bool = False) -> None:\n"
            "        for cb in list(self.snapshot_callbacks):\n"
            "            cb(snapshot, full=full)\n"
        ) in generate()

    def test_emit_unnamed_parameters(self, generate):
        """Test that parameters of `Callable[[...], R]` are named by position."""
        source = generate()

        assert "    def emit_status(self, arg0: str) -> None:\n" in source
        assert "    def emit_closed(self) -> None:\n" in source
        assert "            cb()\n" in source

    def test_remove(self, generate):
        """Test that removal filters by callback identity and reassigns only if something matched."""
        assert (
            "    def remove_on_snapshot(self, needle: SnapshotCallback) -> bool:\n"
            "        found = False\n"
            "        new_callbacks: list[SnapshotCallback] = []\n"
            "        for cb in self.snapshot_callbacks:\n"
            "            if same_callback(cb, needle):\n"
            "                found = True\n"
            "            else:\n"
            "                new_callbacks.append(cb)\n"
            "\n"
            "        if found:\n"
            "            self.snapshot_callbacks = new_callbacks\n"
            "\n"
            "        return found\n"
        ) in generate()

    def test_receiver_of_hand_written_methods(self, generate):
        """Test that generated methods use the receiver name of the type's own methods."""
        source = generate("Room")

        assert "    def on_joined(r, cb: types.TextMessageCallback) -> None:\n" in source
        assert "        r.joined_callbacks.append(cb)\n" in source


class TestKeyedSequenceTemplate:
    """Test the methods generated for a dict of callback lists."""

    def test_register_initializes_mapping(self, generate):
        """Test that registration creates the dict and the list on first use."""
        assert (
            "    def on_message_by_request_id(self, request_id: RequestId, cb: TextMessageCallback) -> None:\n"
            "        if self.messageByRequestIdCallbacks is None:\n"
            "            self.messageByRequestIdCallbacks = {}\n"
            "        self.messageByRequestIdCallbacks.setdefault(request_id, []).append(cb)\n"
        ) in generate()

    def test_emit(self, generate):
        """Test that emit returns early for a missing dict or key."""
        assert (
            "    def emit_message_by_request_id(self, request_id: RequestId, arg0: str, arg1: int) -> None:\n"
            "        if self.messageByRequestIdCallbacks is None:\n"
            "            return\n"
            "\n"
            "        callbacks = self.messageByRequestIdCallbacks.get(request_id)\n"
            "        if callbacks is None:\n"
            "            return\n"
            "\n"
            "        for cb in list(callbacks):\n"
            "            cb(arg0, arg1)\n"
        ) in generate()

    def test_remove(self, generate):
        """Test that removal returns False early and writes the filtered list back under the key."""
        source = generate()

        assert (
            "    def remove_on_message_by_request_id(self, request_id: RequestId, needle: TextMessageCallback) -> bool:\n"
            "        if self.messageByRequestIdCallbacks is None:\n"
            "            return False\n"
        ) in source
        assert "            self.messageByRequestIdCallbacks[request_id] = new_callbacks\n" in source

    def test_pascal_key_parameter(self, generate):
        """Test that the key parameter is lowerCamelCase in the PascalCase style."""
        assert "def OnMessageByRequestId(self, requestId: RequestId, cb: TextMessageCallback) -> None:" in generate(
            method_style="pascal"
        )


class TestOptions:
    """Test generation options."""

    def test_lock_register_scope(self, generate):
        """Test that only keyed registration takes the lock by default."""
        source = generate(lock_field="_lock")

        assert (
            "    def on_message_by_request_id(self, request_id: RequestId, cb: TextMessageCallback) -> None:\n"
            "        with self._lock:\n"
            "            if self.messageByRequestIdCallbacks is None:\n"
        ) in source
        assert source.count("with self._lock:") == 1
        assert "    _lock: threading.Lock\n" in source
        assert "    import threading\n" in source

    def test_lock_all_scope(self, generate):
        """Test that every operation takes the lock with the `all` scope."""
        source = generate(lock_field="_lock", lock_scope="all")

        assert source.count("with self._lock:") == 12
        assert (
            "    def on_snapshot(self, cb: SnapshotCallback) -> None:\n"
            "        with self._lock:\n"
            "            self.snapshot_callbacks.append(cb)\n"
        ) in source

    def test_undeclared_lock_field(self, generate, caplog):
        """Test that an undeclared lock field is still used, with a warning."""
        source = generate(lock_field="_mutex")

        assert "with self._mutex:" in source
        assert "_mutex:" not in source.split("def ")[0]
        assert "Lock field '_mutex' is not declared" in caplog.text

    def test_object_identity(self, generate):
        """Test that object identity mode compares through the runtime helper that handles bound methods."""
        source = generate(identity="object")

        assert "from callbackgen.runtime import same_object\n" in source
        assert "if same_object(cb, needle):" in source
        assert "same_callback" not in source

    def test_code_identity(self, generate):
        """Test that code identity mode imports the runtime helper at runtime."""
        source = generate()

        assert "from callbackgen.runtime import same_callback\n" in source
        assert source.index("from callbackgen.runtime import same_callback") < source.index("if TYPE_CHECKING:")

    def test_target_alias(self, generate):
        """Test that names of the target module go through the alias."""
        source = generate(target_alias="users")

        assert "    import chat.user as users\n" in source
        assert "    status_callbacks: list[users.StatusCallback]\n" in source
        assert "from chat.user import" not in source

    def test_target_module_names_imported(self, generate):
        """Test that names of the target module are imported by name without an alias."""
        source = generate()

        assert "    from chat.user import StatusCallback\n" in source
        assert "    status_callbacks: list[StatusCallback]\n" in source


class TestImports:
    """Test the import section."""

    def test_type_checking_block(self, generate):
        """Test that type imports only happen for type checkers."""
        source = generate()

        assert (
            "if TYPE_CHECKING:\n"
            "    import chat.types\n"
            "\n"
            "    from chat.types import RequestId, SnapshotCallback, TextMessageCallback\n"
            "    from chat.user import StatusCallback\n"
            "    from collections.abc import Callable\n"
        ) in source

    def test_module_import_through_symbol(self, generate):
        """Test that `from chat import types` in the source is reused as `types.X`."""
        source = generate("Room")

        assert "    from chat import types\n" in source

    def test_imports_shared_by_types(self, generate):
        """Test that generating two types gives one import section."""
        source = generate("User,Room")

        assert source.count("if TYPE_CHECKING:") == 1
        assert source.count("from callbackgen.runtime import same_callback") == 1


class TestErrors:
    """Test errors raised while writing."""

    def test_unexpected_shape(self):
        """Test that a field without a recognized shape aborts generation."""
        target = TargetType(module="example", name="Thing")
        callback = SignatureType((), NamedType("builtins", "None"))
        field = CallbackField(
            type_name="Thing",
            type_full_name="example.Thing",
            field_name="doneCallbacks",
            event_name="Done",
            element_type=callback,
            params=(),
            shape="set",
            declared_type=SequenceType(callback),
            storage_type=SequenceType(callback),
        )

        writer = Writer([(target, [field])], collect_receiver_names([target]), GenerateOptions())

        with pytest.raises(UnexpectedFieldShapeError):
            writer.dumps()
