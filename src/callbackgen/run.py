"""Top-level module for callback generation."""

from __future__ import annotations

import argparse
import logging
import os.path
import shlex
import subprocess
import sys
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from callbackgen import helper
from callbackgen.classifier import classify_fields
from callbackgen.errors import NoTypesError, OutputWriteError, PyrightValidationError
from callbackgen.receiver import collect_receiver_names
from callbackgen.source_resolver import SourceResolver
from callbackgen.type_model import TargetType, TypeResolver
from callbackgen.writer import Writer
from callbackgen.writer_dto import CallbackField, GenerateOptions

logger = logging.getLogger(__name__)

PROGRAM_NAME = "callbackgen"
OUTPUT_SUFFIX = "_callbacks.py"


@dataclass
class GenerationResult:
    """The generated module and what it was generated from."""

    source: str
    targets: list[TargetType]
    fields: list[list[CallbackField]]


def generated_header(argv: Sequence[str]) -> str:
    """The comment that marks a module as generated."""
    return f'# Code generated by "{PROGRAM_NAME} {shlex.join(argv)}"; DO NOT EDIT.'


def generate_source(
    resolver: TypeResolver,
    type_names: Sequence[str],
    options: GenerateOptions | None = None,
    header: str | None = None,
) -> GenerationResult:
    """Entry-point for generating the callback module of a list of types.

    Args:
        resolver (TypeResolver): Supplies the resolved target types.
        type_names (Sequence[str]): The types to generate callback methods for.
        options (GenerateOptions | None): Generation options.
        header (str | None): Comment line placed at the top of the module.

    Raises:
        NoTypesError: If `type_names` is empty.
        TypeNotFoundError: If a type cannot be found.
        AmbiguousTypeError: If a type name matches more than one class.
        UnexpectedFieldShapeError: If a classified field has no recognized shape.

    Returns:
        GenerationResult: The unformatted module source.
    """
    if not type_names:
        raise NoTypesError("no type names given")

    options = options or GenerateOptions()

    targets = [resolver.resolve(type_name) for type_name in type_names]
    binding = collect_receiver_names(targets)
    fields = [classify_fields(target, binding, options) for target in targets]

    writer = Writer(list(zip(targets, fields)), binding, options, header)
    return GenerationResult(source=writer.dumps(), targets=targets, fields=fields)


def format_outputs(raw_input: str) -> str:
    """Formats raw input using ruff.

    Args:
        raw_input (str): The unformatted input.

    Returns:
        str: The formatted outputs.
    """
    try:
        # Write to temporary file for ruff to process
        with tempfile.NamedTemporaryFile(mode="w", suffix=".py", delete=False, encoding="utf-8") as f:
            temp_path = Path(f.name)
            f.write(raw_input)

        try:
            # Run ruff check --fix to fix import ordering
            subprocess.run(
                ["ruff", "check", "--fix", "--select", "I", str(temp_path)],
                capture_output=True,
                check=False,  # Don't raise on non-zero exit
            )

            subprocess.run(
                ["ruff", "format", str(temp_path)],
                capture_output=True,
                check=True,
            )

            return temp_path.read_text(encoding="utf-8")

        finally:
            temp_path.unlink(missing_ok=True)

    except subprocess.CalledProcessError as e:
        logger.error(f"Ruff formatting failed: {e}")
        logger.error(f"Stdout: {e.stdout.decode('utf-8', errors='replace')}")
        logger.error(f"Stderr: {e.stderr.decode('utf-8', errors='replace')}")
        # Return unformatted output on error
        return raw_input
    except OSError as e:
        logger.error(f"Could not run ruff, writing unformatted output: {e}")
        return raw_input


def validate_with_pyright(output_path: str) -> None:
    """Validate a generated module using pyright.

    Args:
        output_path: The generated module.

    Raises:
        PyrightValidationError: If pyright finds any type errors.
    """
    logger.info(f"Validating {output_path} with pyright...")

    try:
        result = subprocess.run(
            ["pyright", output_path],
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        logger.error("pyright not found. Please install pyright: pip install pyright")
        raise PyrightValidationError("pyright command not found. Please install pyright.")
    except subprocess.SubprocessError as e:
        error_msg = f"Error running pyright: {e}"
        logger.error(error_msg)
        raise PyrightValidationError(error_msg)

    error_count = result.stdout.count(" error:")

    if error_count > 0 or result.returncode != 0:
        error_msg = f"Pyright validation failed with {error_count} error(s):\n\n{result.stdout}"
        logger.error(error_msg)
        raise PyrightValidationError(error_msg)

    logger.info("✓ Pyright validation passed - no type errors found")


def default_output_path(target: TargetType, type_name: str, root_directory: str) -> str:
    """Where the module is written unless an output path is given: `<type>_callbacks.py` beside the type."""
    directory = os.path.dirname(str(target.path)) if target.path is not None else root_directory
    base_name = helper.to_snake_case(type_name.rsplit(".", 1)[-1]) + OUTPUT_SUFFIX
    return os.path.join(directory, base_name)


def write_output(source: str, output_path: str) -> None:
    """Write the generated module.

    Raises:
        OutputWriteError: If the file cannot be written.
    """
    try:
        with open(output_path, "w", encoding="utf8") as output_file:
            output_file.write(source)
    except OSError as e:
        raise OutputWriteError(f"writing output: {e}") from e

    logger.info(f"Wrote callbacks to '{output_path}'.")


def options_from_args(args: argparse.Namespace) -> GenerateOptions:
    """Map parsed command-line arguments onto generation options."""
    return GenerateOptions(
        lock_field=args.lock_field,
        lock_scope=args.lock_scope,
        identity=args.identity,
        method_style=args.method_style,
        target_alias=args.target_alias,
    )


def run(args: argparse.Namespace, root_directory: str, argv: Sequence[str] | None = None) -> str:
    """Run the generator for the types and source paths given on the command line.

    Args:
        args (argparse.Namespace): The arguments that were passed when calling the generator.
        root_directory (str): The directory, from which the generator is executed.
        argv (Sequence[str] | None): The raw arguments, repeated in the generated header.

    Returns:
        str: The generated module source.
    """
    type_names: list[str] = args.type
    paths = [os.path.join(root_directory, path) for path in (args.paths or ["."])]

    resolver = SourceResolver.from_paths(paths)
    header = generated_header(argv if argv is not None else sys.argv[1:])
    result = generate_source(resolver, type_names, options_from_args(args), header)

    source = result.source if args.no_format else format_outputs(result.source)

    if args.stdout:
        try:
            sys.stdout.write(source)
        except OSError as e:
            raise OutputWriteError(f"writing output: {e}") from e
        return source

    output_path = args.output
    if output_path:
        output_path = os.path.join(root_directory, output_path)
    else:
        output_path = default_output_path(result.targets[0], type_names[0], root_directory)

    write_output(source, output_path)

    if args.pyright:
        validate_with_pyright(output_path)

    return source
