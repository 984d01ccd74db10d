"""Command-line interface for generating callback registration methods.

Notes:
    - Generated modules import `same_callback` from `callbackgen.runtime`, or `same_object` with `--identity object`.
"""

from __future__ import annotations

import argparse
import logging
import os.path
from collections.abc import Sequence

from callbackgen.errors import CallbackGenError
from callbackgen.run import run
from callbackgen.writer_dto import IdentityMode, LockScope, MethodStyle

logger = logging.getLogger(__name__)


def type_list(value: str) -> list[str]:
    """Split the comma-separated `--type` value, rejecting lists without any name."""
    type_names = [name.strip() for name in value.split(",") if name.strip()]
    if not type_names:
        raise argparse.ArgumentTypeError(f"no type names in '{value}'")
    return type_names


def setup_parser() -> argparse.ArgumentParser:
    """Setup for the parser.

    Returns:
        argparse.ArgumentParser: The parser after setup.
    """
    parser = argparse.ArgumentParser(
        prog="callbackgen",
        description="Generate on/emit/remove methods for the callback fields of Python classes.",
    )

    parser.add_argument(
        "paths",
        type=str,
        nargs="*",
        default=["."],
        help="files, package directories or glob expressions to load types from; defaults to the current directory.",
    )

    parser.add_argument(
        "-t",
        "--type",
        type=type_list,
        required=True,
        help="comma-separated list of type names, e.g. 'User,Room' or 'example.user.User'.",
    )

    parser.add_argument(
        "--lock-field",
        type=str,
        default="",
        help="attribute holding the lock that guards keyed registration, e.g. '_lock'.",
    )

    parser.add_argument(
        "--lock-scope",
        type=str,
        choices=[LockScope.REGISTER, LockScope.ALL],
        default=LockScope.REGISTER,
        help="operations that take the lock: keyed registration only, or every operation.",
    )

    parser.add_argument(
        "--identity",
        type=str,
        choices=[IdentityMode.CODE, IdentityMode.OBJECT],
        default=IdentityMode.CODE,
        help="how remove methods match callbacks: by their code, or by object identity. "
        "Bound methods match by instance and function in both modes.",
    )

    parser.add_argument(
        "--method-style",
        type=str,
        choices=[MethodStyle.SNAKE, MethodStyle.PASCAL],
        default=MethodStyle.SNAKE,
        help="spelling of generated methods: 'on_snapshot' or 'OnSnapshot'.",
    )

    parser.add_argument(
        "--target-alias",
        type=str,
        default="",
        help="import the module of the types under this alias instead of importing names from it.",
    )

    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default="",
        help="output file; defaults to '<first type in snake_case>_callbacks.py' beside its source.",
    )

    output_group = parser.add_mutually_exclusive_group()

    output_group.add_argument(
        "--stdout",
        default=False,
        action="store_true",
        help="write the generated module to standard output instead of a file.",
    )

    parser.add_argument(
        "--no-format",
        dest="no_format",
        default=False,
        action="store_true",
        help="skip formatting the generated module with ruff.",
    )

    output_group.add_argument(
        "--pyright",
        default=False,
        action="store_true",
        help="validate the written module with pyright; cannot be combined with --stdout.",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        default=False,
        action="store_true",
        help="enable debug logging.",
    )

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the callback generator.

    Args:
        argv (Sequence[str] | None, optional): Run arguments. Defaults to None.

    Returns:
        int: Error code.
    """
    parser = setup_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    root_directory = os.getcwd()
    logger.debug("Working from root directory: %s", root_directory)

    try:
        run(args, root_directory, argv)
    except CallbackGenError as e:
        logger.error(f"callbackgen: {e}")
        return 1

    return 0
