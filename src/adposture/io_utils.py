"""Shared utilities for handling CLI input and output streams."""
from __future__ import annotations

import io
import os
from dataclasses import dataclass
from typing import IO, Iterable, Optional, Tuple, Union

import click


@dataclass
class InputSource:
    """Represents an input source for CLI commands.

    Directory inputs (BloodHound exports) carry no handle; detectors read the
    files inside them.
    """

    path: str
    handle: Optional[IO] = None
    is_stdin: bool = False

    @property
    def display_name(self) -> str:
        return "stdin" if self.is_stdin else self.path

    @property
    def is_directory(self) -> bool:
        return self.handle is None and not self.is_stdin

    def read_bytes(self) -> bytes:
        if self.handle is None:
            raise click.ClickException(f"{self.display_name} is a directory")
        return self.handle.read()


def _stdin_handle(mode: str) -> IO:
    if "b" in mode:
        return click.get_binary_stream("stdin")
    return click.get_text_stream("stdin")


def resolve_input(raw_path: str, mode: str = "rb", *, allow_directory: bool = False) -> InputSource:
    """Resolve a CLI input argument into an ``InputSource``.

    ``-`` selects stdin. Directories are accepted only when ``allow_directory``
    is set.
    """

    if raw_path == "-":
        return InputSource(path="-", handle=_stdin_handle(mode), is_stdin=True)

    absolute = os.path.abspath(raw_path)
    if os.path.isdir(absolute):
        if not allow_directory:
            raise click.ClickException(f"Expected a file but got a directory: {raw_path}")
        return InputSource(path=absolute)

    if not os.path.exists(absolute):
        raise click.ClickException(f"No such file or directory: {raw_path}")

    try:
        handle = open(absolute, mode)
    except OSError as exc:  # pragma: no cover - thin wrapper
        raise click.ClickException(str(exc)) from exc
    return InputSource(path=absolute, handle=handle)


def resolve_output_handle(
    output: Optional[Union[str, IO]], mode: str = "w"
) -> Tuple[IO, bool]:
    """Return an output handle and whether it should be closed by the caller."""

    if output is None:
        return click.get_text_stream("stdout"), False

    if isinstance(output, io.IOBase):
        return output, False

    if isinstance(output, str):
        if output == "-":
            return click.get_text_stream("stdout"), False
        try:
            return open(output, mode, encoding="utf-8"), True
        except OSError as exc:  # pragma: no cover - thin wrapper
            raise click.ClickException(str(exc)) from exc

    raise click.ClickException("Invalid output destination")


def close_inputs(inputs: Iterable[InputSource]) -> None:
    """Close any non-stdin input handles."""

    for source in inputs:
        if source.handle is not None and not source.is_stdin:
            source.handle.close()


def ensure_directory(path: str) -> str:
    """Create ``path`` (and parents) if needed and return its absolute form."""

    absolute = os.path.abspath(path)
    try:
        os.makedirs(absolute, exist_ok=True)
    except OSError as exc:  # pragma: no cover - thin wrapper
        raise click.ClickException(str(exc)) from exc
    return absolute

