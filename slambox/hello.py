"""The smallest possible program: a greeting printed to standard output."""

from __future__ import annotations

import sys
from typing import TextIO

LIBRARY_GREETING = "Hello SLAM"
PROGRAM_GREETING = "Hello SLAM!"


def _emit(message: str, stream: TextIO | None = None) -> str:
    """Write ``message`` and a newline to ``stream`` and return the line written."""
    target = sys.stdout if stream is None else stream
    line = f"{message}\n"
    target.write(line)
    target.flush()
    return line


def print_hello() -> str:
    """Print the library greeting and return the line written."""
    return _emit(LIBRARY_GREETING)


def main(argv: list[str] | None = None) -> int:
    """Print the program greeting and return the exit status.

    The command takes no options; ``argv`` is accepted for a uniform
    entry-point signature and otherwise ignored.
    """
    line = _emit(PROGRAM_GREETING)
    return 0 if line.endswith("\n") else 1


if __name__ == "__main__":
    sys.exit(main())