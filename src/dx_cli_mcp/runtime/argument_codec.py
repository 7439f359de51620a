"""Space-preserving argument encoding for whitespace-split command lines.

Commands are composed as plain text and split on whitespace before being
handed to the process. A path such as ``/tmp/my dir/file.apex`` would be
broken into two tokens, so callers encode such values first and the runner
decodes every token right before it lands in argv.

The sentinel must not appear in caller input. ``encode`` raises
``ArgumentEncodingError`` in that case instead of producing a token that
would decode to something else.
"""

from __future__ import annotations

from .errors import ArgumentEncodingError

__all__ = [
    "SPACE_SENTINEL",
    "encode",
    "decode",
    "split_command_line",
]

SPACE_SENTINEL = "#DX*SPACE*#"


def encode(raw: str) -> str:
    """Replace spaces in a single logical argument with the sentinel.

    Raises:
        ArgumentEncodingError: If ``raw`` already contains the sentinel
    """
    if SPACE_SENTINEL in raw:
        raise ArgumentEncodingError(
            f"argument contains reserved sequence {SPACE_SENTINEL!r}: {raw!r}"
        )
    return raw.replace(" ", SPACE_SENTINEL)


def decode(token: str) -> str:
    """Restore spaces in a token produced by :func:`encode`."""
    return token.replace(SPACE_SENTINEL, " ")


def split_command_line(command_line: str) -> list[str]:
    """Split a composed command line and decode every token."""
    return [decode(token) for token in command_line.split()]
