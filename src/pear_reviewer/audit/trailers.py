"""Commit message trailer parsing."""

from __future__ import annotations

import re
from collections.abc import Iterable

_TRAILER_LINE = re.compile(r"^(?P<key>[A-Za-z0-9][A-Za-z0-9-]*)\s*:\s*(?P<value>.*\S)\s*$")
_CHERRY_PICK = re.compile(r"^\(cherry picked from commit [0-9a-f]+\)$")


def parse_trailers(message: str) -> list[tuple[str, str]]:
    """Return ``(key, value)`` pairs from the trailer block of a commit message.

    The trailer block is the last paragraph of the message, provided the
    message has a subject paragraph before it and every line in the block is a
    ``Key: value`` line, a whitespace-indented continuation, or a cherry-pick
    note.
    """
    paragraphs = [p for p in re.split(r"\n[ \t]*\n", message.replace("\r\n", "\n").strip()) if p.strip()]
    if len(paragraphs) < 2:
        return []

    trailers: list[tuple[str, str]] = []
    for line in paragraphs[-1].splitlines():
        if not line.strip():
            continue
        if line[0] in " \t":
            if not trailers:
                return []
            key, value = trailers[-1]
            trailers[-1] = (key, f"{value} {line.strip()}")
            continue
        if _CHERRY_PICK.match(line.strip()):
            continue
        match = _TRAILER_LINE.match(line)
        if match is None:
            return []
        trailers.append((match.group("key"), match.group("value")))
    return trailers


def trailer_values(message: str, keys: Iterable[str]) -> list[str]:
    """Values of trailers whose key matches one of ``keys`` (case-insensitive)."""
    wanted = {key.strip().casefold() for key in keys if key.strip()}
    return [value for key, value in parse_trailers(message) if key.casefold() in wanted]
