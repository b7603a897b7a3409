# Copyright (c) 2025 SDTD Monitor contributors
#
# This file is part of SDTD Monitor.
#
# SDTD Monitor is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact the SDTD Monitor maintainers
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
Parsers for 7 Days to Die telnet console output.

Turns the loosely formatted text of the ``lp`` (list players) and ``gt``
(get time) commands into typed, immutable records:

    0. id=171, Alice, pos=(-2348.5, 45.0, 771.2), rot=(...), health=183, ...
    Day 17, 15:27

Numeric fields are parsed leniently: a value the server formats in an
unexpected way leaves the field at zero instead of failing the line.
Structural problems (a field without ``=``, a malformed clock) raise.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

import structlog

try:  # pragma: no cover - import wiring
    from .errors import FormatError, PlayerParseError
except ImportError:  # pragma: no cover - import wiring
    from errors import FormatError, PlayerParseError  # type: ignore[no-redef]

logger = structlog.get_logger()

# Leading "<index>. " column of an lp body line
INDEX_PREFIX_RE = re.compile(r"^\d+\. ")

# Leading integer: optional sign and digits, trailing text ignored
LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")

POSITION_RE = re.compile(
    r"^\(\s*([^,()]+?)\s*,\s*([^,()]+?)\s*,\s*([^,()]+?)\s*\)"
)

DAY_RE = re.compile(r"^Day\s+(\d+)$")
CLOCK_RE = re.compile(r"^(\d+):(\d+)$")


@dataclass(frozen=True, slots=True)
class Position:
    """World position of a player."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass(frozen=True, slots=True)
class PlayerRecord:
    """One player from the ``lp`` command output."""
    id: int = 0
    name: str = ""
    position: Position = field(default_factory=Position)
    health: int = 0
    deaths: int = 0
    zombies: int = 0
    players: int = 0
    score: int = 0
    level: int = 0
    pltfmid: str = ""
    crossid: str = ""
    ip: str = ""
    ping: int = 0


@dataclass(frozen=True, slots=True)
class GameTime:
    """In-game clock snapshot from the ``gt`` command."""
    days: int
    hours: int
    minutes: int

    def __str__(self) -> str:
        return f"Day {self.days}, {self.hours:02d}:{self.minutes:02d}"


def split_fields(line: str) -> List[str]:
    """
    Split a record line on commas, keeping parenthesized groups together.

    ``split_fields("a, (1, 2, 3), b")`` returns ``["a", "(1, 2, 3)", "b"]``.
    An unclosed ``(`` folds the rest of the line into the current field.
    Fields are stripped of surrounding whitespace.
    """
    parts: List[str] = []
    buffer: List[str] = []
    inside = False

    for char in line:
        if char == "," and not inside:
            parts.append("".join(buffer))
            buffer = []
            continue
        if char == "(":
            inside = True
        elif char == ")":
            inside = False
        buffer.append(char)

    parts.append("".join(buffer))
    return [part.strip() for part in parts]


def _lenient_int(key: str, value: str) -> int:
    match = LEADING_INT_RE.match(value)
    if match is None:
        logger.debug("player_field_not_integer", key=key, value=value)
        return 0
    return int(match.group(1))


def _lenient_position(key: str, value: str) -> Position:
    match = POSITION_RE.match(value)
    if match is not None:
        try:
            return Position(*(float(group) for group in match.groups()))
        except ValueError:
            pass
    logger.debug("player_field_not_position", key=key, value=value)
    return Position()


def _verbatim(key: str, value: str) -> str:
    return value


# key -> (record attribute, converter)
FIELD_CONVERTERS: Dict[str, tuple[str, Callable[[str, str], Any]]] = {
    "id": ("id", _lenient_int),
    "pos": ("position", _lenient_position),
    "health": ("health", _lenient_int),
    "deaths": ("deaths", _lenient_int),
    "zombies": ("zombies", _lenient_int),
    "players": ("players", _lenient_int),
    "score": ("score", _lenient_int),
    "level": ("level", _lenient_int),
    "pltfmid": ("pltfmid", _verbatim),
    "crossid": ("crossid", _verbatim),
    "ip": ("ip", _verbatim),
    "ping": ("ping", _lenient_int),
}


def _name_index(fields: List[str]) -> int:
    """
    Locate the positional display-name column.

    The live server layout is ``id=<n>, <name>, pos=...`` (name at index 1).
    Any other line is read as ``<name>, id=<n>, ...`` (name at index 0).
    The name column is taken verbatim, so a name may itself contain ``=``.
    """
    key, sep, _ = fields[0].partition("=")
    if sep and key.strip() == "id":
        return 1
    return 0


def parse_player_line(line: str) -> PlayerRecord:
    """
    Parse one ``lp`` body line into a PlayerRecord.

    Args:
        line: Body line with line terminator already removed.

    Returns:
        Parsed PlayerRecord. Keys the parser does not know are ignored.

    Raises:
        PlayerParseError: If a non-name field is not a ``key=value`` pair,
            or the line carries no field besides the name.
    """
    stripped = INDEX_PREFIX_RE.sub("", line.strip(), count=1)
    if not stripped:
        raise PlayerParseError(stripped, line=line)

    fields = split_fields(stripped)
    if len(fields) < 2:
        raise PlayerParseError(stripped, line=line)
    name_index = _name_index(fields)

    values: Dict[str, Any] = {}
    for index, part in enumerate(fields):
        if index == name_index:
            values["name"] = part
            continue

        key, sep, value = part.partition("=")
        if not sep:
            raise PlayerParseError(part, line=line)

        key = key.strip()
        converter = FIELD_CONVERTERS.get(key)
        if converter is None:
            continue

        attribute, convert = converter
        values[attribute] = convert(key, value.strip())

    return PlayerRecord(**values)


def parse_game_time(text: str) -> GameTime:
    """
    Parse a ``Day <d>, <h>:<m>`` clock line.

    Raises:
        FormatError: If the line does not have exactly that shape. No
            partial GameTime is ever returned.
    """
    parts = text.strip().split(",")
    if len(parts) != 2:
        raise FormatError(f"invalid time format: {text!r}", text=text)

    day_match = DAY_RE.match(parts[0].strip())
    if day_match is None:
        raise FormatError(f"failed to parse days: {parts[0].strip()!r}", text=text)

    clock_match = CLOCK_RE.match(parts[1].strip())
    if clock_match is None:
        raise FormatError(
            f"failed to parse hours and minutes: {parts[1].strip()!r}", text=text
        )

    return GameTime(
        days=int(day_match.group(1)),
        hours=int(clock_match.group(1)),
        minutes=int(clock_match.group(2)),
    )
