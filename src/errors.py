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
Exception types raised by the 7 Days to Die telnet console client.

ConsoleError
├── ConnectError      dial failed or timed out
├── ReadError         read failed, timed out, or the server hung up
├── WriteError        write/flush failed
├── AuthError         login confirmation marker missing
└── ParseError        a body line did not have the expected shape
    ├── PlayerParseError
    └── FormatError
"""

from __future__ import annotations


class ConsoleError(Exception):
    """Base class for all console client errors."""


class ConnectError(ConsoleError):
    """Could not open a connection to the console port."""


class ReadError(ConsoleError):
    """Reading from the console stream failed."""


class WriteError(ConsoleError):
    """Writing to the console stream failed."""


class AuthError(ConsoleError):
    """The server did not accept the telnet password."""


class ParseError(ConsoleError):
    """A console response line could not be parsed."""


class PlayerParseError(ParseError):
    """A player list line contained a field that is not ``key=value``."""

    def __init__(self, fragment: str, line: str = "") -> None:
        self.fragment = fragment
        self.line = line
        super().__init__(f"invalid key-value pair: '{fragment}'")


class FormatError(ParseError):
    """A game clock line did not match ``Day <d>, <h>:<m>``."""

    def __init__(self, message: str, text: str = "") -> None:
        self.text = text
        super().__init__(message)
