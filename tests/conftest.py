
"""pytest configuration and shared fixtures.

The scripted console replaces ``asyncio.open_connection`` with a real
StreamReader fed from a list of lines and a mock writer that records
everything the client sends.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Callable, Generator, List, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# Add src/ to Python path for absolute imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

pytest_plugins = ['pytest_asyncio']


def pytest_configure(config) -> None:
    """Register the asyncio marker."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async (deselect with '-m \"not asyncio\"')"
    )


class ScriptedConsole:
    """One fake telnet console connection."""

    def __init__(self, lines: List[str], eof: bool = True) -> None:
        self.lines = lines
        self.eof = eof
        self.reader: Optional[asyncio.StreamReader] = None

        self.writer = MagicMock()
        self.writer.write = MagicMock()
        self.writer.drain = AsyncMock()
        self.writer.close = MagicMock()
        self.writer.wait_closed = AsyncMock()

    def build_reader(self) -> asyncio.StreamReader:
        reader = asyncio.StreamReader()
        for line in self.lines:
            reader.feed_data(f"{line}\r\n".encode("utf-8"))
        if self.eof:
            reader.feed_eof()
        self.reader = reader
        return reader

    @property
    def sent(self) -> List[str]:
        """Lines written by the client, terminators removed."""
        return [
            call.args[0].decode("utf-8").rstrip("\n")
            for call in self.writer.write.call_args_list
        ]


LOGIN_SCRIPT = [
    "*** Connected with 7DTD server.",
    "Logon successful.",
]


@pytest.fixture
def scripted_console() -> Generator[Callable[..., List[ScriptedConsole]], None, None]:
    """
    Factory patching ``asyncio.open_connection`` with scripted consoles.

    Usage:
        consoles = scripted_console(["banner", "Logon successful.", ...])
        consoles = scripted_console(script_a, script_b)  # one per connect

    Returns the list of ScriptedConsole objects, in connect order.
    """
    consoles: List[ScriptedConsole] = []
    pending: List[ScriptedConsole] = []

    async def fake_open_connection(host, port, **kwargs):
        console = pending.pop(0)
        consoles.append(console)
        return console.build_reader(), console.writer

    def factory(*scripts: List[str], eof: bool = True) -> List[ScriptedConsole]:
        pending.extend(ScriptedConsole(list(script), eof=eof) for script in scripts)
        return consoles

    with patch("asyncio.open_connection", side_effect=fake_open_connection) as mock_open:
        factory.mock_open = mock_open  # type: ignore[attr-defined]
        yield factory
