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
Telnet console client for 7 Days to Die servers.

The console is a line-oriented text stream:

    server: <banner>
    client: <password>
    server: Logon successful.
    client: lp
    server: ... INF Executing command 'lp' by Telnet from 10.8.0.1:52594
    server: 0. id=171, Alice, pos=(...), ...
    server: Total of 1 in the game
    client: exit

ConsoleSession owns one connection and walks it through the
IDLE -> CONNECTING -> AUTHENTICATING -> READY -> EXECUTING -> DRAINING
-> CLOSING -> CLOSED lifecycle. TelnetClient opens a fresh session for every
operation and always closes it, whether the operation succeeds or fails.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import structlog

try:  # pragma: no cover - import wiring
    from .console_parser import GameTime, PlayerRecord, parse_game_time, parse_player_line
    from .errors import AuthError, ConnectError, ConsoleError, ReadError, WriteError
except ImportError:  # pragma: no cover - import wiring
    from console_parser import GameTime, PlayerRecord, parse_game_time, parse_player_line  # type: ignore[no-redef]
    from errors import AuthError, ConnectError, ConsoleError, ReadError, WriteError  # type: ignore[no-redef]

logger = structlog.get_logger()

LOGIN_MARKER = "Logon successful."
EXECUTING_MARKER = "Executing command '{command}' by Telnet"
END_OF_PLAYERS_MARKER = "Total of "

LIST_PLAYERS_COMMAND = "lp"
GET_TIME_COMMAND = "gt"
LOGOUT_COMMAND = "exit"

DEFAULT_PORT = 8081
DEFAULT_TIMEOUT = 10.0
LOGOUT_TIMEOUT = 2.0
MAX_LINE_BYTES = 64 * 1024


class SessionState(str, Enum):
    """Lifecycle of a console session."""
    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    EXECUTING = "executing"
    DRAINING = "draining"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class GameStatus:
    """Game clock plus who is online, for presence displays."""
    game_time: GameTime
    players: int
    online: Tuple[str, ...] = ()


class ConsoleSession:
    """One authenticated connection to the telnet console."""

    def __init__(
        self,
        host: str,
        port: int,
        password: str,
        connect_timeout: float = DEFAULT_TIMEOUT,
        read_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """
        Initialize an unconnected session.

        Args:
            host: Console host name or address.
            port: Console (telnet) port.
            password: Telnet password sent on login.
            connect_timeout: Seconds allowed for the TCP connect.
            read_timeout: Seconds allowed for each single read or write.
                The deadline is renewed on every call.
        """
        self.host = host
        self.port = port
        self.password = password
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout

        self.state = SessionState.IDLE
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    async def __aenter__(self) -> "ConsoleSession":
        try:
            await self.open()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if exc_type is not None and self.state is not SessionState.FAILED:
            logger.debug(
                "console_session_aborted",
                host=self.host,
                port=self.port,
                state=self.state.value,
                error_type=exc_type.__name__,
            )
            self.state = SessionState.FAILED
        await self.close()

    async def open(self) -> None:
        """Connect and log in. Leaves the session READY."""
        if self.state is not SessionState.IDLE:
            raise ConsoleError(f"cannot open session in state '{self.state.value}'")

        self.state = SessionState.CONNECTING
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, limit=MAX_LINE_BYTES),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            self.state = SessionState.FAILED
            logger.warning(
                "console_connect_timeout",
                host=self.host,
                port=self.port,
                timeout=self.connect_timeout,
            )
            raise ConnectError(
                f"Timed out connecting to {self.host}:{self.port} "
                f"after {self.connect_timeout}s"
            ) from e
        except OSError as e:
            self.state = SessionState.FAILED
            logger.warning(
                "console_connect_failed",
                host=self.host,
                port=self.port,
                error=str(e),
            )
            raise ConnectError(
                f"Failed to connect to {self.host}:{self.port}: {e}"
            ) from e

        logger.debug("console_connected", host=self.host, port=self.port)

        self.state = SessionState.AUTHENTICATING
        await self.read_line()  # banner
        await self.write_line(self.password)
        login_response = await self.read_line()

        if LOGIN_MARKER not in login_response:
            self.state = SessionState.FAILED
            logger.error("console_login_failed", host=self.host, port=self.port)
            raise AuthError(
                f"Login to {self.host}:{self.port} failed. Check the telnet password."
            )

        self.state = SessionState.READY
        logger.debug("console_logged_in", host=self.host, port=self.port)

    async def read_line(self) -> str:
        """Read one line with its terminator removed."""
        if self._reader is None:
            raise ReadError("session is not connected")

        try:
            raw = await asyncio.wait_for(
                self._reader.readline(), timeout=self.read_timeout
            )
        except asyncio.TimeoutError as e:
            phase = self.state.value
            self.state = SessionState.FAILED
            raise ReadError(
                f"Timed out after {self.read_timeout}s reading from "
                f"{self.host}:{self.port} while {phase}"
            ) from e
        except (OSError, ValueError) as e:
            # ValueError: line longer than MAX_LINE_BYTES
            self.state = SessionState.FAILED
            raise ReadError(
                f"Error reading from {self.host}:{self.port}: {e}"
            ) from e

        if not raw.endswith(b"\n"):
            self.state = SessionState.FAILED
            raise ReadError(f"Connection closed by {self.host}:{self.port}")

        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def write_line(self, text: str) -> None:
        """Write one line and flush it."""
        if self._writer is None:
            raise WriteError("session is not connected")

        try:
            self._writer.write(f"{text}\n".encode("utf-8"))
            await asyncio.wait_for(self._writer.drain(), timeout=self.read_timeout)
        except asyncio.TimeoutError as e:
            self.state = SessionState.FAILED
            raise WriteError(
                f"Timed out after {self.read_timeout}s writing to "
                f"{self.host}:{self.port}"
            ) from e
        except OSError as e:
            self.state = SessionState.FAILED
            raise WriteError(f"Error writing to {self.host}:{self.port}: {e}") from e

    async def execute(self, command: str) -> None:
        """
        Send a command and wait for the server to confirm it.

        Lines received before the ``Executing command '<command>' by Telnet``
        echo are discarded. On return the session is DRAINING and the next
        line read is the first body line of the response.
        """
        if self.state is not SessionState.READY:
            raise ConsoleError(
                f"cannot execute '{command}' in state '{self.state.value}'"
            )

        self.state = SessionState.EXECUTING
        await self.write_line(command)

        marker = EXECUTING_MARKER.format(command=command)
        skipped = 0
        while marker not in await self.read_line():
            skipped += 1

        self.state = SessionState.DRAINING
        logger.debug(
            "console_command_executing",
            host=self.host,
            port=self.port,
            command=command,
            skipped_lines=skipped,
        )

    async def close(self) -> None:
        """Log out and close the connection. Safe to call more than once."""
        writer = self._writer
        if writer is None:
            if self.state is not SessionState.CLOSED:
                self.state = SessionState.CLOSED
            return

        self._writer = None
        self._reader = None
        self.state = SessionState.CLOSING

        try:
            try:
                writer.write(f"{LOGOUT_COMMAND}\n".encode("utf-8"))
                await asyncio.wait_for(writer.drain(), timeout=LOGOUT_TIMEOUT)
            except (asyncio.TimeoutError, OSError, RuntimeError) as e:
                # Logout is advisory; the close below still happens
                logger.debug(
                    "console_logout_failed",
                    host=self.host,
                    port=self.port,
                    error=str(e),
                )
        finally:
            writer.close()
            self.state = SessionState.CLOSED

        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=LOGOUT_TIMEOUT)
        except (asyncio.TimeoutError, OSError) as e:
            logger.debug(
                "console_wait_closed_failed",
                host=self.host,
                port=self.port,
                error=str(e),
            )

        logger.debug("console_disconnected", host=self.host, port=self.port)


class TelnetClient:
    """High-level console operations, one fresh session per call."""

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        password: str = "",
        connect_timeout: float = DEFAULT_TIMEOUT,
        read_timeout: float = DEFAULT_TIMEOUT,
        server_name: str | None = None,
        server_tag: str | None = None,
        session_factory: Optional[Callable[[], ConsoleSession]] = None,
    ) -> None:
        """
        Initialize the client. No connection is made until an operation runs.

        Args:
            host: Console host.
            port: Console port (7 Days to Die default: 8081).
            password: Telnet password.
            connect_timeout: Seconds allowed for each connect.
            read_timeout: Seconds allowed for each read or write.
            server_name: Friendly name used in logs and labels.
            server_tag: Short tag used in logs and labels.
            session_factory: Builds the session for each operation. Defaults
                to a ConsoleSession for host/port/password.
        """
        self.host = host
        self.port = port
        self.password = password
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.server_name = server_name
        self.server_tag = server_tag
        self._session_factory = session_factory

    @classmethod
    def from_config(cls, server_config: Any) -> "TelnetClient":
        """Build a client from a config.ServerConfig."""
        return cls(
            host=server_config.telnet_host,
            port=server_config.telnet_port,
            password=server_config.telnet_password,
            connect_timeout=server_config.connect_timeout,
            read_timeout=server_config.read_timeout,
            server_name=server_config.name,
            server_tag=server_config.tag,
        )

    @property
    def label(self) -> str:
        parts: List[str] = []
        if self.server_tag is not None:
            parts.append(f"[{self.server_tag}]")
        if self.server_name is not None:
            parts.append(self.server_name)
        return " ".join(parts) if parts else f"{self.host}:{self.port}"

    def session(self) -> ConsoleSession:
        """Create a new, unopened session."""
        if self._session_factory is not None:
            return self._session_factory()
        return ConsoleSession(
            self.host,
            self.port,
            self.password,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
        )

    async def list_players(self) -> List[PlayerRecord]:
        """
        Run ``lp`` and parse every player line.

        Returns:
            Players in the order the server listed them.

        Raises:
            ConsoleError: On connect, login, I/O or parse failure. Players
                parsed before the failure are discarded.
        """
        players: List[PlayerRecord] = []
        async with self.session() as session:
            await session.execute(LIST_PLAYERS_COMMAND)
            while True:
                line = await session.read_line()
                if END_OF_PLAYERS_MARKER in line:
                    break
                logger.debug("console_player_line", server_tag=self.server_tag, line=line)
                players.append(parse_player_line(line))

        logger.debug(
            "console_players_listed",
            server_tag=self.server_tag,
            count=len(players),
        )
        return players

    async def get_time(self) -> GameTime:
        """
        Run ``gt`` and parse the clock line.

        Raises:
            ConsoleError: On connect, login or I/O failure.
            FormatError: If the clock line is malformed.
        """
        async with self.session() as session:
            await session.execute(GET_TIME_COMMAND)
            line = await session.read_line()
            logger.debug("console_time_line", server_tag=self.server_tag, line=line)
            game_time = parse_game_time(line)

        return game_time

    async def get_status(self) -> GameStatus:
        """Game clock and online players, each fetched over its own session."""
        game_time = await self.get_time()
        players = await self.list_players()

        names = sorted({player.name.strip() for player in players if player.name.strip()})
        return GameStatus(
            game_time=game_time,
            players=len(players),
            online=tuple(names),
        )
