"""
StdioTransport - talk to an MCP server subprocess over stdin/stdout.

Messages are UTF-8 JSON values, one per line. Stdout is a byte stream, so
reads are buffered and split on newlines; stderr is diagnostics only.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from mcpbridge.mcp.errors import MCPConnectionError
from mcpbridge.mcp.transport import BaseTransport, Message

_READ_CHUNK = 64 * 1024


class StdioTransport(BaseTransport):
    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[Path] = None,
        *,
        terminate_timeout: float = 2.0,
    ) -> None:
        super().__init__()
        self.command = command
        self.args = list(args or [])
        self.env = dict(env or {})
        self.cwd = cwd
        self._terminate_timeout = terminate_timeout
        self._process: Optional[asyncio.subprocess.Process] = None
        self._buffer = bytearray()
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    async def connect(self) -> None:
        if self._process is not None:
            return

        logger.debug(f"Spawning MCP server: {self.command} {' '.join(self.args)}")
        self._reset_close_state()
        self._closing = False
        self._buffer.clear()
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env},
                cwd=str(self.cwd) if self.cwd else None,
            )
        except OSError as e:
            raise MCPConnectionError(f"Failed to start MCP server '{self.command}': {e}") from e

        self._reader_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._read_stderr())

    async def disconnect(self) -> None:
        self._closing = True
        process = self._process
        self._process = None

        if process is not None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            if process.returncode is None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass
                try:
                    await asyncio.wait_for(process.wait(), timeout=self._terminate_timeout)
                except asyncio.TimeoutError:
                    logger.debug(f"MCP server {self.command} ignored SIGTERM; killing")
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
                    await process.wait()

        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reader_task = None
        self._stderr_task = None
        self._buffer.clear()

        self._report_closed(MCPConnectionError("Transport closed"))

    async def send(self, message: Message) -> None:
        process = self._process
        if process is None or process.stdin is None or process.stdin.is_closing():
            raise MCPConnectionError("Not connected")

        data = json.dumps(message, separators=(",", ":"), ensure_ascii=False) + "\n"
        try:
            process.stdin.write(data.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise MCPConnectionError(f"MCP server stdin closed: {e}") from e

    def feed(self, data: bytes) -> None:
        """Append raw stdout bytes and dispatch every complete line."""
        self._buffer.extend(data)
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            self._handle_line(line)

    def _handle_line(self, line: bytes) -> None:
        text = line.decode("utf-8", errors="replace").strip()
        if not text:
            return
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse MCP message: {text[:200]}")
            return
        if isinstance(message, list):
            for item in message:
                self._dispatch(item)
        else:
            self._dispatch(message)

    async def _read_stdout(self) -> None:
        process = self._process
        if process is None or process.stdout is None:
            return
        try:
            while True:
                chunk = await process.stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                self.feed(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"MCP stdout reader failed ({self.command}): {e}")

        if self._closing:
            return
        code = await process.wait()
        logger.debug(f"MCP process exited with code {code}")
        self._report_closed(MCPConnectionError(f"MCP server process exited with code {code}"))

    async def _read_stderr(self) -> None:
        process = self._process
        if process is None or process.stderr is None:
            return
        while True:
            chunk = await process.stderr.read(_READ_CHUNK)
            if not chunk:
                break
            logger.debug(f"MCP stderr ({self.command}): {chunk.decode('utf-8', errors='replace').rstrip()}")
