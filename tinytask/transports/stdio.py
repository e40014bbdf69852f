"""
Stdio transport: newline-delimited JSON-RPC over stdin/stdout.

One protocol handler serves the process for its whole lifetime. Only
protocol messages go to stdout; logging is configured onto stderr.
"""
import sys
import json
import asyncio
import logging
import threading
from typing import Optional, TextIO

from tinytask.mcp.handler import ProtocolHandlerFactory, jsonrpc_error, PARSE_ERROR


class StdioTransport:
    """Reads one JSON-RPC message per line and writes one response per line."""

    kind = "stdio"

    def __init__(
        self,
        factory: ProtocolHandlerFactory,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.handler = factory.create("stdio")
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.logger = logger or logging.getLogger(__name__)
        self.bytes_written = 0

    def _write(self, message: dict) -> None:
        line = json.dumps(message, default=str) + "\n"
        self.stdout.write(line)
        self.stdout.flush()
        size = len(line.encode("utf-8"))
        self.bytes_written += size
        self.logger.debug(f"stdio response written: {size} bytes")

    def _start_reader(self, loop: asyncio.AbstractEventLoop, lines: asyncio.Queue) -> threading.Thread:
        """Pump stdin lines into the queue from a daemon thread; "" marks EOF."""
        def pump():
            try:
                while True:
                    line = self.stdin.readline()
                    loop.call_soon_threadsafe(lines.put_nowait, line)
                    if not line:
                        break
            except RuntimeError:
                # event loop closed while a readline was pending
                self.logger.debug("stdin reader stopped after event loop closed")
            except (OSError, ValueError) as e:
                self.logger.warning(f"stdin read failed: {e}")
                loop.call_soon_threadsafe(lines.put_nowait, "")

        reader = threading.Thread(target=pump, name="tinytask-stdin", daemon=True)
        reader.start()
        return reader

    async def serve(self) -> None:
        """Process stdin until EOF or cancellation."""
        self.logger.info("stdio transport started")
        lines: asyncio.Queue = asyncio.Queue()
        self._start_reader(asyncio.get_running_loop(), lines)
        try:
            while True:
                line = await lines.get()
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue
                try:
                    message = json.loads(line)
                except ValueError as e:
                    self._write(jsonrpc_error(None, PARSE_ERROR, f"Parse error: {e}"))
                    continue
                response = await self.handler.handle_message(message)
                if response is not None:
                    self._write(response)
        finally:
            self.handler.close()
            self.logger.info("stdio transport stopped")
