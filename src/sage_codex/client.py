"""
Reconnecting chat client for the Sage's WebSocket.

Tracks the connection status and the message currently being streamed.
A close with code 1000 or an explicit disconnect() is final; any other
close schedules a reconnect after a fixed interval.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import Settings

logger = structlog.get_logger()

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class TransportClosed(Exception):
    """The socket closed, with its close code."""

    def __init__(self, code: int, reason: str = ""):
        self.code = code
        self.reason = reason
        super().__init__(f"Connection closed ({code}) {reason}".strip())


class Transport(ABC):
    """A connected text-frame socket."""

    @abstractmethod
    async def send(self, text: str) -> None:
        pass

    @abstractmethod
    async def recv(self) -> str:
        """Next text frame. Raises TransportClosed when the socket closes."""
        pass

    @abstractmethod
    async def close(self, code: int = NORMAL_CLOSURE) -> None:
        pass


Connector = Callable[[str, dict[str, str]], Awaitable[Transport]]


class WebSocketTransport(Transport):
    """Transport over a `websockets` client connection."""

    def __init__(self, connection):
        self._connection = connection

    async def send(self, text: str) -> None:
        try:
            await self._connection.send(text)
        except ConnectionClosed as e:
            raise TransportClosed(e.rcvd.code if e.rcvd else ABNORMAL_CLOSURE) from e

    async def recv(self) -> str:
        try:
            frame = await self._connection.recv()
        except ConnectionClosed as e:
            if e.rcvd is None:
                raise TransportClosed(ABNORMAL_CLOSURE) from e
            raise TransportClosed(e.rcvd.code, e.rcvd.reason) from e
        if isinstance(frame, bytes):
            frame = frame.decode("utf-8")
        return frame

    async def close(self, code: int = NORMAL_CLOSURE) -> None:
        await self._connection.close(code=code)


async def connect_websocket(url: str, headers: dict[str, str]) -> Transport:
    """Default connector using the `websockets` library."""
    try:
        connection = await ws_connect(url, additional_headers=headers)
    except WebSocketException as e:
        raise TransportClosed(ABNORMAL_CLOSURE, str(e)) from e
    return WebSocketTransport(connection)


@dataclass
class StreamingMessage:
    """An assistant message as it streams in."""

    id: str
    content: str = ""


@dataclass
class ClientMessage:
    """A finished message in the local transcript."""

    id: str
    role: str
    content: str


@dataclass
class ClientError:
    code: str
    message: str


class ChatClient:
    """Client side of the chat socket."""

    def __init__(
        self,
        url: str,
        user_id: str,
        connector: Connector | None = None,
        reconnect_interval: float = 1.0,
        max_reconnect_attempts: int = 5,
        on_frame: Callable[[dict[str, Any]], None] | None = None,
    ):
        self.url = url
        self.user_id = user_id
        self.connector = connector or connect_websocket
        self.reconnect_interval = reconnect_interval
        self.max_reconnect_attempts = max_reconnect_attempts
        self.on_frame = on_frame

        self.status = ConnectionStatus.DISCONNECTED
        self.streaming: StreamingMessage | None = None
        self.messages: list[ClientMessage] = []
        self.events: list[dict[str, Any]] = []
        self.errors: list[ClientError] = []
        self.reconnect_attempts = 0

        self._transport: Transport | None = None
        self._reader: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._closing = False
        self._idle = asyncio.Event()
        self._idle.set()

    @classmethod
    def from_settings(cls, url: str, user_id: str, settings: Settings, **kwargs) -> "ChatClient":
        return cls(
            url,
            user_id,
            reconnect_interval=settings.reconnect_interval_ms / 1000,
            max_reconnect_attempts=settings.max_reconnect_attempts,
            **kwargs,
        )

    @property
    def is_streaming(self) -> bool:
        return self.streaming is not None

    @property
    def is_connected(self) -> bool:
        return self.status in (ConnectionStatus.CONNECTED, ConnectionStatus.STREAMING)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status != self.status:
            logger.info("Connection status changed", old=self.status.value, new=status.value)
            self.status = status

    async def connect(self) -> bool:
        """Open the socket. Returns False if the attempt failed."""
        self._closing = False
        self._set_status(ConnectionStatus.CONNECTING)
        return await self._open()

    async def _open(self) -> bool:
        try:
            transport = await self.connector(self.url, {"X-User-Id": self.user_id})
        except (OSError, TransportClosed) as e:
            logger.warning("Connection attempt failed", url=self.url, error=str(e))
            code = e.code if isinstance(e, TransportClosed) else ABNORMAL_CLOSURE
            self._handle_close(code)
            return False

        if self._closing:
            await transport.close(NORMAL_CLOSURE)
            return False

        self._transport = transport
        self.reconnect_attempts = 0
        self._set_status(ConnectionStatus.CONNECTED)
        self._reader = asyncio.create_task(self._read_loop(transport))
        return True

    async def disconnect(self) -> None:
        """Close for good. Never triggers a reconnect."""
        self._closing = True

        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                await transport.close(NORMAL_CLOSURE)
            except (OSError, TransportClosed) as e:
                logger.debug("Close failed", error=str(e))

        if self._reader and not self._reader.done() and self._reader is not asyncio.current_task():
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
        self._reader = None

        self._end_stream()
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def wait_closed(self) -> None:
        """Wait until the current connection's reader stops."""
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until no message is streaming."""
        await self._idle.wait()

    async def send_message(self, session_id: str, content: str) -> None:
        """Send a user message for a session."""
        if not content or not content.strip():
            raise ValueError("Message content is required")
        if self.is_streaming:
            raise RuntimeError("A reply is still streaming")
        await self._send({"type": "chat:send", "sessionId": session_id, "content": content})
        self.messages.append(ClientMessage(id="", role="user", content=content))

    async def greet(self, session_id: str) -> None:
        """Ask the Sage to open a fresh session."""
        await self._send({"type": "chat:greet", "sessionId": session_id})

    async def ping(self) -> None:
        await self._send({"type": "ping"})

    async def _send(self, frame: dict[str, Any]) -> None:
        if self._transport is None or not self.is_connected:
            raise RuntimeError(f"Not connected (status: {self.status.value})")
        await self._transport.send(json.dumps(frame))

    async def _read_loop(self, transport: Transport) -> None:
        try:
            while True:
                raw = await transport.recv()
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Dropping malformed frame", frame=raw[:100])
                    continue
                if isinstance(frame, dict):
                    self.handle_frame(frame)
        except TransportClosed as e:
            if transport is self._transport:
                self._transport = None
                self._handle_close(e.code)

    def handle_frame(self, frame: dict[str, Any]) -> None:
        """Apply one server frame to the local state."""
        frame_type = frame.get("type")

        if frame_type == "stream:start":
            self.streaming = StreamingMessage(id=frame.get("messageId", ""))
            self._idle.clear()
            self._set_status(ConnectionStatus.STREAMING)
        elif frame_type == "stream:chunk":
            if self.streaming is not None:
                self.streaming.content += frame.get("content", "")
        elif frame_type == "stream:end":
            if self.streaming is not None:
                self.messages.append(ClientMessage(
                    id=self.streaming.id,
                    role="assistant",
                    content=self.streaming.content,
                ))
            self._end_stream()
            if self.status == ConnectionStatus.STREAMING:
                self._set_status(ConnectionStatus.CONNECTED)
        elif frame_type == "error":
            self.errors.append(ClientError(code=frame.get("code", ""), message=frame.get("message", "")))
            logger.warning("Server error", code=frame.get("code"), message=frame.get("message"))
        elif frame_type in ("connected", "pong"):
            pass
        else:
            self.events.append(frame)

        if self.on_frame is not None:
            self.on_frame(frame)

    def _end_stream(self) -> None:
        self.streaming = None
        self._idle.set()

    def _handle_close(self, code: int) -> None:
        self._end_stream()

        if self._closing or code == NORMAL_CLOSURE:
            logger.info("Connection closed", code=code)
            self._set_status(ConnectionStatus.DISCONNECTED)
            return

        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.warning("Giving up reconnecting", attempts=self.reconnect_attempts)
            self._set_status(ConnectionStatus.DISCONNECTED)
            return

        self._set_status(ConnectionStatus.RECONNECTING)
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        self.reconnect_attempts += 1
        logger.info(
            "Reconnect scheduled",
            attempt=self.reconnect_attempts,
            delay=self.reconnect_interval,
        )
        await asyncio.sleep(self.reconnect_interval)
        if self._closing:
            return
        await self._open()
