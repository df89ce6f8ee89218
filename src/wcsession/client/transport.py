from __future__ import annotations
import abc
import asyncio
import inspect
from typing import Awaitable, Callable, List, Optional, Union

import structlog

from wcsession.protocol.codec import decode_network_message, encode_network_message
from wcsession.protocol.models import NetworkMessage
from .errors import ProtocolError, TransportError

MessageListener = Callable[[NetworkMessage], Union[None, Awaitable[None]]]


class Transport(abc.ABC):
    """Topic-addressed relay connection.

    Listeners added with :meth:`add_listener` receive every inbound ``pub``
    message; they must be registered before :meth:`open` to see everything.
    """

    def __init__(self, logger=None):
        self.logger = logger or structlog.get_logger()
        self._listeners: List[MessageListener] = []

    def add_listener(self, listener: MessageListener):
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _deliver(self, message: NetworkMessage):
        for listener in list(self._listeners):
            try:
                result = listener(message)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("message_listener_error", topic=message.topic, error=repr(e))

    @property
    @abc.abstractmethod
    def connected(self) -> bool:
        ...

    @abc.abstractmethod
    async def open(self, url: str):
        ...

    @abc.abstractmethod
    async def subscribe(self, topic: str):
        ...

    @abc.abstractmethod
    async def send_message(self, message: NetworkMessage):
        ...

    @abc.abstractmethod
    async def close(self):
        ...


class WebSocketTransport(Transport):
    def __init__(self, logger=None, connect_kwargs: Optional[dict] = None):
        super().__init__(logger)
        self.url: Optional[str] = None
        self.ws = None
        self._connect_kwargs = connect_kwargs or {}
        self._rx_task: Optional[asyncio.Task] = None
        self._running = False
        self._subscriptions: List[str] = []

    @property
    def connected(self) -> bool:
        return self.ws is not None and self._running

    @property
    def subscriptions(self) -> List[str]:
        return list(self._subscriptions)

    async def open(self, url: str):
        if self.connected:
            if url == self.url:
                return
            await self.close()

        import websockets
        from websockets.exceptions import WebSocketException
        self.url = url
        try:
            self.ws = await websockets.connect(url, **self._connect_kwargs)
        except (OSError, WebSocketException) as e:
            self.ws = None
            raise TransportError(f"could not open {url}: {e}") from e

        self._running = True
        self._rx_task = asyncio.create_task(self._recv_loop())
        self.logger.info("transport_opened", url=url)

    async def _recv_loop(self):
        while self._running and self.ws:
            try:
                raw = await self.ws.recv()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._running:
                    self.logger.error("recv_loop_error", error=str(e))
                    self._running = False
                break

            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            try:
                msg = decode_network_message(raw)
            except ProtocolError as e:
                self.logger.warning("frame_dropped", error=str(e))
                continue
            if msg.type != "pub":
                continue
            await self._deliver(msg)

    async def _send_raw(self, message: NetworkMessage):
        if not self.ws:
            raise TransportError("not connected")
        try:
            await self.ws.send(encode_network_message(message))
        except Exception as e:
            raise TransportError(f"send failed: {e}") from e

    async def subscribe(self, topic: str):
        await self._send_raw(NetworkMessage(topic=topic, type="sub", payload="", silent=True))
        if topic not in self._subscriptions:
            self._subscriptions.append(topic)
        self.logger.debug("subscribed", topic=topic)

    async def send_message(self, message: NetworkMessage):
        await self._send_raw(message)

    async def close(self):
        self._running = False
        task, self._rx_task = self._rx_task, None
        # close() may run inside the receive task via a listener
        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self.ws:
            try:
                await self.ws.close()
            except Exception as e:
                self.logger.warning("transport_close_error", error=str(e))
            self.ws = None
            self.logger.info("transport_closed", url=self.url)
        self._subscriptions.clear()
