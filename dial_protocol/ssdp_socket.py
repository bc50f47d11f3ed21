#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
The UDP layer under SsdpPeer.

An SsdpSocket owns one SsdpSocketBinding per local interface. Each binding is the
asyncio datagram protocol for its own low-level socket. Received datagrams are
decoded into SsdpDatagrams and handed to every SsdpDatagramSubscriber as
(binding, source address, datagram) tuples, in arrival order, until the socket
is closed.
"""

from __future__ import annotations

import asyncio
from asyncio import Future
import socket
from abc import ABC, abstractmethod

from dial_protocol.internal_types import *
from .pkg_logging import logger
from .exceptions import DialError
from .ssdp_datagram import SsdpDatagram

MAX_QUEUE_SIZE = 1000

ReceivedDatagram = Tuple['SsdpSocketBinding', HostAndPort, SsdpDatagram]

class SsdpSocketBinding(asyncio.DatagramProtocol):
    """
    A single bound UDP socket of an SsdpSocket, acting as its own asyncio protocol.
    """

    ssdp_socket: Optional[SsdpSocket] = None
    """The owning SsdpSocket. None until the binding is added to one."""

    index: int = -1
    """Position of this binding in SsdpSocket.socket_bindings."""

    sock: Optional[socket.socket]
    """The low-level socket. None once closed."""

    transport: Optional[asyncio.DatagramTransport] = None
    """The asyncio transport over `sock`, while the endpoint is open."""

    unicast_addr: HostAndPort
    """The interface address and port this binding sends from. The address replaces
       the {{networkInterfaceAddress}} placeholder in outbound datagrams."""

    def __init__(self, sock: socket.socket, unicast_addr: Optional[HostAndPort]=None):
        super().__init__()
        self.sock = sock
        if unicast_addr is None:
            unicast_addr = sock.getsockname()[:2]
        self.unicast_addr = unicast_addr

    def attach(self, ssdp_socket: SsdpSocket, index: int) -> None:
        if self.ssdp_socket is not None:
            raise DialError(f"{self} is already attached")
        self.ssdp_socket = ssdp_socket
        self.index = index

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        if self.ssdp_socket is not None:
            self.ssdp_socket.on_datagram(self, addr, data)

    def error_received(self, exc: Exception) -> None:
        if self.ssdp_socket is not None:
            self.ssdp_socket.on_error(self, exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.transport = None
        if self.ssdp_socket is not None:
            self.ssdp_socket.on_connection_lost(self, exc)

    def sendto(self, datagram: SsdpDatagram, addr: HostAndPort) -> None:
        if self.transport is None:
            raise DialError(f"Cannot send on closed {self}")
        logger.debug(f"{self} -> {addr}: {datagram}")
        self.transport.sendto(datagram.raw_data, addr)

    def close(self) -> None:
        """Closes the transport and the socket. Safe to call more than once."""
        transport, self.transport = self.transport, None
        if transport is not None:
            transport.close()
        sock, self.sock = self.sock, None
        if sock is not None:
            try:
                sock.close()
            except OSError as e:
                logger.error(f"Error closing socket of {self}: {e}")

    def __str__(self) -> str:
        return f"SsdpSocketBinding({self.index}: {self.unicast_addr[0]}:{self.unicast_addr[1]})"

    def __repr__(self) -> str:
        return str(self)

class SsdpDatagramSubscriber(AsyncContextManager['SsdpDatagramSubscriber']):
    """
    Receives the datagrams of an SsdpSocket while entered. Iterate with
    iter_datagrams(); iteration ends when the socket's streams end.

    Datagrams arriving while `max_queue_size` are already waiting are dropped.
    """

    ssdp_socket: SsdpSocket
    queue: asyncio.Queue[Optional[ReceivedDatagram]]
    max_queue_size: int
    ended: bool = False

    def __init__(self, ssdp_socket: SsdpSocket, max_queue_size: int=MAX_QUEUE_SIZE):
        self.ssdp_socket = ssdp_socket
        self.max_queue_size = max_queue_size
        # unbounded, so the end-of-stream marker always fits
        self.queue = asyncio.Queue()

    async def __aenter__(self) -> SsdpDatagramSubscriber:
        self.ssdp_socket.datagram_subscribers.add(self)
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.ssdp_socket.datagram_subscribers.discard(self)
        self.ended = True
        return False

    async def iter_datagrams(self) -> AsyncIterator[ReceivedDatagram]:
        while True:
            item = await self.queue.get()
            if item is None:
                return
            yield item

    def on_datagram(self, socket_binding: SsdpSocketBinding, addr: HostAndPort, datagram: SsdpDatagram) -> None:
        if self.ended:
            return
        if self.queue.qsize() >= self.max_queue_size:
            logger.warning(f"Subscriber queue full; dropping datagram from {addr} on {socket_binding}")
            return
        self.queue.put_nowait((socket_binding, addr, datagram))

    def on_end_of_stream(self) -> None:
        if not self.ended:
            self.ended = True
            self.queue.put_nowait(None)

class SsdpSocket(ABC):
    """
    A set of UDP sockets, typically one per network interface, that decode inbound
    datagrams for subscribers.

    Subclasses create the sockets in add_socket_bindings(). `final_result` completes
    when the socket closes, with an exception if it closed because of an error.
    """

    socket_bindings: List[SsdpSocketBinding]

    final_result: Optional[Future[None]] = None
    """Created by start(); done once the socket is closed."""

    datagram_subscribers: Set[SsdpDatagramSubscriber]

    def __init__(self) -> None:
        self.socket_bindings = []
        self.datagram_subscribers = set()

    async def add_socket_binding(self, socket_binding: SsdpSocketBinding) -> None:
        socket_binding.attach(self, len(self.socket_bindings))
        self.socket_bindings.append(socket_binding)
        logger.debug(f"Added {socket_binding}")

    @abstractmethod
    async def add_socket_bindings(self) -> None:
        """Creates the bound sockets and adds each with add_socket_binding()."""
        raise NotImplementedError()

    async def finish_start(self) -> None:
        """Hook run once every endpoint is open."""
        pass

    async def wait_for_dependents_done(self) -> None:
        """Hook run by wait_for_done() after the socket has closed."""
        pass

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self.final_result = loop.create_future()
        try:
            await self.add_socket_bindings()
            if len(self.socket_bindings) == 0:
                raise DialError("No interfaces to bind SSDP sockets to")
            for socket_binding in self.socket_bindings:
                transport, _ = await loop.create_datagram_endpoint(
                    lambda b=socket_binding: b,
                    sock=socket_binding.sock
                  )
                # connection_made() runs on a later loop iteration; sends may come first
                socket_binding.transport = transport # type: ignore[assignment]
            await self.finish_start()
        except BaseException as e:
            self.set_final_exception(e)
            try:
                await self.wait_for_done()
            except BaseException:
                pass
            raise

    async def wait_for_done(self) -> None:
        assert self.final_result is not None
        try:
            await self.final_result
        finally:
            await self.wait_for_dependents_done()

    def on_datagram(self, socket_binding: SsdpSocketBinding, addr: HostAndPort, data: bytes) -> None:
        try:
            datagram = SsdpDatagram(raw_data=data)
        except Exception as e:
            logger.debug(f"Ignoring undecodable datagram from {addr}: {e}")
            return
        for subscriber in list(self.datagram_subscribers):
            subscriber.on_datagram(socket_binding, addr, datagram)

    def on_error(self, socket_binding: SsdpSocketBinding, exc: Exception) -> None:
        logger.info(f"Socket error on {socket_binding}: {exc}")
        self.set_final_exception(exc)

    def on_connection_lost(self, socket_binding: SsdpSocketBinding, exc: Optional[Exception]) -> None:
        logger.debug(f"Endpoint closed on {socket_binding}, exc={exc}")
        if exc is None:
            self.set_final_result()
        else:
            self.set_final_exception(exc)

    def _finish(self) -> None:
        for subscriber in list(self.datagram_subscribers):
            subscriber.on_end_of_stream()
        for socket_binding in self.socket_bindings:
            socket_binding.close()

    def set_final_exception(self, exc: BaseException) -> None:
        if self.final_result is not None and not self.final_result.done():
            logger.debug(f"SSDP socket closing on error: {exc}")
            self.final_result.set_exception(exc)
            self._finish()

    def set_final_result(self) -> None:
        if self.final_result is not None and not self.final_result.done():
            logger.debug("SSDP socket closing")
            self.final_result.set_result(None)
            self._finish()
