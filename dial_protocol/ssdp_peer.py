#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpTransport, the discovery transport used by DialServer and DialClient, and
SsdpPeer, its implementation over UDP multicast. An SsdpPeer can:

  1. Listen on the SSDP multicast address (typically 239.255.255.250:1900) on every local interface
  2. Deliver received M-SEARCH requests, NOTIFY advertisements and search responses to event handlers
     as "search", "notify" and "found" events
  3. Multicast NOTIFY ssdp:alive / ssdp:byebye advertisements and M-SEARCH requests
  4. Send unicast search responses to a requester

Event handlers are plain callables invoked on the event loop, one event at a time, in the order
the datagrams were received. "ready" is delivered once the sockets are up; "close" once after
the peer is closed.
"""

from __future__ import annotations

import asyncio
import socket
import sys
from collections import OrderedDict
from abc import ABC, abstractmethod
from enum import Enum

from dial_protocol.internal_types import *
from .pkg_logging import logger
from .constants import (
    SSDP_MULTICAST_ADDRESS,
    SSDP_PORT,
    SSDP_DEFAULT_MAX_AGE,
    SSDP_DEFAULT_MX,
    SSDP_ALIVE,
    SSDP_BYEBYE,
    SSDP_DISCOVER,
    NETWORK_INTERFACE_ADDRESS_PLACEHOLDER,
  )
from .ssdp_datagram import SsdpDatagram, NOTIFY_STATEMENT, SEARCH_STATEMENT, RESPONSE_STATEMENT
from .ssdp_socket import SsdpSocket, SsdpSocketBinding, SsdpDatagramSubscriber
from .util import CaseInsensitiveDict, get_multicast_interface_addresses, header_value_to_str

IP_MULTICAST_ALL = 49

MAX_REPLY_BINDINGS = 256
"""The number of recent searchers whose receiving binding is remembered for replies."""

class SsdpEventType(Enum):
    """The kinds of event emitted by an SsdpTransport."""
    READY = "ready"
    SEARCH = "search"
    FOUND = "found"
    NOTIFY = "notify"
    CLOSE = "close"

class SsdpEvent:
    event_type: SsdpEventType
    """The kind of event"""

    headers: CaseInsensitiveDict[str]
    """The headers of the received datagram. Empty for "ready" and "close"."""

    address: Optional[HostAndPort]
    """The source address of the received datagram, or None for "ready" and "close"."""

    def __init__(
            self,
            event_type: SsdpEventType,
            headers: Optional[Mapping[str, str]]=None,
            address: Optional[HostAndPort]=None
          ) -> None:
        self.event_type = event_type
        self.headers = CaseInsensitiveDict(headers or {})
        self.address = address

    def __str__(self) -> str:
        return f"SsdpEvent({self.event_type.value}, address={self.address}, headers={dict(self.headers)})"

    def __repr__(self) -> str:
        return str(self)

SsdpEventHandler = Callable[[SsdpEvent], None]
"""A callback for events emitted by an SsdpTransport."""

ByebyeAckCallback = Callable[[], None]
"""Called exactly once when a byebye advertisement has been sent."""

class SsdpTransport(ABC):
    """
    The discovery transport collaborator of DialServer and DialClient.

    Implementations emit SsdpEvents to registered handlers and accept outbound
    advertisements, searches and replies. Handler invocations for one transport
    are never concurrent.
    """

    event_handlers: Dict[int, SsdpEventHandler]
    """Handlers called for every emitted event, indexed by ID number."""

    i_next_event_handler: int = 0
    """The next event handler ID to assign."""

    def __init__(self) -> None:
        self.event_handlers = {}

    def add_event_handler(self, handler: SsdpEventHandler) -> int:
        """Adds a handler to be called for each event emitted by this transport. Returns an ID
           that can be passed to remove_event_handler()."""
        i = self.i_next_event_handler
        self.i_next_event_handler += 1
        self.event_handlers[i] = handler
        return i

    def remove_event_handler(self, i: int) -> None:
        """Removes a previously added event handler."""
        del self.event_handlers[i]

    def emit(self, event: SsdpEvent) -> None:
        """Delivers an event to all handlers. A handler that raises is logged and does not
           prevent delivery to the remaining handlers."""
        for handler in list(self.event_handlers.values()):
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"SSDP event handler raised exception processing {event}: {e}")

    @abstractmethod
    async def start(self) -> None:
        """Starts the transport. Emits "ready" when it is able to send and receive."""
        raise NotImplementedError()

    @abstractmethod
    def close(self) -> None:
        """Closes the transport. Emits "close" once the transport is closed."""
        raise NotImplementedError()

    @abstractmethod
    def search(self, headers: Mapping[str, HeaderValue]) -> None:
        """Multicasts a search request. `headers` must include ST."""
        raise NotImplementedError()

    @abstractmethod
    def alive(self, headers: Mapping[str, HeaderValue]) -> None:
        """Multicasts an ssdp:alive advertisement with the given headers."""
        raise NotImplementedError()

    @abstractmethod
    def byebye(self, headers: Mapping[str, HeaderValue], on_ack: Optional[ByebyeAckCallback]=None) -> None:
        """Multicasts an ssdp:byebye withdrawal with the given headers, then calls on_ack."""
        raise NotImplementedError()

    @abstractmethod
    def reply(self, headers: Mapping[str, HeaderValue], address: HostAndPort) -> None:
        """Sends a unicast search response with the given headers to `address`."""
        raise NotImplementedError()


class SsdpPeer(SsdpSocket, SsdpTransport):
    """
    An SsdpTransport over UDP multicast. One socket binding is created per local
    interface address; advertisements and searches are sent on every binding, and
    replies on the binding that received the corresponding search.
    """

    multicast_address: str = SSDP_MULTICAST_ADDRESS
    """The SSDP group address."""

    multicast_port: int = SSDP_PORT
    """The SSDP group port, also the local port of every binding."""

    bind_addresses: List[str]
    """Local IPv4 interface addresses, one binding each."""

    include_loopback: bool = False
    """Whether the default bind_addresses include loopback interfaces."""

    max_age: int = SSDP_DEFAULT_MAX_AGE
    """The CACHE-CONTROL max-age sent with alive advertisements and replies."""

    mx: int = SSDP_DEFAULT_MX
    """The MX value sent with search requests."""

    dispatcher_task: Optional[asyncio.Task[None]] = None
    """The task that converts received datagrams into events."""

    _reply_bindings: OrderedDict[HostAndPort, SsdpSocketBinding]
    """The binding on which the most recent search from each of the last MAX_REPLY_BINDINGS
       searchers was received, oldest first."""

    _close_emitted: bool = False

    def __init__(
            self,
            multicast_address: str=SSDP_MULTICAST_ADDRESS,
            multicast_port: int=SSDP_PORT,
            bind_addresses: Optional[Iterable[str]]=None,
            include_loopback: bool = False,
            max_age: int=SSDP_DEFAULT_MAX_AGE,
            mx: int=SSDP_DEFAULT_MX,
          ) -> None:
        SsdpSocket.__init__(self)
        SsdpTransport.__init__(self)
        self.multicast_address = multicast_address
        self.multicast_port = multicast_port
        self.include_loopback = include_loopback
        self.max_age = max_age
        self.mx = mx
        if bind_addresses is None:
            bind_addresses = get_multicast_interface_addresses(include_loopback=self.include_loopback)
        self.bind_addresses = list(bind_addresses)
        self._reply_bindings = OrderedDict()

    def _open_multicast_socket(self, bind_address: str) -> socket.socket:
        """Returns a UDP socket that receives the SSDP group on the interface with
           address `bind_address` and sends its multicasts out of that interface."""
        group = socket.inet_aton(socket.gethostbyname(self.multicast_address))
        interface = socket.inet_aton(bind_address)
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, 'SO_REUSEPORT') and sys.platform != 'cygwin':
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            if sys.platform.startswith('linux'):
                # only deliver group traffic that arrived on this socket's own interface
                sock.setsockopt(socket.IPPROTO_IP, IP_MULTICAST_ALL, 0)
            # group members have to bind the wildcard address
            sock.bind(('', self.multicast_port))
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, group + interface)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, interface)
        except OSError:
            sock.close()
            raise
        return sock

    #@override
    async def add_socket_bindings(self) -> None:
        logger.debug(f"Joining {self.multicast_address}:{self.multicast_port} on {self.bind_addresses}")
        for bind_address in self.bind_addresses:
            sock = self._open_multicast_socket(bind_address)
            await self.add_socket_binding(SsdpSocketBinding(sock, unicast_addr=(bind_address, self.multicast_port)))

    async def finish_start(self) -> None:
        self.dispatcher_task = asyncio.create_task(self._run_dispatcher_task())
        logger.info(f"SSDP peer ready on {[str(b) for b in self.socket_bindings]}")
        self.emit(SsdpEvent(SsdpEventType.READY))

    async def wait_for_dependents_done(self) -> None:
        if self.dispatcher_task is not None:
            self.dispatcher_task.cancel()
            try:
                await self.dispatcher_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Exception while cancelling dispatcher task: {e}")
            self.dispatcher_task = None

    def close(self) -> None:
        self.set_final_result()

    def set_final_result(self) -> None:
        super().set_final_result()
        self._schedule_close_event()

    def set_final_exception(self, exc: BaseException) -> None:
        super().set_final_exception(exc)
        if self.final_result is not None and self.final_result.done():
            # reported through the "close" event
            self.final_result.exception()
        self._schedule_close_event()

    def _schedule_close_event(self) -> None:
        if not self._close_emitted and self.final_result is not None and self.final_result.done():
            self._close_emitted = True
            asyncio.get_running_loop().call_soon(self.emit, SsdpEvent(SsdpEventType.CLOSE))

    async def _run_dispatcher_task(self) -> None:
        logger.debug("SSDP dispatcher task starting")
        try:
            async with SsdpDatagramSubscriber(self) as subscriber:
                async for socket_binding, addr, datagram in subscriber.iter_datagrams():
                    if datagram.is_search:
                        self._remember_reply_binding(addr, socket_binding)
                        self.emit(SsdpEvent(SsdpEventType.SEARCH, datagram.headers, addr))
                    elif datagram.is_notify:
                        self.emit(SsdpEvent(SsdpEventType.NOTIFY, datagram.headers, addr))
                    elif datagram.status_code == 200:
                        self.emit(SsdpEvent(SsdpEventType.FOUND, datagram.headers, addr))
                    else:
                        logger.debug(f"Ignoring SSDP datagram from {addr}: {datagram.statement_line}")
        except asyncio.CancelledError:
            logger.debug("SSDP dispatcher task cancelled; exiting")
            raise
        except Exception as e:
            logger.info(f"SSDP dispatcher task exiting with exception: {e}")
            raise
        logger.debug("SSDP dispatcher task exiting")

    def _remember_reply_binding(self, addr: HostAndPort, socket_binding: SsdpSocketBinding) -> None:
        self._reply_bindings[addr] = socket_binding
        self._reply_bindings.move_to_end(addr)
        while len(self._reply_bindings) > MAX_REPLY_BINDINGS:
            self._reply_bindings.popitem(last=False)

    def _make_datagram(
            self,
            socket_binding: SsdpSocketBinding,
            statement: str,
            headers: Mapping[str, HeaderValue],
            fixed_headers: Mapping[str, HeaderValue]
          ) -> SsdpDatagram:
        """Builds a datagram to be sent through `socket_binding`, with the network interface
           placeholder replaced by the binding's unicast address. `fixed_headers` are the
           protocol headers owned by the peer and always win over same-named caller headers."""
        unicast_ip = socket_binding.unicast_addr[0]
        all_headers: CaseInsensitiveDict[HeaderValue] = CaseInsensitiveDict()
        for name, value in headers.items():
            all_headers[name] = header_value_to_str(value).replace(NETWORK_INTERFACE_ADDRESS_PLACEHOLDER, unicast_ip)
        all_headers.update(fixed_headers)
        return SsdpDatagram(statement, headers=all_headers)

    def _multicast(self, statement: str, headers: Mapping[str, HeaderValue], fixed_headers: Mapping[str, HeaderValue]) -> None:
        for socket_binding in self.socket_bindings:
            datagram = self._make_datagram(socket_binding, statement, headers, fixed_headers)
            try:
                socket_binding.sendto(datagram, (self.multicast_address, self.multicast_port))
            except Exception as e:
                logger.warning(f"Failed sending multicast on {socket_binding}: {e}")

    @property
    def _host_header(self) -> str:
        return f"{self.multicast_address}:{self.multicast_port}"

    def search(self, headers: Mapping[str, HeaderValue]) -> None:
        self._multicast(SEARCH_STATEMENT, headers, {
            "HOST": self._host_header,
            "MAN": SSDP_DISCOVER,
            "MX": self.mx,
          })

    def alive(self, headers: Mapping[str, HeaderValue]) -> None:
        self._multicast(NOTIFY_STATEMENT, headers, {
            "HOST": self._host_header,
            "NTS": SSDP_ALIVE,
            "CACHE-CONTROL": f"max-age={self.max_age}",
          })

    def byebye(self, headers: Mapping[str, HeaderValue], on_ack: Optional[ByebyeAckCallback]=None) -> None:
        self._multicast(NOTIFY_STATEMENT, headers, {
            "HOST": self._host_header,
            "NTS": SSDP_BYEBYE,
          })
        if on_ack is not None:
            asyncio.get_running_loop().call_soon(on_ack)

    def reply(self, headers: Mapping[str, HeaderValue], address: HostAndPort) -> None:
        socket_binding = self._reply_bindings.get(address)
        if socket_binding is None or socket_binding.transport is None:
            if len(self.socket_bindings) == 0:
                logger.warning(f"No socket binding available to reply to {address}")
                return
            socket_binding = self.socket_bindings[0]
        datagram = self._make_datagram(socket_binding, RESPONSE_STATEMENT, headers, {
            "CACHE-CONTROL": f"max-age={self.max_age}",
            "EXT": "",
          })
        try:
            socket_binding.sendto(datagram, address)
        except Exception as e:
            logger.warning(f"Failed sending search reply to {address} on {socket_binding}: {e}")
