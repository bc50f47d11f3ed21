#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
DialClient -- A DIAL controller that can:

  1. Search for DIAL receivers over SSDP, by DIAL device type and DIAL service type
  2. Track the receivers currently advertising, keyed by the LOCATION of their device description,
     from search responses and from ssdp:alive / ssdp:byebye advertisements
  3. Fetch a receiver's device description and return a DialDevice for launching applications
"""

from __future__ import annotations

import asyncio
from enum import Enum
from types import MappingProxyType

import aiohttp

from dial_protocol.internal_types import *
from .pkg_logging import logger
from .constants import DIAL_DEVICE_TYPE, DIAL_SERVICE_TYPE, SSDP_BYEBYE, SSDP_ALIVE
from .exceptions import TransportError, RemoteProtocolError
from .description import parse_device_description
from .device import DialDevice
from .ssdp_peer import SsdpTransport, SsdpPeer, SsdpEvent, SsdpEventType
from .util import CaseInsensitiveDict

DEFAULT_RESPONSE_WAIT_TIME = 4.0
"""The default amount of time (in seconds) that simple_search() waits for receivers to respond."""

class DialClientEventType(Enum):
    READY = "ready"
    FOUND = "found"
    DISAPPEAR = "disappear"
    STOPPED = "stopped"

class DialClientEvent:
    event_type: DialClientEventType

    location: Optional[str]
    """The LOCATION of the receiver's device description, for "found" and "disappear"."""

    headers: CaseInsensitiveDict[str]
    """For "found", the headers of the advertisement or search response. For "disappear", the
       headers previously recorded for the location."""

    def __init__(
            self,
            event_type: DialClientEventType,
            location: Optional[str]=None,
            headers: Optional[Mapping[str, str]]=None,
          ) -> None:
        self.event_type = event_type
        self.location = location
        self.headers = CaseInsensitiveDict(headers or {})

    def __str__(self) -> str:
        return f"DialClientEvent({self.event_type.value}, location={self.location})"

    def __repr__(self) -> str:
        return str(self)

DialClientEventHandler = Callable[[DialClientEvent], None]

class DialClient(AsyncContextManager['DialClient']):
    """
    A DIAL controller.

    Usage:
        async with DialClient() as client:
            client.add_event_handler(lambda event: print(event))
            await asyncio.sleep(4.0)
            for location in client.services:
                device = await client.get_dial_device(location)
                ...
    """

    transport: SsdpTransport

    session: Optional[aiohttp.ClientSession]
    """If not None, used for description fetches and passed to each DialDevice."""

    event_handlers: Dict[int, DialClientEventHandler]
    i_next_event_handler: int = 0

    _services: Dict[str, CaseInsensitiveDict[str]]
    _stopped: Optional[asyncio.Future[None]] = None
    _ready: Optional[asyncio.Future[None]] = None
    _transport_handler_id: Optional[int] = None
    _closing: bool = False

    def __init__(
            self,
            transport: Optional[SsdpTransport]=None,
            session: Optional[aiohttp.ClientSession]=None,
            bind_addresses: Optional[Iterable[str]]=None,
            include_loopback: bool=False,
          ) -> None:
        if transport is None:
            transport = SsdpPeer(bind_addresses=bind_addresses, include_loopback=include_loopback)
        self.transport = transport
        self.session = session
        self.event_handlers = {}
        self._services = {}

    @property
    def services(self) -> Mapping[str, CaseInsensitiveDict[str]]:
        """A read-only view of the receivers currently known, as LOCATION -> last advertisement headers."""
        return MappingProxyType(self._services)

    def add_event_handler(self, handler: DialClientEventHandler) -> int:
        i = self.i_next_event_handler
        self.i_next_event_handler += 1
        self.event_handlers[i] = handler
        return i

    def remove_event_handler(self, i: int) -> None:
        del self.event_handlers[i]

    def _emit(self, event: DialClientEvent) -> None:
        for handler in list(self.event_handlers.values()):
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"DialClient event handler raised exception processing {event}: {e}")

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._stopped = loop.create_future()
        self._closing = False
        self._transport_handler_id = self.transport.add_event_handler(self._on_transport_event)
        await self.transport.start()

    def search(self) -> None:
        """Multicasts searches for the DIAL device type and the DIAL service type."""
        self.transport.search({ "ST": DIAL_DEVICE_TYPE })
        self.transport.search({ "ST": DIAL_SERVICE_TYPE })

    def refresh(self) -> None:
        """Forgets all known receivers, without emitting "disappear", and searches again."""
        self._services.clear()
        self.search()

    async def stop(self) -> None:
        """Closes the transport. No events other than "stopped" are emitted after this is called."""
        if self._stopped is None:
            return
        if not self._closing:
            self._closing = True
            self.transport.close()
        await asyncio.shield(self._stopped)

    async def wait_for_ready(self) -> None:
        assert self._ready is not None
        await asyncio.shield(self._ready)

    async def wait_for_stopped(self) -> None:
        assert self._stopped is not None
        await asyncio.shield(self._stopped)

    def _on_transport_event(self, event: SsdpEvent) -> None:
        if event.event_type == SsdpEventType.CLOSE:
            self._on_close()
            return
        if self._closing:
            return
        if event.event_type == SsdpEventType.READY:
            self.search()
            if self._ready is not None and not self._ready.done():
                self._ready.set_result(None)
            self._emit(DialClientEvent(DialClientEventType.READY))
        elif event.event_type == SsdpEventType.FOUND:
            if event.headers.get("ST") in (DIAL_DEVICE_TYPE, DIAL_SERVICE_TYPE):
                self._on_alive(event.headers)
        elif event.event_type == SsdpEventType.NOTIFY:
            if event.headers.get("NT") not in (DIAL_DEVICE_TYPE, DIAL_SERVICE_TYPE):
                return
            nts = event.headers.get("NTS")
            if nts == SSDP_ALIVE:
                self._on_alive(event.headers)
            elif nts == SSDP_BYEBYE:
                self._on_byebye(event.headers)

    def _on_alive(self, headers: CaseInsensitiveDict[str]) -> None:
        location = headers.get("LOCATION")
        if not location or location in self._services:
            return
        self._services[location] = headers
        logger.debug(f"Found DIAL receiver at {location}")
        self._emit(DialClientEvent(DialClientEventType.FOUND, location, headers))

    def _on_byebye(self, headers: CaseInsensitiveDict[str]) -> None:
        location = headers.get("LOCATION")
        if not location or location not in self._services:
            return
        previous = self._services.pop(location)
        logger.debug(f"DIAL receiver at {location} disappeared")
        self._emit(DialClientEvent(DialClientEventType.DISAPPEAR, location, previous))

    def _on_close(self) -> None:
        self._closing = True
        if self._transport_handler_id is not None:
            self.transport.remove_event_handler(self._transport_handler_id)
            self._transport_handler_id = None
        if self._stopped is not None and not self._stopped.done():
            self._stopped.set_result(None)
        self._emit(DialClientEvent(DialClientEventType.STOPPED))

    async def simple_search(self, response_wait_time: float=DEFAULT_RESPONSE_WAIT_TIME) -> Dict[str, CaseInsensitiveDict[str]]:
        """Forgets known receivers, searches, waits a fixed time for responses to come in, and returns
           the receivers found as LOCATION -> headers."""
        self.refresh()
        await asyncio.sleep(response_wait_time)
        return dict(self._services)

    async def get_dial_device(self, description_url: str) -> DialDevice:
        """Fetches and parses the device description at description_url.

        Raises:
            TransportError:       The request could not be made.
            RemoteProtocolError:  The response status was not 200, or had no Application-URL header.
            DocumentParseError:   The device description is malformed.
        """
        try:
            if self.session is not None:
                status, application_url, body = await self._fetch_description(self.session, description_url)
            else:
                async with aiohttp.ClientSession() as session:
                    status, application_url, body = await self._fetch_description(session, description_url)
        except (aiohttp.ClientError, OSError) as e:
            raise TransportError(f"GET {description_url} failed: {e}") from e
        if status != 200:
            raise RemoteProtocolError(status, f"GET {description_url} failed with HTTP status {status}")
        if not application_url:
            raise RemoteProtocolError(status, f"{description_url} is not a DIAL device; no Application-URL header")
        # parsed as bytes so the XML declaration decides the encoding
        description = parse_device_description(body)
        return DialDevice(description, description_url, application_url, session=self.session)

    @staticmethod
    async def _fetch_description(session: aiohttp.ClientSession, url: str) -> Tuple[int, Optional[str], bytes]:
        logger.debug(f"Fetching device description {url}")
        async with session.get(url) as resp:
            body = await resp.read()
            return resp.status, resp.headers.get("Application-URL"), body

    async def __aenter__(self) -> DialClient:
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.stop()
        return False
