#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
DialServer -- A DIAL receiver that can:

  1. Advertise exactly one device over SSDP under five fixed service types, when the
     transport becomes ready and periodically thereafter
  2. Reply directly to SSDP searches for any of those service types
  3. Serve the device description and the DIAL app-control HTTP surface, delegating all
     application state to an AppProvider
  4. Withdraw all five advertisements on stop, closing the transport only once every
     withdrawal has been acknowledged
"""

from __future__ import annotations

import asyncio

from aiohttp import web

from dial_protocol.internal_types import *
from .pkg_logging import logger
from .constants import (
    DIAL_SERVICE_TYPE,
    DIAL_DEVICE_TYPE,
    UPNP_ROOT_DEVICE,
    SSDP_ALL,
    UPNP_CONFIG_ID,
    UPNP_BOOT_ID,
    NETWORK_INTERFACE_ADDRESS_PLACEHOLDER,
    DEVICE_DESC_PATH,
  )
from .app import AppProvider, InMemoryAppProvider
from .app_control import DialAppControl
from .config import DialServerConfig
from .description import Device
from .ssdp_peer import SsdpTransport, SsdpPeer, SsdpEvent, SsdpEventType
from .util import merge_headers, get_server_string

DialServerEventHandler = Callable[[str], None]
"""A callback for DialServer lifecycle signals; called with "ready" or "stopped"."""

class DialServer(AsyncContextManager['DialServer']):
    """
    A DIAL receiver for one device.

    Usage:
        provider = InMemoryAppProvider([AppInfo("YouTube", allow_stop=True)])
        async with DialServer(DialServerConfig(port=3000, prefix="/dial"), provider) as server:
            await server.wait_for_stopped()
    """

    config: DialServerConfig
    device: Device
    app_provider: AppProvider

    transport: SsdpTransport
    """The discovery transport. By default an SsdpPeer bound per config.bind_addresses."""

    app_control: DialAppControl
    """The HTTP request handlers."""

    web_app: web.Application
    """The aiohttp application that the DIAL routes are installed in."""

    serve_http: bool
    """If True, start() runs web_app on config.host:config.port. If False, the caller serves web_app
       itself, and config.port must be the port it is served on."""

    server_string: str
    """The SERVER header value sent in advertisements and replies."""

    event_handlers: Dict[int, DialServerEventHandler]
    i_next_event_handler: int = 0

    runner: Optional[web.AppRunner] = None
    advertiser_task: Optional[asyncio.Task[None]] = None
    _ready: Optional[asyncio.Future[None]] = None
    _stopped: Optional[asyncio.Future[None]] = None
    _transport_handler_id: Optional[int] = None
    _stopping: bool = False

    def __init__(
            self,
            config: Optional[DialServerConfig]=None,
            app_provider: Optional[AppProvider]=None,
            transport: Optional[SsdpTransport]=None,
            web_app: Optional[web.Application]=None,
            serve_http: bool=True,
          ) -> None:
        self.config = DialServerConfig() if config is None else config
        self.device = self.config.make_device()
        self.app_provider = InMemoryAppProvider() if app_provider is None else app_provider
        if transport is None:
            transport = SsdpPeer(
                bind_addresses=self.config.bind_addresses,
                include_loopback=self.config.include_loopback,
                max_age=self.config.max_age,
              )
        self.transport = transport
        self.serve_http = serve_http
        self.server_string = get_server_string()
        self.event_handlers = {}
        self.app_control = DialAppControl(self.config, self.device, self.app_provider)
        self.web_app = web.Application() if web_app is None else web_app
        self.app_control.setup_routes(self.web_app)

    @property
    def service_types(self) -> List[str]:
        """The five service types under which the device is advertised."""
        return [
            DIAL_SERVICE_TYPE,
            DIAL_DEVICE_TYPE,
            UPNP_ROOT_DEVICE,
            SSDP_ALL,
            f"uuid:{self.device.uuid}",
          ]

    @property
    def port(self) -> int:
        """The TCP port of the HTTP server. 0 until start() if an ephemeral port was requested."""
        return self.app_control.port or self.config.port

    @property
    def location(self) -> str:
        """The LOCATION of the device description. The transport substitutes the address of each interface."""
        return f"http://{NETWORK_INTERFACE_ADDRESS_PLACEHOLDER}:{self.port}{self.config.prefix}{DEVICE_DESC_PATH}"

    def usn(self, service_type: str) -> str:
        return f"uuid:{self.device.uuid}::{service_type}"

    def add_event_handler(self, handler: DialServerEventHandler) -> int:
        """Adds a handler to be called with "ready" after the initial advertisements have been sent,
           and with "stopped" after the transport has closed. Returns an ID for remove_event_handler()."""
        i = self.i_next_event_handler
        self.i_next_event_handler += 1
        self.event_handlers[i] = handler
        return i

    def remove_event_handler(self, i: int) -> None:
        del self.event_handlers[i]

    def _emit(self, signal: str) -> None:
        for handler in list(self.event_handlers.values()):
            try:
                handler(signal)
            except Exception as e:
                logger.warning(f"DialServer event handler raised exception processing {signal!r}: {e}")

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._stopped = loop.create_future()
        self._stopping = False
        if self.serve_http:
            self.runner = web.AppRunner(self.web_app)
            await self.runner.setup()
            site = web.TCPSite(self.runner, self.config.host, self.config.port)
            await site.start()
            if not self.config.port:
                self.app_control.port = self._bound_port()
            logger.info(f"DIAL HTTP server listening on port {self.port}, prefix '{self.config.prefix}'")
        self._transport_handler_id = self.transport.add_event_handler(self._on_transport_event)
        try:
            await self.transport.start()
        except BaseException:
            await self._cleanup_http()
            raise

    def _bound_port(self) -> int:
        assert self.runner is not None
        for address in self.runner.addresses:
            if isinstance(address, tuple) and len(address) >= 2:
                return int(address[1])
        raise RuntimeError("Unable to determine the port of the DIAL HTTP server")

    async def stop(self) -> None:
        """Withdraws all advertisements, closes the transport once every withdrawal has been acknowledged,
           and waits for the transport to close. Then shuts down the HTTP server, if it was started here."""
        if self._stopped is None or self._stopping:
            return
        self._stopping = True
        if self.advertiser_task is not None:
            self.advertiser_task.cancel()
            try:
                await self.advertiser_task
            except asyncio.CancelledError:
                pass
            self.advertiser_task = None
        self._withdraw()
        try:
            await self._stopped
        finally:
            await self._cleanup_http()

    def _withdraw(self) -> None:
        service_types = self.service_types
        remaining = len(service_types)
        def on_ack() -> None:
            nonlocal remaining
            remaining -= 1
            if remaining == 0:
                logger.debug("All byebye advertisements acknowledged; closing transport")
                self.transport.close()
        for service_type in service_types:
            self.transport.byebye(merge_headers({
                "NT": service_type,
                "USN": self.usn(service_type),
                "SERVER": self.server_string,
                "LOCATION": self.location,
              }, self.config.extra_headers), on_ack)

    async def _cleanup_http(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None

    async def wait_for_ready(self) -> None:
        assert self._ready is not None
        await asyncio.shield(self._ready)

    async def wait_for_stopped(self) -> None:
        assert self._stopped is not None
        await asyncio.shield(self._stopped)

    def _on_transport_event(self, event: SsdpEvent) -> None:
        if event.event_type == SsdpEventType.READY:
            self._on_ready()
        elif event.event_type == SsdpEventType.SEARCH:
            self._on_search(event)
        elif event.event_type == SsdpEventType.CLOSE:
            self._on_close()

    def _on_ready(self) -> None:
        self.announce()
        if self.config.advertise_interval > 0.0 and self.advertiser_task is None:
            self.advertiser_task = asyncio.create_task(self._run_advertiser_task())
        logger.info(f"DIAL server ready: {self.device}")
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(None)
        self._emit("ready")

    def announce(self) -> None:
        """Sends one ssdp:alive advertisement per service type."""
        for service_type in self.service_types:
            self.transport.alive(merge_headers({
                "NT": service_type,
                "USN": self.usn(service_type),
                "SERVER": self.server_string,
                "LOCATION": self.location,
              }, self.config.extra_headers))

    def _on_search(self, event: SsdpEvent) -> None:
        st = event.headers.get("ST")
        if st is None or st not in self.service_types or event.address is None:
            return
        logger.debug(f"Replying to search for {st} from {event.address}")
        self.transport.reply(merge_headers({
            "LOCATION": self.location,
            "ST": st,
            "CONFIGID.UPNP.ORG": UPNP_CONFIG_ID,
            "BOOTID.UPNP.ORG": UPNP_BOOT_ID,
            "SERVER": self.server_string,
            "USN": self.usn(st),
          }, self.config.extra_headers), event.address)

    def _on_close(self) -> None:
        if self._transport_handler_id is not None:
            self.transport.remove_event_handler(self._transport_handler_id)
            self._transport_handler_id = None
        if self.advertiser_task is not None:
            self.advertiser_task.cancel()
            self.advertiser_task = None
        logger.info("DIAL server stopped")
        if self._stopped is not None and not self._stopped.done():
            self._stopped.set_result(None)
        self._emit("stopped")

    async def _run_advertiser_task(self) -> None:
        logger.debug(f"DIAL advertiser task starting, advertising every {self.config.advertise_interval} seconds")
        try:
            while True:
                await asyncio.sleep(self.config.advertise_interval)
                self.announce()
        except asyncio.CancelledError:
            logger.debug("DIAL advertiser task cancelled; exiting")
            raise

    async def __aenter__(self) -> DialServer:
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
