#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Configuration of a DialServer."""

from __future__ import annotations

import socket
import uuid as uuid_module

from dial_protocol.internal_types import *
from .constants import DEFAULT_MAX_CONTENT_LENGTH, SSDP_DEFAULT_MAX_AGE
from .description import Device, Icon
from .util import filter_extra_headers

CorsAllowOrigins = Union[bool, str, Iterable[str]]
"""True (reflect any origin), "*" (any origin), or an iterable of allowed origins."""

class DialServerConfig:
    """
    Local configuration of a DIAL receiver. All parameters are optional.

    Parameters:
        prefix:              Path prefix of all DIAL HTTP routes; e.g., "/dial". Default: "" (no prefix).
        port:                TCP port of the HTTP server. Default: 0 (an ephemeral port is chosen when the
                                server starts; the actual port is then used in advertisements).
        host:                Host/address the HTTP server binds to, also used in URLs when a request
                                does not say which host it was sent to. Default: None (all interfaces).
        uuid:                Stable unique id of the device. Default: a random UUID.
        friendly_name:       Default: the local host name, or "unknown".
        manufacturer:        Default: "unknown manufacturer".
        model_name:          Default: "unknown model".
        max_content_length:  Maximum accepted request body size in bytes. Values below 4096 (or unparseable)
                                are raised to 4096.
        cors_allow_origins:  If not None, CORS response headers are added for allowed origins.
        extra_headers:       Additional headers added to every SSDP advertisement and reply. Values that are
                                not str, int, float or bool are dropped. Never overrides protocol headers.
        advertise_interval:  Seconds between periodic re-announcements. Default: 2/3 of max_age. 0 disables.
        max_age:             CACHE-CONTROL max-age of advertisements.
        icons:               Icons listed in the device description. Default: one 144x144 PNG.
        bind_addresses:      Local IP addresses the default SSDP transport binds to. Default: all non-loopback.
        include_loopback:    If True, the default SSDP transport also binds to loopback addresses.
    """

    prefix: str
    port: int
    host: Optional[str]
    uuid: str
    friendly_name: str
    manufacturer: str
    model_name: str
    max_content_length: int
    cors_allow_origins: Optional[CorsAllowOrigins]
    extra_headers: Dict[str, HeaderValue]
    advertise_interval: float
    max_age: int
    icons: Optional[List[Icon]]
    bind_addresses: Optional[List[str]]
    include_loopback: bool

    def __init__(
            self,
            prefix: Optional[str]=None,
            port: Optional[int]=None,
            host: Optional[str]=None,
            uuid: Optional[str]=None,
            friendly_name: Optional[str]=None,
            manufacturer: Optional[str]=None,
            model_name: Optional[str]=None,
            max_content_length: Optional[Union[int, str]]=None,
            cors_allow_origins: Optional[CorsAllowOrigins]=None,
            extra_headers: Optional[Mapping[str, Any]]=None,
            advertise_interval: Optional[float]=None,
            max_age: int=SSDP_DEFAULT_MAX_AGE,
            icons: Optional[Iterable[Icon]]=None,
            bind_addresses: Optional[Iterable[str]]=None,
            include_loopback: bool=False,
          ) -> None:
        self.prefix = (prefix or "").rstrip('/')
        self.port = port or 0
        self.host = host
        self.uuid = uuid or str(uuid_module.uuid4())
        self.friendly_name = friendly_name or socket.gethostname() or "unknown"
        self.manufacturer = manufacturer or "unknown manufacturer"
        self.model_name = model_name or "unknown model"
        self.max_content_length = self._normalize_max_content_length(max_content_length)
        self.cors_allow_origins = cors_allow_origins
        self.extra_headers = filter_extra_headers(extra_headers)
        self.max_age = max_age
        if advertise_interval is None:
            advertise_interval = max_age * (2 / 3)
        self.advertise_interval = advertise_interval
        self.icons = None if icons is None else list(icons)
        self.bind_addresses = None if bind_addresses is None else list(bind_addresses)
        self.include_loopback = include_loopback

    @staticmethod
    def _normalize_max_content_length(value: Optional[Union[int, str]]) -> int:
        try:
            n = int(value) if value is not None else DEFAULT_MAX_CONTENT_LENGTH
        except ValueError:
            n = DEFAULT_MAX_CONTENT_LENGTH
        return max(n, DEFAULT_MAX_CONTENT_LENGTH)

    def make_device(self) -> Device:
        """Returns the Device identity described by this configuration."""
        return Device(
            uuid=self.uuid,
            friendly_name=self.friendly_name,
            manufacturer=self.manufacturer,
            model_name=self.model_name,
            icons=self.icons,
          )
