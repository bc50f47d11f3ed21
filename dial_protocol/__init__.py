#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package dial_protocol implements DIAL (DIscovery And Launch).

DIAL lets a controller (a phone, a browser) find receivers (TVs, streaming sticks) on the local
network and launch, query and stop named applications on them. Receivers advertise themselves
over SSDP, the UPnP Simple Service Discovery Protocol, on 239.255.255.250:1900, and serve a
UPnP device description whose Application-URL response header is the base URL of a small REST
interface for applications:

    GET    <Application-URL>/<name>          application description (state, pid, allowStop)
    POST   <Application-URL>/<name>          launch, with optional launch data as the body
    DELETE <Application-URL>/<name>/<pid>    stop

This package provides both sides: DialServer (a receiver, with application state delegated
to an AppProvider) and DialClient / DialDevice (a controller).
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict, HeaderValue

from .exceptions import (
    DialError,
    DialRequestError,
    DialNotFoundError,
    PayloadTooLargeError,
    HookFailureError,
    MethodNotAllowedError,
    BadRequestError,
    DialNotImplementedError,
    HookCompletionError,
    TransportError,
    RemoteProtocolError,
    DocumentParseError,
  )

from .ssdp_datagram import SsdpDatagram
from .ssdp_socket import SsdpSocket, SsdpSocketBinding, SsdpDatagramSubscriber
from .ssdp_peer import SsdpTransport, SsdpPeer, SsdpEvent, SsdpEventType
from .description import (
    Icon,
    Device,
    DeviceDescription,
    DEFAULT_ICON,
    render_device_description,
    render_app_description,
    parse_device_description,
    parse_app_description,
  )
from .app import (
    AppState,
    AppInfo,
    AppProvider,
    CallbackAppProvider,
    InMemoryAppProvider,
    DialRequestContext,
    HookCompletion,
    infer_state,
  )
from .config import DialServerConfig
from .app_control import DialAppControl
from .server import DialServer
from .client import DialClient, DialClientEvent, DialClientEventType, DEFAULT_RESPONSE_WAIT_TIME
from .device import DialDevice
from .util import CaseInsensitiveDict, merge_headers
from .constants import SSDP_MULTICAST_ADDRESS, SSDP_PORT, DIAL_SERVICE_TYPE, DIAL_DEVICE_TYPE

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict', 'HeaderValue',
    'DialError', 'DialRequestError', 'DialNotFoundError', 'PayloadTooLargeError', 'HookFailureError',
    'MethodNotAllowedError', 'BadRequestError', 'DialNotImplementedError', 'HookCompletionError',
    'TransportError', 'RemoteProtocolError', 'DocumentParseError',
    'SsdpDatagram',
    'SsdpSocket', 'SsdpSocketBinding', 'SsdpDatagramSubscriber',
    'SsdpTransport', 'SsdpPeer', 'SsdpEvent', 'SsdpEventType',
    'Icon', 'Device', 'DeviceDescription', 'DEFAULT_ICON',
    'render_device_description', 'render_app_description', 'parse_device_description', 'parse_app_description',
    'AppState', 'AppInfo', 'AppProvider', 'CallbackAppProvider', 'InMemoryAppProvider',
    'DialRequestContext', 'HookCompletion', 'infer_state',
    'DialServerConfig',
    'DialAppControl',
    'DialServer',
    'DialClient', 'DialClientEvent', 'DialClientEventType', 'DEFAULT_RESPONSE_WAIT_TIME',
    'DialDevice',
    'CaseInsensitiveDict', 'merge_headers',
    'SSDP_MULTICAST_ADDRESS', 'SSDP_PORT', 'DIAL_SERVICE_TYPE', 'DIAL_DEVICE_TYPE',
]
