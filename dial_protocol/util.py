#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Header and network helpers shared by the SSDP and HTTP layers.
"""

from __future__ import annotations

import re
import platform
from ipaddress import IPv4Address

import netifaces

from dial_protocol.internal_types import *
from .version import __version__

from email.parser import BytesHeaderParser
from email.header import Header as EmailParserHeader
from requests.structures import CaseInsensitiveDict

_LINE_BREAK_RE = re.compile(rb'\r?\n')
_END_OF_HEADERS_RE = re.compile(rb'(?:^|\r?\n)\r?\n')

def split_statement_line(data: bytes) -> Tuple[str, bytes]:
    """Separates the first line of an HTTP-style message from the rest. LF is accepted
       in place of CRLF. Returns (statement_line, remainder)."""
    parts = _LINE_BREAK_RE.split(data, 1)
    remainder = parts[1] if len(parts) > 1 else b''
    return parts[0].decode('utf-8').strip(), remainder

def parse_http_headers(data: bytes) -> Tuple[CaseInsensitiveDict[str], bytes]:
    """Parses the header block of an HTTP-style message whose statement line has already
       been removed.

    The block ends at the first empty line; everything after it is returned as the body.
    Lines may end in LF or CRLF, and the last header line need not be terminated.
    Header values are stripped of surrounding whitespace.

    Returns (headers, body).
    """
    m = _END_OF_HEADERS_RE.search(data)
    if m is None:
        header_block, body = data, b''
    else:
        header_block, body = data[:m.start()], data[m.end():]
    lines = _LINE_BREAK_RE.split(header_block)
    msg = BytesHeaderParser().parsebytes(b'\r\n'.join(lines) + b'\r\n\r\n')
    headers: CaseInsensitiveDict[str] = CaseInsensitiveDict()
    for name, value in msg.items():
        headers[name] = value.strip()
    return headers, body

def encode_http_header(name: str, value: str) -> bytes:
    """Returns one CRLF-terminated "Name: value" header line. Long values are folded
       as in RFC 2822."""
    folded = EmailParserHeader(value, header_name=name).encode(linesep='\r\n')
    return f"{name}: {folded}\r\n".encode()

def header_value_to_str(value: HeaderValue) -> str:
    """Formats a header value the way it is sent on the wire. Booleans are
       lowercased ("true"/"false")."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)

def filter_extra_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, HeaderValue]:
    """Returns only the entries of a caller-supplied header mapping whose values
       are str, int, float or bool. Other entries are silently dropped."""
    result: Dict[str, HeaderValue] = {}
    if headers is not None:
        for name, value in headers.items():
            if isinstance(value, (str, int, float, bool)):
                result[name] = value
    return result

def merge_headers(
        base: Mapping[str, NullableHeaderValue],
        defaults: Mapping[str, NullableHeaderValue]
      ) -> CaseInsensitiveDict[HeaderValue]:
    """Returns a new case-insensitive header dict containing all of `base`, with each
       header in `defaults` added only where `base` has no value (absent, None or empty)
       for that name. Neither input is modified."""
    result: CaseInsensitiveDict[HeaderValue] = CaseInsensitiveDict()
    for name, value in base.items():
        if value is not None and value != '':
            result[name] = value
    for name, value in defaults.items():
        if value is not None and value != '' and name not in result:
            result[name] = value
    return result

def get_server_string() -> str:
    """Returns the SERVER header value identifying this host and package; e.g.,
       "Linux/6.1.0 UPnP/1.1 dial-protocol/1.0.0"."""
    return f"{platform.system()}/{platform.release()} UPnP/1.1 dial-protocol/{__version__}"

def _default_route_interface() -> Optional[str]:
    """Name of the interface carrying the IPv4 default route, or None."""
    default = netifaces.gateways().get('default', {})
    if netifaces.AF_INET not in default:
        return None
    return default[netifaces.AF_INET][1]

def get_multicast_interface_addresses(include_loopback: bool=False) -> List[str]:
    """Returns the IPv4 addresses of the local interfaces that SSDP sockets can be bound to.

    The address of the default-route interface comes first and loopback addresses (only
    present if `include_loopback`) come last. 172.x addresses, usually docker bridges,
    rank after other addresses.
    """
    default_ifname = _default_route_interface()
    ranked: List[Tuple[int, str]] = []
    for ifname in netifaces.interfaces():
        for addrinfo in netifaces.ifaddresses(ifname).get(netifaces.AF_INET, []):
            ip: Optional[str] = addrinfo.get('addr')
            if not ip:
                continue
            is_loopback = IPv4Address(ip).is_loopback
            if is_loopback and not include_loopback:
                continue
            if ifname == default_ifname:
                rank = 0
            elif is_loopback:
                rank = 3
            elif ip.startswith('172.'):
                rank = 2
            else:
                rank = 1
            ranked.append((rank, ip))
    return [ip for _, ip in sorted(ranked)]
