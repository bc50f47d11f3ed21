#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SSDP messages are HTTP-over-UDP: a statement line, HTTP-style headers and a blank
line. DIAL uses three of them:

    NOTIFY * HTTP/1.1       an advertisement (NTS: ssdp:alive) or withdrawal (NTS: ssdp:byebye)
    M-SEARCH * HTTP/1.1     a multicast search request
    HTTP/1.1 200 OK         a unicast response to a search request
"""

from __future__ import annotations

import re

from dial_protocol.internal_types import *

from .util import (
    CaseInsensitiveDict,
    split_statement_line,
    parse_http_headers,
    encode_http_header,
    header_value_to_str,
)

NOTIFY_STATEMENT = "NOTIFY * HTTP/1.1"
SEARCH_STATEMENT = "M-SEARCH * HTTP/1.1"
RESPONSE_STATEMENT = "HTTP/1.1 200 OK"

_STATEMENT_RE = re.compile(
    r'^(?:HTTP/\d+\.\d+ +(?P<status_code>\d+)(?: .*)?'
    r'|(?P<method>[A-Z-]+) +\S+ +HTTP/\d+\.\d+ *)$'
  )

class SsdpDatagram(MutableMapping[str, str]):
    """One SSDP message, usable as a case-insensitive mapping of its headers.

    Build one from a statement and headers to send it, or from `raw_data` to
    decode a received packet. Header values are kept as the strings that go on the
    wire, and raw_data always reflects the current headers.
    """

    statement_line: str
    """The first line; e.g., "NOTIFY * HTTP/1.1"."""

    body: bytes
    """Anything following the blank line. Normally b''."""

    _headers: CaseInsensitiveDict[str]

    def __init__(
            self,
            statement: Optional[str]=None,
            headers: Optional[Mapping[str, NullableHeaderValue]]=None,
            raw_data: Optional[bytes]=None,
          ):
        if raw_data is not None:
            if statement is not None or headers is not None:
                raise ValueError("raw_data cannot be combined with statement or headers")
            self.statement_line, remainder = split_statement_line(raw_data)
            self._headers, self.body = parse_http_headers(remainder)
            return
        if statement is None:
            raise ValueError("Either statement or raw_data must be provided")
        self.statement_line = statement
        self.body = b''
        self._headers = CaseInsensitiveDict()
        for name, value in (headers or {}).items():
            if value is not None:
                self._headers[name] = header_value_to_str(value)

    @property
    def raw_data(self) -> bytes:
        """The encoded datagram. Headers are written sorted by name."""
        parts = [self.statement_line.encode('utf-8'), b'\r\n']
        for name in sorted(self._headers, key=str.lower):
            parts.append(encode_http_header(name, self._headers[name]))
        parts.append(b'\r\n')
        parts.append(self.body)
        return b''.join(parts)

    @property
    def headers(self) -> CaseInsensitiveDict[str]:
        return self._headers

    @property
    def method(self) -> Optional[str]:
        """"NOTIFY" or "M-SEARCH" for requests; None for responses."""
        m = _STATEMENT_RE.match(self.statement_line)
        return None if m is None else m.group('method')

    @property
    def status_code(self) -> Optional[int]:
        """The status of a response; None for requests."""
        m = _STATEMENT_RE.match(self.statement_line)
        if m is None or m.group('status_code') is None:
            return None
        return int(m.group('status_code'))

    @property
    def is_notify(self) -> bool:
        return self.method == "NOTIFY"

    @property
    def is_search(self) -> bool:
        return self.method == "M-SEARCH"

    @property
    def is_response(self) -> bool:
        return self.status_code is not None

    @property
    def hdr_nt(self) -> Optional[str]:
        return self._headers.get("NT")

    @property
    def hdr_nts(self) -> Optional[str]:
        return self._headers.get("NTS")

    @property
    def hdr_st(self) -> Optional[str]:
        return self._headers.get("ST")

    @property
    def hdr_location(self) -> Optional[str]:
        return self._headers.get("LOCATION")

    @property
    def hdr_usn(self) -> Optional[str]:
        return self._headers.get("USN")

    def __getitem__(self, key: str) -> str:
        return self._headers[key]

    def __setitem__(self, key: str, value: NullableHeaderValue) -> None:
        # None removes the header
        if value is None:
            self._headers.pop(key, None)
        else:
            self._headers[key] = header_value_to_str(value)

    def __delitem__(self, key: str) -> None:
        del self._headers[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._headers)

    def __len__(self) -> int:
        return len(self._headers)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, SsdpDatagram):
            return NotImplemented
        return (self.statement_line == other.statement_line
                and self._headers == other._headers
                and self.body == other.body)

    def copy(self) -> SsdpDatagram:
        result = SsdpDatagram(self.statement_line, headers=self._headers)
        result.body = self.body
        return result

    def __str__(self) -> str:
        return f"SsdpDatagram({self.statement_line!r}, headers={dict(self._headers)})"

    def __repr__(self) -> str:
        return str(self)
