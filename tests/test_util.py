"""
Tests for header helpers.
"""
import netifaces
import pytest

from dial_protocol.util import (
    encode_http_header,
    filter_extra_headers,
    get_multicast_interface_addresses,
    get_server_string,
    header_value_to_str,
    merge_headers,
    parse_http_headers,
    split_statement_line,
)
from dial_protocol import __version__


class TestMergeHeaders:
    def test_existing_value_wins(self):
        """
        A default never replaces a value already present in the base.
        """
        merged = merge_headers({"USN": "uuid:abc::upnp:rootdevice"}, {"USN": "bogus", "X-Extra": "1"})
        assert merged["USN"] == "uuid:abc::upnp:rootdevice"
        assert merged["X-Extra"] == "1"

    def test_names_are_case_insensitive(self):
        """
        A default whose name differs only in case from a base header is not added.
        """
        merged = merge_headers({"LOCATION": "http://a/desc.xml"}, {"location": "http://b/desc.xml"})
        assert merged["Location"] == "http://a/desc.xml"
        assert len(merged) == 1

    def test_empty_and_none_base_values_are_filled(self):
        """
        Base entries that are None or empty count as absent.
        """
        merged = merge_headers({"A": "", "B": None, "C": 0}, {"A": "a", "B": "b", "C": 5})
        assert merged["A"] == "a"
        assert merged["B"] == "b"
        assert merged["C"] == 0

    def test_inputs_are_not_modified(self):
        base = {"NT": "upnp:rootdevice"}
        defaults = {"X-Extra": "1"}
        merge_headers(base, defaults)
        assert base == {"NT": "upnp:rootdevice"}
        assert defaults == {"X-Extra": "1"}


def test_filter_extra_headers_drops_unsupported_values():
    """
    Only str, int, float and bool values survive.
    """
    filtered = filter_extra_headers({
        "S": "x", "I": 1, "F": 1.5, "B": True, "L": [1], "D": {"a": 1}, "N": None,
    })
    assert filtered == {"S": "x", "I": 1, "F": 1.5, "B": True}


def test_filter_extra_headers_none():
    assert filter_extra_headers(None) == {}


def test_header_value_to_str():
    assert header_value_to_str(True) == "true"
    assert header_value_to_str(False) == "false"
    assert header_value_to_str(7337) == "7337"
    assert header_value_to_str("x") == "x"


def test_server_string_names_package_version():
    server = get_server_string()
    assert "UPnP/1.1" in server
    assert server.endswith(f"dial-protocol/{__version__}")


def test_split_statement_line():
    assert split_statement_line(b"NOTIFY * HTTP/1.1\r\nNT: x\nNTS: y") == ("NOTIFY * HTTP/1.1", b"NT: x\nNTS: y")
    assert split_statement_line(b"HTTP/1.1 200 OK") == ("HTTP/1.1 200 OK", b"")


def test_parse_http_headers_returns_body():
    headers, body = parse_http_headers(b"A: 1\r\nB: 2\r\n\r\nbody")
    assert dict(headers) == {"A": "1", "B": "2"}
    assert body == b"body"


def test_parse_http_headers_without_terminator():
    headers, body = parse_http_headers(b"A: 1")
    assert headers["a"] == "1"
    assert body == b""


def test_parse_http_headers_accepts_bare_lf():
    """
    Header lines terminated by LF alone are accepted and values are trimmed.
    """
    headers, body = parse_http_headers(b"HOST: 239.255.255.250:1900\nST:  upnp:rootdevice \n\n")
    assert headers["host"] == "239.255.255.250:1900"
    assert headers["St"] == "upnp:rootdevice"
    assert body == b""


def test_encode_http_header():
    assert encode_http_header("ST", "ssdp:all") == b"ST: ssdp:all\r\n"


class TestMulticastInterfaceAddresses:
    @pytest.fixture(autouse=True)
    def interfaces(self, monkeypatch):
        ifaddresses = {
            "lo": {netifaces.AF_INET: [{"addr": "127.0.0.1"}]},
            "docker0": {netifaces.AF_INET: [{"addr": "172.17.0.1"}]},
            "wlan0": {netifaces.AF_INET: [{"addr": "10.0.0.7"}]},
            "eth0": {netifaces.AF_INET: [{"addr": "192.168.1.5"}], netifaces.AF_INET6: [{"addr": "fe80::1"}]},
            "tun0": {},
        }
        monkeypatch.setattr(netifaces, "interfaces", lambda: list(ifaddresses))
        monkeypatch.setattr(netifaces, "ifaddresses", lambda name: ifaddresses[name])
        monkeypatch.setattr(netifaces, "gateways", lambda: {"default": {netifaces.AF_INET: ("192.168.1.1", "eth0")}})

    def test_default_route_first_and_docker_last(self):
        assert get_multicast_interface_addresses() == ["192.168.1.5", "10.0.0.7", "172.17.0.1"]

    def test_loopback_on_request(self):
        assert get_multicast_interface_addresses(include_loopback=True)[-1] == "127.0.0.1"
