"""
Tests for server configuration defaults and normalization.
"""
import pytest

from dial_protocol import DEFAULT_ICON, DialServerConfig


def test_defaults():
    config = DialServerConfig()
    assert config.prefix == ""
    assert config.port == 0
    assert config.max_content_length == 4096
    assert config.max_age == 1800
    assert config.advertise_interval == pytest.approx(1200.0)
    assert config.cors_allow_origins is None
    assert config.extra_headers == {}
    assert config.friendly_name
    assert config.uuid != DialServerConfig().uuid


@pytest.mark.parametrize("value, expected", [
    (None, 4096),
    (100, 4096),
    (8192, 8192),
    ("16384", 16384),
    ("lots", 4096),
])
def test_max_content_length_has_a_floor(value, expected):
    """
    The body cap never drops below 4096 bytes.
    """
    assert DialServerConfig(max_content_length=value).max_content_length == expected


def test_prefix_trailing_slash_is_removed():
    assert DialServerConfig(prefix="/dial/").prefix == "/dial"


def test_extra_headers_are_filtered():
    config = DialServerConfig(extra_headers={"X-Ok": "yes", "X-Num": 3, "X-Bad": object()})
    assert config.extra_headers == {"X-Ok": "yes", "X-Num": 3}


def test_make_device():
    device = DialServerConfig(uuid="abc", friendly_name="TV", manufacturer="Acme", model_name="M").make_device()
    assert device.udn == "uuid:abc"
    assert device.friendly_name == "TV"
    assert device.icons == (DEFAULT_ICON,)
