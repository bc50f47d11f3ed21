"""
Tests for DialClient discovery bookkeeping and description fetch.
"""
import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from dial_protocol import (
    DialAppControl,
    DialClient,
    DialClientEventType,
    DialServerConfig,
    DocumentParseError,
    RemoteProtocolError,
    SsdpEventType,
    TransportError,
)
from dial_protocol.constants import DIAL_DEVICE_TYPE, DIAL_SERVICE_TYPE

LOCATION = "http://192.168.1.5:3000/dial/ssdp/device-desc.xml"
OTHER_LOCATION = "http://192.168.1.6:8008/ssdp/device-desc.xml"
RECEIVER = ("192.168.1.5", 1900)


@pytest.fixture
async def client(transport):
    """
    Returns a started DialClient over a fake transport, recording its events in client.events.
    """
    client = DialClient(transport=transport)
    client.events = []
    client.add_event_handler(client.events.append)
    await client.start()
    yield client
    await client.stop()


def kinds(events):
    return [event.event_type for event in events]


def found(transport, location=LOCATION, st=DIAL_SERVICE_TYPE):
    transport.fire(SsdpEventType.FOUND, {"ST": st, "LOCATION": location, "USN": f"uuid:x::{st}"}, RECEIVER)


def notify(transport, nts, location=LOCATION, nt=DIAL_DEVICE_TYPE):
    transport.fire(SsdpEventType.NOTIFY, {"NT": nt, "NTS": nts, "LOCATION": location}, RECEIVER)


class TestDiscovery:
    async def test_ready_searches_device_then_service(self, client, transport):
        assert transport.search_calls == [{"ST": DIAL_DEVICE_TYPE}, {"ST": DIAL_SERVICE_TYPE}]
        assert kinds(client.events) == [DialClientEventType.READY]
        await asyncio.wait_for(client.wait_for_ready(), 1.0)

    async def test_found_once_per_location(self, client, transport):
        """
        A location is reported once, however many service types it answers for.
        """
        found(transport, st=DIAL_DEVICE_TYPE)
        found(transport, st=DIAL_SERVICE_TYPE)
        notify(transport, "ssdp:alive")
        found(transport, location=OTHER_LOCATION)
        found_events = [e for e in client.events if e.event_type == DialClientEventType.FOUND]
        assert [e.location for e in found_events] == [LOCATION, OTHER_LOCATION]
        assert found_events[0].headers["st"] == DIAL_DEVICE_TYPE
        assert set(client.services) == {LOCATION, OTHER_LOCATION}

    async def test_other_service_types_are_ignored(self, client, transport):
        found(transport, st="upnp:rootdevice")
        notify(transport, "ssdp:alive", nt="urn:schemas-upnp-org:device:MediaRenderer:1")
        assert kinds(client.events) == [DialClientEventType.READY]
        assert len(client.services) == 0

    async def test_alive_notify_is_found(self, client, transport):
        notify(transport, "ssdp:alive", nt=DIAL_SERVICE_TYPE)
        assert kinds(client.events)[-1] == DialClientEventType.FOUND
        assert LOCATION in client.services

    async def test_byebye_disappears_with_previous_headers(self, client, transport):
        """
        A byebye for a known location removes it and reports the headers last recorded for it.
        """
        found(transport)
        notify(transport, "ssdp:byebye")
        event = client.events[-1]
        assert event.event_type == DialClientEventType.DISAPPEAR
        assert event.location == LOCATION
        assert event.headers["ST"] == DIAL_SERVICE_TYPE
        assert LOCATION not in client.services

    async def test_byebye_for_unknown_location(self, client, transport):
        notify(transport, "ssdp:byebye")
        assert kinds(client.events) == [DialClientEventType.READY]

    async def test_refresh(self, client, transport):
        """
        Refresh forgets known locations without reporting them as gone, and searches again.
        """
        found(transport)
        client.refresh()
        assert len(client.services) == 0
        assert DialClientEventType.DISAPPEAR not in kinds(client.events)
        assert len(transport.search_calls) == 4
        found(transport)
        assert kinds(client.events).count(DialClientEventType.FOUND) == 2

    async def test_services_view_is_read_only(self, client, transport):
        found(transport)
        with pytest.raises(TypeError):
            client.services[OTHER_LOCATION] = {}

    async def test_no_events_after_stop(self, client, transport):
        await client.stop()
        assert transport.closed
        assert kinds(client.events)[-1] == DialClientEventType.STOPPED
        count = len(client.events)
        found(transport)
        notify(transport, "ssdp:byebye")
        assert len(client.events) == count


class TestGetDialDevice:
    @pytest.fixture
    async def receiver(self, provider):
        """
        Returns a running aiohttp test server with the DIAL routes under "/dial".
        """
        config = DialServerConfig(prefix="/dial", friendly_name="Kitchen TV", manufacturer="Acme", model_name="TV-2")
        app = web.Application()
        DialAppControl(config, config.make_device(), provider).setup_routes(app)
        async with TestServer(app) as server:
            server.config = config
            yield server

    async def test_get_dial_device(self, receiver, transport):
        client = DialClient(transport=transport)
        url = str(receiver.make_url("/dial/ssdp/device-desc.xml"))
        device = await client.get_dial_device(url)
        assert device.uuid == receiver.config.uuid
        assert device.friendly_name == "Kitchen TV"
        assert device.description_url == url
        assert device.application_url == str(receiver.make_url("/dial/apps"))

    async def test_missing_application_url(self, transport):
        async def handler(request):
            return web.Response(text="<root><device/></root>", content_type="application/xml")

        app = web.Application()
        app.router.add_get("/desc.xml", handler)
        async with TestServer(app) as server:
            with pytest.raises(RemoteProtocolError):
                await DialClient(transport=transport).get_dial_device(str(server.make_url("/desc.xml")))

    async def test_error_status(self, receiver, transport):
        with pytest.raises(RemoteProtocolError) as info:
            await DialClient(transport=transport).get_dial_device(str(receiver.make_url("/nothing.xml")))
        assert info.value.status == 404

    async def test_malformed_description(self, transport):
        async def handler(request):
            return web.Response(text="<root><device>", headers={"Application-URL": "http://h/apps"})

        app = web.Application()
        app.router.add_get("/desc.xml", handler)
        async with TestServer(app) as server:
            with pytest.raises(DocumentParseError):
                await DialClient(transport=transport).get_dial_device(str(server.make_url("/desc.xml")))

    async def test_undecodable_description(self, transport):
        """
        A description that is not valid in its declared encoding is a parse error.
        """
        async def handler(request):
            return web.Response(
                body=b"<root><device><friendlyName>Caf\xe9</friendlyName></device></root>",
                content_type="text/xml",
                headers={"Application-URL": "http://h/apps"},
            )

        app = web.Application()
        app.router.add_get("/desc.xml", handler)
        async with TestServer(app) as server:
            with pytest.raises(DocumentParseError):
                await DialClient(transport=transport).get_dial_device(str(server.make_url("/desc.xml")))

    async def test_description_encoding_from_xml_declaration(self, transport):
        async def handler(request):
            return web.Response(
                body=b'<?xml version="1.0" encoding="ISO-8859-1"?>'
                     b"<root><device><friendlyName>Caf\xe9</friendlyName></device></root>",
                content_type="text/xml",
                headers={"Application-URL": "http://h/apps/"},
            )

        app = web.Application()
        app.router.add_get("/desc.xml", handler)
        async with TestServer(app) as server:
            device = await DialClient(transport=transport).get_dial_device(str(server.make_url("/desc.xml")))
        assert device.friendly_name == "Caf\u00e9"
        assert device.application_url == "http://h/apps"

    async def test_connection_failure(self, transport):
        app = web.Application()
        server = TestServer(app)
        await server.start_server()
        url = str(server.make_url("/desc.xml"))
        await server.close()
        with pytest.raises(TransportError):
            await DialClient(transport=transport).get_dial_device(url)
