"""
Tests for DialDevice against an in-process receiver.
"""
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from dial_protocol import (
    DialAppControl,
    DialClient,
    DialDevice,
    DialError,
    DialServerConfig,
    DeviceDescription,
    DocumentParseError,
    RemoteProtocolError,
)


@pytest.fixture
async def device(provider, transport):
    """
    Returns a DialDevice for a receiver running the DIAL routes under "/dial".
    """
    config = DialServerConfig(prefix="/dial")
    app = web.Application()
    DialAppControl(config, config.make_device(), provider).setup_routes(app)
    async with TestServer(app) as server:
        yield await DialClient(transport=transport).get_dial_device(str(server.make_url("/dial/ssdp/device-desc.xml")))


@pytest.fixture
async def recorder():
    """
    Returns a running server that records launch requests and answers with a canned status.
    """
    app = web.Application()
    state = {"requests": [], "status": 201}

    async def launch(request):
        body = await request.read()
        state["requests"].append((dict(request.headers), body))
        return web.Response(status=state["status"], text="launched")

    async def stop(request):
        return web.Response(status=state["status"])

    app.router.add_post("/apps/{app_name}", launch)
    app.router.add_delete("/apps/{app_name}/{pid}", stop)
    async with TestServer(app) as server:
        server.state = state
        yield server


def device_for(server):
    return DialDevice(DeviceDescription(), None, str(server.make_url("/apps/")))


class TestLifecycle:
    async def test_launch_info_stop(self, device):
        """
        Launch, query and stop an app end to end.
        """
        info = await device.get_app_info("YouTube")
        assert info["state"] == "stopped"

        await device.launch_app("YouTube", "v=abc")
        info = await device.get_app_info("YouTube")
        assert info["state"] == "running"
        pid = info["link"]["href"]

        assert await device.stop_app("YouTube", pid) == 200
        assert (await device.get_app_info("YouTube"))["state"] == "stopped"

    async def test_app_info_xml(self, device):
        xml = await device.get_app_info_xml("Netflix")
        assert "<name>Netflix</name>" in xml

    async def test_unknown_app(self, device):
        with pytest.raises(RemoteProtocolError) as info:
            await device.get_app_info("Unknown")
        assert info.value.status == 404
        with pytest.raises(RemoteProtocolError):
            await device.launch_app("Unknown")

    async def test_stop_status_is_returned(self, device):
        assert await device.stop_app("Netflix", "run") == 405
        assert await device.stop_app("YouTube", "nope") == 400


class TestLaunchRequest:
    async def test_content_length_is_byte_length(self, recorder):
        """
        Content-Length counts UTF-8 bytes, not characters.
        """
        payload = "héllo wörld ✓"
        await device_for(recorder).launch_app("YouTube", payload)
        headers, body = recorder.state["requests"][0]
        assert int(headers["Content-Length"]) == len(payload.encode("utf-8"))
        assert body == payload.encode("utf-8")
        assert headers["Content-Type"] == 'text/plain; charset="utf-8"'

    async def test_custom_content_type(self, recorder):
        await device_for(recorder).launch_app("YouTube", '{"v": 1}', content_type="application/json")
        headers, _ = recorder.state["requests"][0]
        assert headers["Content-Type"] == "application/json"

    async def test_empty_launch(self, recorder):
        assert await device_for(recorder).launch_app("YouTube") == "launched"
        headers, body = recorder.state["requests"][0]
        assert headers["Content-Length"] == "0"
        assert body == b""

    async def test_error_status(self, recorder):
        recorder.state["status"] = 503
        with pytest.raises(RemoteProtocolError) as info:
            await device_for(recorder).launch_app("YouTube", "x")
        assert info.value.status == 503

    async def test_stop_status_is_verbatim(self, recorder):
        recorder.state["status"] = 404
        assert await device_for(recorder).stop_app("YouTube", "run") == 404


class TestUndecodableBodies:
    """
    Receivers that declare UTF-8 but answer with bytes that are not valid UTF-8.
    """

    @pytest.fixture
    async def latin1_server(self):
        async def app_info(request):
            return web.Response(body=b"<service><name>Caf\xe9</name></service>", headers={"Content-Type": "text/xml; charset=utf-8"})

        async def launch(request):
            return web.Response(status=201, body=b"launched \xff", headers={"Content-Type": "text/plain; charset=utf-8"})

        app = web.Application()
        app.router.add_get("/apps/{app_name}", app_info)
        app.router.add_post("/apps/{app_name}", launch)
        async with TestServer(app) as server:
            yield server

    async def test_app_info_is_a_parse_error(self, latin1_server):
        with pytest.raises(DocumentParseError):
            await device_for(latin1_server).get_app_info("Cafe")

    async def test_app_info_xml_replaces_bad_bytes(self, latin1_server):
        xml = await device_for(latin1_server).get_app_info_xml("Cafe")
        assert "<name>Caf\ufffd</name>" in xml

    async def test_launch_response_replaces_bad_bytes(self, latin1_server):
        assert await device_for(latin1_server).launch_app("Cafe") == "launched \ufffd"


class TestValidation:
    @pytest.fixture
    def remote(self):
        description = DeviceDescription()
        description.udn = "uuid:abc"
        description.friendly_name = "TV"
        return DialDevice(description, "http://h/desc.xml", "http://h/apps/")

    def test_trailing_slash_is_stripped(self, remote):
        assert remote.application_url == "http://h/apps"
        assert remote.uuid == "abc"

    async def test_empty_app_name(self, remote):
        with pytest.raises(DialError):
            await remote.get_app_info("")
        with pytest.raises(DialError):
            await remote.launch_app("")

    async def test_empty_pid(self, remote):
        with pytest.raises(DialError):
            await remote.stop_app("YouTube", "")

    async def test_no_application_url(self):
        with pytest.raises(DialError):
            await DialDevice(DeviceDescription(), None, "").launch_app("YouTube")
