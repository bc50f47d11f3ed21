"""
Shared fixtures, and a deterministic SsdpTransport that records what is sent through it.
"""
import asyncio

import pytest

from dial_protocol import (
    AppInfo,
    DialServerConfig,
    InMemoryAppProvider,
    SsdpEvent,
    SsdpEventType,
    SsdpTransport,
)

TEST_UUID = "2fac1234-31f8-11b4-a222-08002b34c003"


class FakeSsdpTransport(SsdpTransport):
    """
    An SsdpTransport that sends nothing. Outbound calls are recorded, and events are
    delivered to handlers only when a test fires them.

    Byebye acks are held until the test releases them, so tests control their order.
    """

    def __init__(self, auto_ready=True):
        super().__init__()
        self.auto_ready = auto_ready
        self.started = False
        self.closed = False
        self.close_count = 0
        self.alive_calls = []
        self.byebye_calls = []
        self.pending_acks = []
        self.search_calls = []
        self.reply_calls = []

    async def start(self):
        self.started = True
        if self.auto_ready:
            self.fire(SsdpEventType.READY)

    def close(self):
        self.close_count += 1
        if not self.closed:
            self.closed = True
            asyncio.get_running_loop().call_soon(self.fire, SsdpEventType.CLOSE)

    def search(self, headers):
        self.search_calls.append(dict(headers))

    def alive(self, headers):
        self.alive_calls.append(dict(headers))

    def byebye(self, headers, on_ack=None):
        self.byebye_calls.append(dict(headers))
        if on_ack is not None:
            self.pending_acks.append(on_ack)

    def reply(self, headers, address):
        self.reply_calls.append((dict(headers), address))

    def fire(self, event_type, headers=None, address=None):
        self.emit(SsdpEvent(event_type, headers, address))

    def ack_all(self, order=None):
        """Calls the pending byebye acks, in the given index order or in send order."""
        acks = self.pending_acks
        self.pending_acks = []
        indexes = range(len(acks)) if order is None else order
        for i in indexes:
            acks[i]()


@pytest.fixture
def transport():
    """
    Returns a FakeSsdpTransport that becomes ready as soon as it is started.
    """
    return FakeSsdpTransport()


@pytest.fixture
def config():
    """
    Returns a server configuration with a fixed identity, a prefix and no periodic
    re-announcement.
    """
    return DialServerConfig(
        prefix="/dial",
        port=3000,
        uuid=TEST_UUID,
        friendly_name="Living Room TV",
        manufacturer="Acme",
        model_name="TV-1",
        advertise_interval=0,
    )


@pytest.fixture
def provider():
    """
    Returns an in-memory app provider with one stoppable app (YouTube) and one app
    that cannot be stopped (Netflix).
    """
    return InMemoryAppProvider([
        AppInfo("YouTube", allow_stop=True),
        AppInfo("Netflix"),
    ])


@pytest.fixture
def idle_transport():
    """
    Returns a FakeSsdpTransport that does not become ready until the test fires "ready".
    """
    return FakeSsdpTransport(auto_ready=False)
