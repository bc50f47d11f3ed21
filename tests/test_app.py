"""
Tests for the application model and app providers.
"""
import asyncio

import pytest

from dial_protocol import (
    AppInfo,
    AppState,
    CallbackAppProvider,
    DialRequestContext,
    HookCompletion,
    HookCompletionError,
    InMemoryAppProvider,
    infer_state,
)


@pytest.fixture
def context():
    return DialRequestContext("YouTube", "POST", "http://127.0.0.1:3000/dial", remote="127.0.0.1")


@pytest.mark.parametrize("state, pid, expected", [
    (None, None, "stopped"),
    (None, "", "stopped"),
    (None, "run", "running"),
    ("starting", "run", "starting"),
    ("stopped", None, "stopped"),
    ("hidden", None, "hidden"),
])
def test_infer_state(state, pid, expected):
    """
    An explicit state wins; otherwise the presence of a pid means running.
    """
    assert infer_state(state, pid) == expected


def test_app_info_accepts_enum_state():
    app = AppInfo("YouTube", state=AppState.RUNNING, pid="run")
    assert app.state == "running"
    assert app.inferred_state == "running"


class TestHookCompletion:
    async def test_resolves_once(self):
        done = HookCompletion("launch_app")
        assert not done.done
        done("42")
        assert done.done
        assert await done.wait() == "42"

    async def test_second_resolution_is_an_error(self):
        """
        A hook that signals completion twice is reported, not ignored.
        """
        done = HookCompletion("stop_app")
        done(True)
        with pytest.raises(HookCompletionError):
            done(False)
        assert await done.wait() is True

    async def test_error_is_raised_by_wait(self):
        done = HookCompletion("launch_app")
        done(error=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            await done.wait()


class TestCallbackAppProvider:
    async def test_hooks_complete_later(self, context):
        """
        Callback-style hooks may complete from another task.
        """
        loop = asyncio.get_running_loop()

        def launch_app(name, launch_data, ctx, done):
            loop.call_later(0.01, done, f"{name}:{launch_data}")

        def stop_app(name, pid, ctx, done):
            loop.call_soon(done, pid == "42")

        provider = CallbackAppProvider(
            get_app=lambda name, ctx: AppInfo(name) if name == "YouTube" else None,
            launch_app=launch_app,
            stop_app=stop_app,
        )
        assert (await provider.get_app("YouTube", context)).name == "YouTube"
        assert await provider.get_app("Netflix", context) is None
        assert await provider.launch_app("YouTube", "v=1", context) == "YouTube:v=1"
        assert await provider.stop_app("YouTube", "42", context) is True
        assert await provider.stop_app("YouTube", "7", context) is False

    async def test_launch_error(self, context):
        def launch_app(name, launch_data, ctx, done):
            done(error=RuntimeError("cannot launch"))

        provider = CallbackAppProvider(launch_app=launch_app)
        with pytest.raises(RuntimeError):
            await provider.launch_app("YouTube", None, context)

    async def test_missing_hooks(self, context):
        provider = CallbackAppProvider()
        assert await provider.get_app("YouTube", context) is None
        assert await provider.stop_app("YouTube", "run", context) is False
        with pytest.raises(NotImplementedError):
            await provider.launch_app("YouTube", None, context)


class TestInMemoryAppProvider:
    async def test_launch_and_stop(self, context):
        provider = InMemoryAppProvider([AppInfo("YouTube", allow_stop=True)])
        assert await provider.launch_app("YouTube", None, context) == "run"
        app = await provider.get_app("YouTube", context)
        assert app.inferred_state == "running"
        assert await provider.stop_app("YouTube", "other", context) is False
        assert await provider.stop_app("YouTube", "run", context) is True
        assert app.inferred_state == "stopped"
        assert app.pid is None

    async def test_launch_handler_receives_launch_data(self, context):
        received = []

        async def handler(name, launch_data):
            received.append((name, launch_data))

        provider = InMemoryAppProvider()
        provider.add_app(AppInfo("YouTube"), handler)
        await provider.launch_app("YouTube", "v=abc", context)
        assert received == [("YouTube", "v=abc")]

    async def test_failed_launch_leaves_app_stopped(self, context):
        async def handler(name, launch_data):
            raise RuntimeError("cannot launch")

        provider = InMemoryAppProvider()
        provider.add_app(AppInfo("YouTube"), handler)
        with pytest.raises(RuntimeError):
            await provider.launch_app("YouTube", None, context)
        app = await provider.get_app("YouTube", context)
        assert app.inferred_state == "stopped"
        assert app.pid is None
