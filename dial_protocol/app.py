#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
The DIAL application model and the app provider interface.

A DialServer holds no application state of its own. Every question about an application
(does it exist, what is its state, launch it, stop it) is delegated to an AppProvider
through three hooks: get_app(), launch_app() and stop_app(). Each hook receives an explicit
DialRequestContext describing the HTTP request that caused it to be called.

Providers may be written as coroutines (subclass AppProvider), or as plain functions that
signal completion through a callback (wrap them in CallbackAppProvider). In the latter case
each completion callback is a HookCompletion, which resolves exactly once and raises
HookCompletionError on any further call.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from enum import Enum

from dial_protocol.internal_types import *
from .pkg_logging import logger
from .exceptions import HookCompletionError

_T = TypeVar('_T')

class AppState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"

class AppInfo:
    """What an app provider reports about one application."""

    name: str

    state: Optional[str] = None
    """The explicit state, if the provider reports one. See inferred_state."""

    pid: Optional[str] = None
    """Opaque correlation token identifying the running instance (not an OS process id).
       Present if and only if the application is not stopped."""

    allow_stop: bool = False
    """True if the application may be stopped with DELETE /apps/<name>/<pid>."""

    additional_data: Optional[Dict[str, str]] = None
    """Protocol-extension data rendered in the <additionalData> block, or None for no block."""

    namespaces: Dict[str, str]
    """XML namespace prefix -> URI declarations added to the application description."""

    extra: Dict[str, Any]
    """Any other provider-specific fields. Not interpreted by this package."""

    def __init__(
            self,
            name: str,
            state: Optional[Union[str, AppState]]=None,
            pid: Optional[str]=None,
            allow_stop: bool=False,
            additional_data: Optional[Mapping[str, str]]=None,
            namespaces: Optional[Mapping[str, str]]=None,
            extra: Optional[Mapping[str, Any]]=None,
          ) -> None:
        self.name = name
        self.state = state.value if isinstance(state, AppState) else state
        self.pid = pid
        self.allow_stop = allow_stop
        self.additional_data = None if additional_data is None else dict(additional_data)
        self.namespaces = dict(namespaces or {})
        self.extra = dict(extra or {})

    @property
    def inferred_state(self) -> str:
        """The explicit state if there is one, otherwise "running" if a pid is present, otherwise "stopped"."""
        return infer_state(self.state, self.pid)

    def __str__(self) -> str:
        return f"AppInfo(name={self.name!r}, state={self.state}, pid={self.pid}, allow_stop={self.allow_stop})"

    def __repr__(self) -> str:
        return str(self)

def infer_state(state: Optional[str], pid: Optional[str]) -> str:
    if state:
        return state
    if pid:
        return AppState.RUNNING.value
    return AppState.STOPPED.value

class DialRequestContext:
    """The inbound HTTP request on whose behalf an app provider hook is invoked."""

    app_name: str

    method: str

    base_url: str
    """The absolute URL of the DIAL server, including any prefix; e.g., "http://192.168.1.5:3000/dial"."""

    remote: Optional[str]
    """The address of the requester, if known."""

    headers: Mapping[str, str]

    request: Any
    """The underlying aiohttp.web.Request, for providers that need more."""

    def __init__(
            self,
            app_name: str,
            method: str,
            base_url: str,
            remote: Optional[str]=None,
            headers: Optional[Mapping[str, str]]=None,
            request: Any=None,
          ) -> None:
        self.app_name = app_name
        self.method = method
        self.base_url = base_url
        self.remote = remote
        self.headers = headers if headers is not None else {}
        self.request = request

    def __str__(self) -> str:
        return f"DialRequestContext({self.method} {self.app_name} from {self.remote})"

class AppProvider(ABC):
    """The external owner of application state, exposed to the DIAL server through three hooks."""

    @abstractmethod
    async def get_app(self, app_name: str, context: DialRequestContext) -> Optional[AppInfo]:
        """Returns the current AppInfo for app_name, or None if the application is unknown."""
        raise NotImplementedError()

    @abstractmethod
    async def launch_app(self, app_name: str, launch_data: Optional[str], context: DialRequestContext) -> Optional[str]:
        """Launches (or relaunches) app_name with the request body as launch data. Returns the pid of
           the running instance, or None if there is none to report. Raises an exception on failure."""
        raise NotImplementedError()

    @abstractmethod
    async def stop_app(self, app_name: str, pid: str, context: DialRequestContext) -> bool:
        """Stops the instance of app_name identified by pid. Returns True if it was stopped."""
        raise NotImplementedError()

class HookCompletion(Generic[_T]):
    """A completion callback for a callback-style hook that resolves exactly once.

    Call it with the result (or with error=<exception>) to complete the hook. A second call raises
    HookCompletionError rather than being silently ignored.
    """

    _future: asyncio.Future[_T]
    hook_name: str

    def __init__(self, hook_name: str) -> None:
        self.hook_name = hook_name
        self._future = asyncio.get_running_loop().create_future()

    def __call__(self, result: Optional[_T]=None, error: Optional[BaseException]=None) -> None:
        if self._future.done():
            raise HookCompletionError(f"Completion of hook {self.hook_name} was signaled more than once")
        if error is not None:
            self._future.set_exception(error)
        else:
            self._future.set_result(result) # type: ignore[arg-type]

    @property
    def done(self) -> bool:
        return self._future.done()

    async def wait(self) -> _T:
        """Waits, without a timeout, for the hook to signal completion and returns its result."""
        return await self._future

GetAppFunc = Callable[[str, DialRequestContext], Optional[AppInfo]]
LaunchAppFunc = Callable[[str, Optional[str], DialRequestContext, HookCompletion[Optional[str]]], None]
StopAppFunc = Callable[[str, str, DialRequestContext, HookCompletion[bool]], None]

class CallbackAppProvider(AppProvider):
    """An AppProvider built from plain functions. get_app returns synchronously; launch_app and stop_app
       receive a HookCompletion that they must call exactly once, possibly later from another task.

       launch_app's completion is called as done(pid) on success or done(error=<exception>) on failure;
       stop_app's completion as done(True) or done(False). A missing function behaves as if the
       application is unknown (get), fails (launch) or is not stopped (stop)."""

    _get_app: Optional[GetAppFunc]
    _launch_app: Optional[LaunchAppFunc]
    _stop_app: Optional[StopAppFunc]

    def __init__(
            self,
            get_app: Optional[GetAppFunc]=None,
            launch_app: Optional[LaunchAppFunc]=None,
            stop_app: Optional[StopAppFunc]=None,
          ) -> None:
        self._get_app = get_app
        self._launch_app = launch_app
        self._stop_app = stop_app

    async def get_app(self, app_name: str, context: DialRequestContext) -> Optional[AppInfo]:
        if self._get_app is None:
            return None
        return self._get_app(app_name, context)

    async def launch_app(self, app_name: str, launch_data: Optional[str], context: DialRequestContext) -> Optional[str]:
        if self._launch_app is None:
            raise NotImplementedError("No launch_app hook is configured")
        done: HookCompletion[Optional[str]] = HookCompletion("launch_app")
        self._launch_app(app_name, launch_data, context, done)
        return await done.wait()

    async def stop_app(self, app_name: str, pid: str, context: DialRequestContext) -> bool:
        if self._stop_app is None:
            return False
        done: HookCompletion[bool] = HookCompletion("stop_app")
        self._stop_app(app_name, pid, context, done)
        return bool(await done.wait())

LaunchHandler = Callable[[str, Optional[str]], Awaitable[None]]
"""Called by InMemoryAppProvider with (app_name, launch_data) to actually start an application."""

class InMemoryAppProvider(AppProvider):
    """A simple AppProvider holding a fixed set of applications in memory. Launching sets the pid of
       an application to "run" and its state to running; stopping with the matching pid clears them.

       Suitable for demos and tests; real receivers supply their own provider."""

    apps: Dict[str, AppInfo]
    launch_handlers: Dict[str, LaunchHandler]

    def __init__(self, apps: Optional[Iterable[AppInfo]]=None) -> None:
        self.apps = {}
        self.launch_handlers = {}
        for app in (apps or []):
            self.add_app(app)

    def add_app(self, app: AppInfo, launch_handler: Optional[LaunchHandler]=None) -> None:
        self.apps[app.name] = app
        if launch_handler is not None:
            self.launch_handlers[app.name] = launch_handler

    async def get_app(self, app_name: str, context: DialRequestContext) -> Optional[AppInfo]:
        return self.apps.get(app_name)

    async def launch_app(self, app_name: str, launch_data: Optional[str], context: DialRequestContext) -> Optional[str]:
        app = self.apps.get(app_name)
        if app is None:
            return None
        logger.info(f"Launching {app_name} for {context.remote} with launch data {launch_data!r}")
        app.pid = "run"
        app.state = AppState.STARTING.value
        handler = self.launch_handlers.get(app_name)
        if handler is not None:
            try:
                await handler(app_name, launch_data)
            except BaseException:
                app.pid = None
                app.state = AppState.STOPPED.value
                raise
        app.state = AppState.RUNNING.value
        return app.pid

    async def stop_app(self, app_name: str, pid: str, context: DialRequestContext) -> bool:
        app = self.apps.get(app_name)
        logger.info(f"Stopping {app_name} with pid {pid} for {context.remote}")
        if app is not None and app.pid == pid:
            app.pid = None
            app.state = AppState.STOPPED.value
            return True
        return False
