#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
DialAppControl -- the HTTP surface of a DIAL server, as aiohttp routes:

    GET    {prefix}/apps                     204
    GET    {prefix}/apps/{name}              200 + application description, or 404
    POST   {prefix}/apps/{name}              201 (first launch) / 200 (relaunch), or 404, 413, 503
    POST   {prefix}/apps/{name}/dial_data    404, 413, or 501
    DELETE {prefix}/apps/{name}/{pid}        200, or 404, 405, 400
    GET    {prefix}/ssdp/device-desc.xml     200 + device description, with Application-URL
    GET    {prefix}/ssdp/notfound            404

Every request is answered with a status code; errors raised by handlers or app provider hooks
are translated at this boundary and never propagate further.
"""

from __future__ import annotations

import re

from aiohttp import web

from dial_protocol.internal_types import *
from .pkg_logging import logger
from .constants import APPS_PATH, DEVICE_DESC_PATH, NOT_FOUND_PATH
from .exceptions import (
    DialRequestError,
    DialNotFoundError,
    PayloadTooLargeError,
    HookFailureError,
    MethodNotAllowedError,
    BadRequestError,
    DialNotImplementedError,
  )
from .app import AppProvider, AppInfo, AppState, DialRequestContext
from .config import DialServerConfig
from .description import Device, render_app_description, render_device_description

TEXT_CONTENT_TYPES = (
    "text/plain",
    "text/xml",
    "text/json",
    "application/xml",
    "application/json",
    "application/x-www-form-urlencoded",
  )
"""Content types whose bodies are passed to launch_app as text. Other bodies are size-checked but not passed."""

READ_CHUNK_SIZE = 1024

_non_web_origin_re = re.compile(r'^(http|https|file):', re.IGNORECASE)

@web.middleware
async def dial_error_middleware(request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]) -> web.StreamResponse:
    """Translates DialRequestErrors raised by handlers into status-only responses. Any other
       exception is logged and answered with 500."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except DialRequestError as e:
        logger.debug(f"{request.method} {request.path} -> {e.http_status}: {e}")
        return web.Response(status=e.http_status)
    except Exception as e:
        logger.exception(f"Unexpected error handling {request.method} {request.path}: {e}")
        return web.Response(status=500)

class DialAppControl:
    """Serves the DIAL HTTP surface for one device, delegating every application question to an AppProvider."""

    config: DialServerConfig
    device: Device
    app_provider: AppProvider

    port: Optional[int]
    """The TCP port used in URLs returned to requesters. If None, the port the request was sent to is used."""

    def __init__(self, config: DialServerConfig, device: Device, app_provider: AppProvider) -> None:
        self.config = config
        self.device = device
        self.app_provider = app_provider
        self.port = config.port or None

    @property
    def prefix(self) -> str:
        return self.config.prefix

    def setup_routes(self, app: web.Application) -> None:
        """Adds the DIAL routes and middlewares to an aiohttp application that has not yet been started."""
        pref = self.prefix
        if self.config.cors_allow_origins is not None:
            app.middlewares.append(self.cors_middleware)
            app.router.add_route("OPTIONS", pref + "/{tail:(?:apps|ssdp).*}", self.handle_options)
        app.middlewares.append(dial_error_middleware)
        app.router.add_get(pref + APPS_PATH, self.handle_get_apps)
        app.router.add_get(pref + APPS_PATH + "/{app_name}", self.handle_get_app)
        app.router.add_post(pref + APPS_PATH + "/{app_name}", self.handle_launch_app)
        app.router.add_post(pref + APPS_PATH + "/{app_name}/dial_data", self.handle_dial_data)
        app.router.add_delete(pref + APPS_PATH + "/{app_name}/{pid}", self.handle_stop_app)
        app.router.add_delete(pref + APPS_PATH + "/{app_name}", self.handle_stop_app)
        app.router.add_delete(pref + APPS_PATH + "/{app_name}/", self.handle_stop_app)
        app.router.add_get(pref + DEVICE_DESC_PATH, self.handle_device_desc)
        app.router.add_get(pref + NOT_FOUND_PATH, self.handle_not_found)

    def base_url(self, request: web.Request) -> str:
        """The absolute URL of this server as seen by the requester, including the prefix."""
        host = request.url.host or request.remote or self.config.host
        port = self.port or request.url.port
        return f"{request.scheme}://{host}:{port}{self.prefix}"

    def make_context(self, request: web.Request) -> DialRequestContext:
        return DialRequestContext(
            app_name=request.match_info.get("app_name", ""),
            method=request.method,
            base_url=self.base_url(request),
            remote=request.remote,
            headers=request.headers,
            request=request,
          )

    async def get_app_or_404(self, app_name: str, context: DialRequestContext) -> AppInfo:
        app_info = await self.app_provider.get_app(app_name, context)
        if app_info is None:
            raise DialNotFoundError(f"Unknown application {app_name!r}")
        return app_info

    async def read_body(self, request: web.Request) -> bytes:
        """Reads the request body, raising PayloadTooLargeError as soon as it is known to exceed
           the configured maximum."""
        max_length = self.config.max_content_length
        if request.content_length is not None and request.content_length > max_length:
            raise PayloadTooLargeError(f"Content-Length {request.content_length} exceeds {max_length}")
        body = bytearray()
        while True:
            chunk = await request.content.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            body += chunk
            if len(body) > max_length:
                raise PayloadTooLargeError(f"Request body exceeds {max_length} bytes")
        return bytes(body)

    async def read_launch_data(self, request: web.Request) -> Optional[str]:
        body = await self.read_body(request)
        if request.content_type not in TEXT_CONTENT_TYPES or len(body) == 0:
            return None
        charset = request.charset or 'utf-8'
        try:
            return body.decode(charset, errors='replace')
        except LookupError:
            logger.debug(f"Unknown launch data charset {charset!r}; decoding as utf-8")
            return body.decode('utf-8', errors='replace')

    async def handle_get_apps(self, request: web.Request) -> web.Response:
        return web.Response(status=204)

    async def handle_get_app(self, request: web.Request) -> web.Response:
        context = self.make_context(request)
        app_info = await self.get_app_or_404(context.app_name, context)
        xml = render_app_description(
            name=context.app_name,
            state=app_info.inferred_state,
            allow_stop=app_info.allow_stop is True,
            rel="run",
            href=app_info.pid,
            additional_data=app_info.additional_data,
            namespaces=app_info.namespaces,
          )
        return web.Response(text=xml, content_type="application/xml", charset="utf-8")

    async def handle_launch_app(self, request: web.Request) -> web.Response:
        context = self.make_context(request)
        app_name = context.app_name
        app_info = await self.get_app_or_404(app_name, context)
        launch_data = await self.read_launch_data(request)
        # 201 vs 200 is decided by the state observed before the launch hook runs
        was_stopped = app_info.inferred_state == AppState.STOPPED.value
        try:
            pid = await self.app_provider.launch_app(app_name, launch_data, context)
        except Exception as e:
            logger.warning(f"Launch of {app_name} failed: {e}")
            raise HookFailureError(f"Launch of {app_name} failed: {e}") from e
        status = 201 if was_stopped else 200
        headers: Dict[str, str] = {}
        if pid:
            headers["LOCATION"] = f"{context.base_url}{APPS_PATH}/{app_name}/{pid}"
        logger.info(f"Launched {app_name} (pid={pid}) for {context.remote}: {status}")
        return web.Response(status=status, headers=headers)

    async def handle_dial_data(self, request: web.Request) -> web.Response:
        context = self.make_context(request)
        await self.get_app_or_404(context.app_name, context)
        await self.read_body(request)
        raise DialNotImplementedError("dial_data is not implemented")

    async def handle_stop_app(self, request: web.Request) -> web.Response:
        context = self.make_context(request)
        app_name = context.app_name
        pid = request.match_info.get("pid", "")
        app_info = await self.get_app_or_404(app_name, context)
        if not app_info.allow_stop:
            raise MethodNotAllowedError(f"Application {app_name!r} does not allow stop")
        if not pid:
            raise BadRequestError("No pid was supplied")
        stopped = await self.app_provider.stop_app(app_name, pid, context)
        if not stopped:
            raise BadRequestError(f"Application {app_name!r} was not stopped with pid {pid!r}")
        logger.info(f"Stopped {app_name} (pid={pid}) for {context.remote}")
        return web.Response(status=200)

    async def handle_device_desc(self, request: web.Request) -> web.Response:
        base_url = self.base_url(request)
        xml = render_device_description(self.device, base_url)
        return web.Response(
            text=xml,
            content_type="application/xml",
            charset="utf-8",
            headers={ "Application-URL": f"{base_url}{APPS_PATH}" },
          )

    async def handle_not_found(self, request: web.Request) -> web.Response:
        raise DialNotFoundError("No additional UPnP services")

    # ---------------------------------------------------------------------------
    # Origin policy; only installed when config.cors_allow_origins is not None
    # ---------------------------------------------------------------------------

    def allowed_origin(self, origin: Optional[str]) -> Optional[str]:
        """Returns the Access-Control-Allow-Origin value for a request Origin, or None for no header."""
        allow = self.config.cors_allow_origins
        if not origin or allow is None or allow is False:
            return None
        if not _non_web_origin_re.match(origin):
            # e.g., app:// or other non-web origins of native clients
            return origin
        if allow is True:
            return origin
        if isinstance(allow, str):
            return "*" if allow == "*" else (origin if origin == allow else None)
        return origin if origin in allow else None

    @web.middleware
    async def cors_middleware(self, request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]) -> web.StreamResponse:
        try:
            response = await handler(request)
        except web.HTTPException as e:
            # router 404/405 responses are raised, not returned
            self.add_cors_headers(request, e.headers)
            raise
        self.add_cors_headers(request, response.headers)
        return response

    def add_cors_headers(self, request: web.Request, headers: MutableMapping[str, str]) -> None:
        path = request.path[len(self.prefix):]
        if not (path.startswith(APPS_PATH) or path.startswith("/ssdp")):
            return
        allowed = self.allowed_origin(request.headers.get("Origin"))
        if allowed is None:
            return
        headers["Access-Control-Allow-Origin"] = allowed
        if allowed != "*":
            headers["Vary"] = "Origin"
        if path.startswith("/ssdp"):
            headers["Access-Control-Expose-Headers"] = "Location"

    async def handle_options(self, request: web.Request) -> web.Response:
        return web.Response(status=204, headers={
            "Access-Control-Allow-Methods": "GET,POST,DELETE,OPTIONS",
            "Access-Control-Allow-Headers": request.headers.get("Access-Control-Request-Headers", "Content-Type"),
          })
