#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
DialDevice -- a controller-side handle on one remote DIAL receiver, used to query, launch
and stop applications over HTTP.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import aiohttp

from dial_protocol.internal_types import *
from .pkg_logging import logger
from .constants import DEFAULT_LAUNCH_CONTENT_TYPE
from .exceptions import DialError, TransportError, RemoteProtocolError
from .description import Device, DeviceDescription, Icon, parse_app_description

class DialDevice(Device):
    """
    A remote DIAL receiver, built from its parsed device description.

    If a session is provided it is used for all requests and is not closed; otherwise
    a new aiohttp.ClientSession is created for each request.

    Usage:
        device = await client.get_dial_device(location)
        body = await device.launch_app("YouTube", "v=abc")
        info = await device.get_app_info("YouTube")
        status = await device.stop_app("YouTube", info["link"]["href"])
    """

    device_type: Optional[str]
    url_base: Optional[str]
    extra: Dict[str, str]
    session: Optional[aiohttp.ClientSession]

    def __init__(
            self,
            description: DeviceDescription,
            description_url: Optional[str],
            application_url: str,
            session: Optional[aiohttp.ClientSession]=None,
          ) -> None:
        icons: List[Icon] = list(description.icons)
        super().__init__(
            uuid=description.uuid or "",
            friendly_name=description.friendly_name or "",
            manufacturer=description.manufacturer or "",
            model_name=description.model_name or "",
            description_url=description_url,
            application_url=application_url.rstrip('/') if application_url else application_url,
            icons=icons,
          )
        self.device_type = description.device_type
        self.url_base = description.url_base
        self.extra = dict(description.extra)
        self.session = session

    def _app_url(self, app_name: str, pid: Optional[str]=None) -> str:
        if not self.application_url:
            raise DialError("The device has no application URL")
        if not app_name:
            raise DialError("An application name is required")
        url = f"{self.application_url}/{app_name}"
        if pid is not None:
            if not pid:
                raise DialError("A pid is required")
            url += f"/{pid}"
        return url

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self.session is not None:
            yield self.session
        else:
            async with aiohttp.ClientSession() as session:
                yield session

    async def _fetch_app_info(self, app_name: str) -> Tuple[bytes, str]:
        url = self._app_url(app_name)
        logger.debug(f"GET {url}")
        try:
            async with self._session() as session:
                async with session.get(url) as resp:
                    body = await resp.read()
                    if resp.status != 200:
                        raise RemoteProtocolError(resp.status, f"GET {url} failed")
                    return body, await resp.text(errors='replace')
        except (aiohttp.ClientError, OSError) as e:
            raise TransportError(f"GET {url} failed: {e}") from e

    async def get_app_info_xml(self, app_name: str) -> str:
        """Returns the application description document for app_name, as text. Undecodable
           bytes are replaced with U+FFFD.

        Raises RemoteProtocolError if the receiver does not answer 200 (e.g., 404 for an unknown
        application), TransportError if the request could not be made.
        """
        _, text = await self._fetch_app_info(app_name)
        return text

    async def get_app_info(self, app_name: str) -> JsonableDict:
        """Returns the parsed application description for app_name. See parse_app_description()."""
        body, _ = await self._fetch_app_info(app_name)
        return parse_app_description(body)

    async def launch_app(
            self,
            app_name: str,
            launch_data: Optional[str]=None,
            content_type: Optional[str]=None,
          ) -> str:
        """Launches app_name, sending launch_data as the request body. Returns the response body.

        Raises RemoteProtocolError if the receiver answers with a status of 400 or more. Undecodable
        bytes in the response body are replaced with U+FFFD.
        """
        url = self._app_url(app_name)
        body = (launch_data or "").encode('utf-8')
        headers = {
            "Content-Type": content_type or DEFAULT_LAUNCH_CONTENT_TYPE,
            "Content-Length": str(len(body)),
          }
        logger.debug(f"POST {url} ({len(body)} bytes)")
        try:
            async with self._session() as session:
                async with session.post(url, data=body, headers=headers) as resp:
                    text = await resp.text(errors='replace')
                    if resp.status >= 400:
                        raise RemoteProtocolError(resp.status, f"Launch of {app_name} failed")
                    logger.info(f"Launched {app_name} on {self.friendly_name}: {resp.status}")
                    return text
        except (aiohttp.ClientError, OSError) as e:
            raise TransportError(f"POST {url} failed: {e}") from e

    async def stop_app(self, app_name: str, pid: str) -> int:
        """Stops the instance of app_name identified by pid. Returns the HTTP status of the response."""
        url = self._app_url(app_name, pid)
        logger.debug(f"DELETE {url}")
        try:
            async with self._session() as session:
                async with session.delete(url) as resp:
                    await resp.read()
                    return resp.status
        except (aiohttp.ClientError, OSError) as e:
            raise TransportError(f"DELETE {url} failed: {e}") from e
