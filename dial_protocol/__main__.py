#!/usr/bin/env python3

#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import sys
import argparse
import json
import asyncio
import logging
from signal import SIGINT, SIGTERM

from dial_protocol.internal_types import *

from dial_protocol import (
    __version__ as pkg_version,
    DialServer,
    DialServerConfig,
    DialClient,
    DialClientEvent,
    DialClientEventType,
    DialDevice,
    AppInfo,
    InMemoryAppProvider,
    RemoteProtocolError,
    DEFAULT_RESPONSE_WAIT_TIME,
  )

class CmdExitError(RuntimeError):
    exit_code: int

    def __init__(self, exit_code: int, msg: Optional[str]=None):
        if msg is None:
            msg = f"Command exited with return code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
    pass

class NoExitArgumentParser(argparse.ArgumentParser):
    def exit(self, status=0, message=None):
        if message:
            self._print_message(message, sys.stderr)
        raise ArgparseExitError(status, message)

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    async def cmd_bare(self) -> int:
        print("dial: a command is required; see dial -h", file=sys.stderr)
        return 1

    def _parse_arg_headers(self, arg_headers: List[str]) -> Dict[str, HeaderValue]:
        headers: Dict[str, HeaderValue] = {}
        for assignment in arg_headers:
            name, sep, value = assignment.partition('=')
            if not sep or not name:
                raise CmdExitError(1, f"Invalid header {assignment!r}; expected <name>=<value>")
            headers[name.strip()] = value
        return headers

    def _bind_addresses(self) -> Optional[List[str]]:
        # None selects every local interface
        return self._args.bind_addresses or None

    async def _get_device(self) -> DialDevice:
        # description fetches do not need the SSDP transport to be started
        client = DialClient(bind_addresses=self._bind_addresses())
        return await client.get_dial_device(self._args.location)

    async def cmd_server(self) -> int:
        provider = InMemoryAppProvider(
            AppInfo(name, allow_stop=True) for name in self._args.apps
          )
        config = DialServerConfig(
            prefix=self._args.prefix,
            port=self._args.port,
            friendly_name=self._args.friendly_name,
            manufacturer=self._args.manufacturer,
            model_name=self._args.model_name,
            uuid=self._args.uuid,
            extra_headers=self._parse_arg_headers(self._args.headers),
            bind_addresses=self._bind_addresses(),
          )
        server = DialServer(config, provider)
        loop = asyncio.get_running_loop()
        stop_requested = asyncio.Event()
        for signal in (SIGINT, SIGTERM):
            loop.add_signal_handler(signal, stop_requested.set)
        try:
            async with server:
                await server.wait_for_ready()
                print(f"DIAL server {config.friendly_name!r} (uuid {config.uuid}) listening on port {server.port}", file=sys.stderr)
                await stop_requested.wait()
                logging.debug("cmd_server: Detected SIGINT/SIGTERM, stopping server")
        finally:
            for signal in (SIGINT, SIGTERM):
                loop.remove_signal_handler(signal)
        return 0

    async def cmd_search(self) -> int:
        wait_time: float = self._args.wait_time
        def event_handler(event: DialClientEvent) -> None:
            if event.event_type == DialClientEventType.FOUND:
                found: JsonableDict = dict(location=event.location, headers=dict(event.headers))
                print(json.dumps(found, indent=2, sort_keys=True))
                sys.stdout.flush()
        client = DialClient(bind_addresses=self._bind_addresses())
        client.add_event_handler(event_handler)
        async with client:
            await asyncio.sleep(wait_time)
        return 0

    async def cmd_app_info(self) -> int:
        device = await self._get_device()
        if self._args.raw:
            print(await device.get_app_info_xml(self._args.app_name))
        else:
            print(json.dumps(await device.get_app_info(self._args.app_name), indent=2, sort_keys=True))
        return 0

    async def cmd_launch(self) -> int:
        device = await self._get_device()
        body = await device.launch_app(self._args.app_name, self._args.data, content_type=self._args.content_type)
        if body:
            print(body)
        return 0

    async def cmd_stop(self) -> int:
        device = await self._get_device()
        status = await device.stop_app(self._args.app_name, self._args.pid)
        if status != 200:
            raise RemoteProtocolError(status)
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Parses the command line given to the constructor (sys.argv[1:] if None) and
           runs the selected command.

        Returns:
            int: The process exit code for the command.
        """
        parser = NoExitArgumentParser(description="Discover DIAL receivers and launch applications on them.")

        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Raise errors with a full traceback instead of a one-line message')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''Log verbosity. Default: warning''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='DIAL controller and receiver commands',
                            help='Run "dial <command> -h" for command options')

        def add_bind_argument(p: argparse.ArgumentParser) -> None:
            p.add_argument('-b', '--bind', dest="bind_addresses", action='append', default=[],
                           help='''A local interface address to use for SSDP. May be repeated. Default: every non-loopback IPv4 interface''')

        # ======================= server

        parser_server = subparsers.add_parser('server', description="Run a DIAL receiver with in-memory applications")
        parser_server.add_argument('--prefix', default="",
                            help='''Path prefix of the DIAL HTTP routes, e.g. "/dial". Default: none''')
        parser_server.add_argument('--port', type=int, default=0,
                            help='''The HTTP port. Default: an ephemeral port''')
        parser_server.add_argument('--friendly-name', dest='friendly_name', default=None,
                            help='''The friendly name of the device. Default: the host name''')
        parser_server.add_argument('--manufacturer', default=None,
                            help='''The manufacturer of the device.''')
        parser_server.add_argument('--model-name', dest='model_name', default=None,
                            help='''The model name of the device.''')
        parser_server.add_argument('--uuid', default=None,
                            help='''The UUID of the device. Default: a random UUID''')
        parser_server.add_argument('--app', dest='apps', action='append', default=[],
                            help='''The name of an application the receiver offers. May be repeated.''')
        parser_server.add_argument('-H', '--header', dest="headers", action='append', default=[],
                            help='''A <name>=<value> header to include in advertisements and search responses. May be repeated.''')
        add_bind_argument(parser_server)
        parser_server.set_defaults(func=self.cmd_server)

        # ======================= search

        parser_search = subparsers.add_parser('search', description="Search for DIAL receivers")
        parser_search.add_argument('--wait-time', type=float, default=DEFAULT_RESPONSE_WAIT_TIME,
                            help=f'''Seconds to collect responses before exiting. Default: {DEFAULT_RESPONSE_WAIT_TIME}''')
        add_bind_argument(parser_search)
        parser_search.set_defaults(func=self.cmd_search)

        # ======================= app-info

        parser_app_info = subparsers.add_parser('app-info', description="Show the application description of an application on a receiver")
        parser_app_info.add_argument('location', help='The URL of the device description of the receiver')
        parser_app_info.add_argument('app_name', help='The application name')
        parser_app_info.add_argument('--raw', action='store_true', default=False,
                            help='Print the XML document instead of JSON')
        add_bind_argument(parser_app_info)
        parser_app_info.set_defaults(func=self.cmd_app_info)

        # ======================= launch

        parser_launch = subparsers.add_parser('launch', description="Launch an application on a receiver")
        parser_launch.add_argument('location', help='The URL of the device description of the receiver')
        parser_launch.add_argument('app_name', help='The application name')
        parser_launch.add_argument('-d', '--data', default=None,
                            help='Launch data sent as the request body')
        parser_launch.add_argument('--content-type', dest='content_type', default=None,
                            help='The Content-Type of the launch data. Default: text/plain; charset="utf-8"')
        add_bind_argument(parser_launch)
        parser_launch.set_defaults(func=self.cmd_launch)

        # ======================= stop

        parser_stop = subparsers.add_parser('stop', description="Stop a running application on a receiver")
        parser_stop.add_argument('location', help='The URL of the device description of the receiver')
        parser_stop.add_argument('app_name', help='The application name')
        parser_stop.add_argument('pid', help='The pid (run link href) of the running instance')
        add_bind_argument(parser_stop)
        parser_stop.set_defaults(func=self.cmd_stop)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Print the dial-protocol package version.''')
        parser_version.set_defaults(func=self.cmd_version)

        # =========================================================

        try:
            args = parser.parse_args(self._argv)
        except ArgparseExitError as ex:
            return ex.exit_code
        traceback: bool = args.traceback
        self._provide_traceback = traceback

        try:
            logging.basicConfig(
                level=logging.getLevelName(args.log_level.upper()),
            )
            self._args = args
            func: Callable[[], Awaitable[int]] = args.func
            logging.debug(f"Running command {func.__name__}, tb = {traceback}")
            rc = await func()
            logging.debug(f"Command {func.__name__} returned {rc}")
        except Exception as ex:
            if isinstance(ex, CmdExitError):
                rc = ex.exit_code
            else:
                rc = 1
            if rc != 0:
                if traceback:
                    raise
            print(f"dial: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"dial: Unhandled exception: {ex}", file=sys.stderr)
            raise

        return rc

    def run(self) -> int:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            rc = loop.run_until_complete(self.arun())
        finally:
            loop.close()
        return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = CommandHandler(argv).run()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

async def arun(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = await CommandHandler(argv).arun()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
    sys.exit(run())
