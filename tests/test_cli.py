"""
Tests for the dial command-line tool.
"""
from dial_protocol import __version__
from dial_protocol.__main__ import arun


async def test_version(capsys):
    assert await arun(["version"]) == 0
    assert capsys.readouterr().out.strip() == __version__


async def test_command_required(capsys):
    assert await arun([]) == 1
    assert "a command is required" in capsys.readouterr().err


async def test_bad_arguments():
    assert await arun(["launch"]) != 0


async def test_bad_header(capsys):
    """
    A malformed -H argument is reported without starting a server.
    """
    assert await arun(["server", "-H", "no-equals-sign"]) == 1
    assert "expected <name>=<value>" in capsys.readouterr().err
