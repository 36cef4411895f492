import asyncio
import socket

import aiohttp
import pytest

from conftest import NetworkAccessError


def test_plain_socket_connect_is_blocked():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        with pytest.raises(NetworkAccessError):
            sock.connect(("127.0.0.1", 9))
    finally:
        sock.close()


def test_aiohttp_requests_are_blocked():
    async def scenario():
        async with aiohttp.ClientSession() as session:
            with pytest.raises(NetworkAccessError):
                await session.get("http://127.0.0.1:9/")

    asyncio.run(scenario())
