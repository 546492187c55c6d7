import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from association_finder.exceptions import TransportError
from association_finder.transport.http_transport import HttpTransport


def make_app():
    async def recommended(request):
        if request.match_info['peer'] == 'holder':
            return web.Response(text='review')
        raise web.HTTPFound(f"/profiles/{request.match_info['peer']}/")

    async def profile(request):
        return web.Response(text='profile')

    async def limited(request):
        return web.Response(status=429)

    app = web.Application()
    app.router.add_get('/profiles/{peer}/recommended/{resource}/', recommended)
    app.router.add_get('/profiles/{peer}/', profile)
    app.router.add_get('/limited', limited)
    return app


@pytest.mark.asyncio
async def test_final_address_without_redirect():
    async with TestServer(make_app()) as server:
        async with HttpTransport() as transport:
            response = await transport.request(str(server.make_url('/profiles/holder/recommended/730/')))

    assert response.ok
    assert response.status_code == 200
    assert response.final_address.endswith('/profiles/holder/recommended/730/')
    assert response.body == 'review'


@pytest.mark.asyncio
async def test_redirect_is_followed():
    async with TestServer(make_app()) as server:
        async with HttpTransport() as transport:
            response = await transport.request(str(server.make_url('/profiles/other/recommended/730/')))

    assert response.ok
    assert response.final_address.endswith('/profiles/other/')
    assert response.body == 'profile'


@pytest.mark.asyncio
async def test_rate_limit_status_is_returned_not_raised():
    async with TestServer(make_app()) as server:
        async with HttpTransport(read_body=False) as transport:
            response = await transport.request(str(server.make_url('/limited')))

    assert response.status_code == 429
    assert not response.ok
    assert response.body == ''


@pytest.mark.asyncio
async def test_connection_failure_raises_transport_error():
    async with TestServer(make_app()) as server:
        address = str(server.make_url('/limited'))
    # Server is gone now

    async with HttpTransport(timeout_seconds=2) as transport:
        with pytest.raises(TransportError) as excinfo:
            await transport.request(address)

    assert excinfo.value.address == address
    assert not excinfo.value.rate_limited


@pytest.mark.asyncio
async def test_external_session_is_not_closed():
    async with TestServer(make_app()) as server:
        async with aiohttp.ClientSession() as session:
            async with HttpTransport(session=session) as transport:
                await transport.request(str(server.make_url('/profiles/holder/recommended/730/')))
            assert not session.closed


@pytest.mark.asyncio
async def test_request_requires_open_session():
    transport = HttpTransport()

    with pytest.raises(RuntimeError):
        await transport.request('http://127.0.0.1/')
