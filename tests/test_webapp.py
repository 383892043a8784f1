"""Tests for the HTTP control API."""
import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from macros.execution import MacroRunner
from scripting.server import ScriptingInterface
from webapp.server import create_app


@pytest.fixture
def service(tmp_path, bridges):
    (tmp_path / 'hello.iim').write_text('EXTRACT hello<SP>{{who}}\n')
    (tmp_path / 'nested').mkdir()
    (tmp_path / 'nested' / 'other.iim').write_text('WAIT SECONDS=0\n')
    return ScriptingInterface(MacroRunner(bridges), tmp_path)


@pytest_asyncio.fixture
async def client(service):
    async with TestClient(TestServer(create_app(service))) as client:
        yield client


@pytest.mark.asyncio
async def test_list_and_get_macros(client):
    response = await client.get('/api/macros')
    assert response.status == 200
    assert await response.json() == ['hello.iim', 'nested/other.iim']

    response = await client.get('/api/macro/nested/other')
    assert response.status == 200
    assert await response.text() == 'WAIT SECONDS=0\n'

    response = await client.get('/api/macro/missing.iim')
    assert response.status == 404


@pytest.mark.asyncio
async def test_set_then_play(client):
    response = await client.post('/api/set', json={'name': '-var_who', 'value': 'world'})
    assert await response.json() == {'status': 'ok', 'name': 'who'}

    response = await client.post('/api/play', json={'name': 'hello'})
    body = await response.json()

    assert response.status == 200
    assert body == {'code': 1, 'message': 'OK', 'extract': ['hello world']}

    response = await client.get('/api/extract')
    assert await response.json() == {'values': ['hello world']}


@pytest.mark.asyncio
async def test_play_errors(client):
    missing = await client.post('/api/play', json={'name': 'nope'})
    assert missing.status == 404
    assert (await missing.json())['code'] == -4

    failed = await client.post('/api/play', json={'name': 'CODE:GOTO nowhere'})
    body = await failed.json()
    assert failed.status == 200
    assert body['code'] == -1
    assert body['message'] == 'Line 1: Label not found: nowhere'

    bad = await client.post('/api/play', json={'name': 'hello', 'timeout': -1})
    assert bad.status == 400

    not_json = await client.post('/api/play', data='nope')
    assert not_json.status == 400


@pytest.mark.asyncio
async def test_status_and_stop_when_idle(client):
    response = await client.get('/api/status')
    status = await response.json()
    assert status['running'] is False

    response = await client.post('/api/stop')
    assert (await response.json())['message'] == 'No macro is running'


@pytest.mark.asyncio
async def test_websocket_greets_and_answers_status(client):
    ws = await client.ws_connect('/ws')
    try:
        hello = await ws.receive_json(timeout=5)
        assert hello['type'] == 'status'

        await ws.send_str('status')
        reply = await ws.receive_json(timeout=5)
        assert reply['type'] == 'status'
        assert reply['running'] is False
    finally:
        await ws.close()
