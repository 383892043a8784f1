"""Tests for the TCP scripting interface and the native messaging codec."""
import asyncio
import json
import struct

import pytest

from macros.execution import MacroRunner
from scripting.native_messaging import (
    MAX_MESSAGE_BYTES,
    MessageBuffer,
    NativeMessageError,
    decode_message,
    encode_message,
)
from scripting.protocol import ProtocolError, ReturnCode, format_response, parse_command_line
from scripting.server import (
    ScriptingInterface,
    ScriptingServer,
    decode_inline_macro,
    normalize_variable_name,
)


def test_parse_command_line():
    assert parse_command_line('iimPlay("demo.iim", 30)') == ('iimPlay', ['demo.iim', '30'])
    assert parse_command_line('iimSet("a", "x, \\"y\\"")') == ('iimSet', ['a', 'x, "y"'])
    assert parse_command_line('iimGetLastExtract()') == ('iimGetLastExtract', [])
    assert parse_command_line('  iimStop ( )  ') == ('iimStop', [])


@pytest.mark.parametrize('line', ['iimPlay', 'iimPlay("x"', 'iimSet("a, "b")', 'play me()'])
def test_parse_command_line_rejects_malformed(line):
    with pytest.raises(ProtocolError):
        parse_command_line(line)


def test_format_response():
    assert format_response(ReturnCode.OK) == '1\n'
    assert format_response(ReturnCode.ERROR, 'bad\nthing') == '-1\tbad thing\n'
    assert format_response(ReturnCode.MACRO_RUNNING, '') == '0\n'


def test_variable_name_aliases():
    assert normalize_variable_name('-var_price') == 'price'
    assert normalize_variable_name('var3') == '!VAR3'
    assert normalize_variable_name('VAR1') == '!VAR1'
    assert normalize_variable_name('custom') == 'custom'


def test_inline_macro_escapes():
    assert decode_inline_macro('SET[sp]!VAR1[sp]a[br]WAIT[SP]SECONDS=0[lf]') == 'SET !VAR1 a\nWAIT SECONDS=0\r'


def test_native_codec_partial_buffer():
    frame = encode_message({'id': '1', 'type': 'navigate'})

    assert struct.unpack('<I', frame[:4])[0] == len(frame) - 4
    assert decode_message(frame[:3]) is None
    assert decode_message(frame[:-1]) is None
    assert decode_message(frame + b'extra') == ({'id': '1', 'type': 'navigate'}, len(frame))


def test_message_buffer_handles_split_and_joined_frames():
    a = encode_message({'n': 1})
    b = encode_message({'n': 2})
    buffer = MessageBuffer()

    assert buffer.feed(a[:5]) == []
    assert buffer.feed(a[5:] + b) == [{'n': 1}, {'n': 2}]
    assert len(buffer) == 0


def test_message_buffer_skips_a_malformed_frame():
    buffer = MessageBuffer()

    with pytest.raises(NativeMessageError):
        buffer.feed(struct.pack('<I', 3) + b'{x}')
    assert len(buffer) == 0
    assert buffer.feed(encode_message({'ok': 1})) == [{'ok': 1}]
    assert len(buffer) == 0


def test_message_buffer_keeps_messages_around_a_malformed_frame():
    buffer = MessageBuffer()
    stream = encode_message({'n': 1}) + struct.pack('<I', 3) + b'{x}' + encode_message({'n': 2})

    with pytest.raises(NativeMessageError):
        buffer.feed(stream)

    assert buffer.feed(b'') == [{'n': 1}, {'n': 2}]
    assert len(buffer) == 0


def test_message_buffer_discards_oversized_frames():
    buffer = MessageBuffer()

    with pytest.raises(NativeMessageError):
        buffer.feed(struct.pack('<I', MAX_MESSAGE_BYTES + 1) + b'junk')
    assert len(buffer) == 0
    assert buffer.feed(encode_message('x')) == ['x']


def test_native_codec_rejects_bad_frames():
    with pytest.raises(NativeMessageError):
        decode_message(struct.pack('<I', 3) + b'{x}')
    with pytest.raises(NativeMessageError):
        decode_message(struct.pack('<I', MAX_MESSAGE_BYTES + 1))
    with pytest.raises(NativeMessageError):
        encode_message('x' * (MAX_MESSAGE_BYTES + 1))


@pytest.fixture
def interface(tmp_path, bridges):
    (tmp_path / 'greet.iim').write_text('SET !VAR2 hi<SP>{{name}}\nEXTRACT {{!VAR2}}\nEXTRACT {{!VAR1}}\n')
    (tmp_path / 'sub').mkdir()
    (tmp_path / 'sub' / 'fail.iim').write_text('SET !VAR1 x\nGOTO missing\n')
    return ScriptingInterface(MacroRunner(bridges), tmp_path)


async def call(interface, line):
    response, _ = await interface.handle_line(line)
    return response


@pytest.mark.asyncio
async def test_play_file_macro_with_preset_variables(interface):
    assert await call(interface, 'iimSet("-var_name", "Bob")') == '1\n'
    assert await call(interface, 'iimSet("var1", "second")') == '1\n'

    assert await call(interface, 'iimPlay("greet")') == '1\n'

    assert await call(interface, 'iimGetLastExtract()') == '1\thi Bob#NEXT#second\n'
    assert await call(interface, 'iimGetLastExtract(2)') == '1\tsecond\n'
    assert await call(interface, 'iimGetLastExtract(3)') == '1\t#nodata#\n'
    assert await call(interface, 'iimGetLastError()') == '1\tOK\n'


@pytest.mark.asyncio
async def test_play_inline_code(interface):
    response = await call(interface, 'iimPlay("CODE:SET[sp]!VAR1[sp]abc[br]EXTRACT[sp]{{!VAR1}}")')

    assert response == '1\n'
    assert interface.last_extract == ['abc']


@pytest.mark.asyncio
async def test_play_error_reports_line(interface):
    response = await call(interface, 'iimPlay("sub/fail.iim")')

    assert response.startswith('-1\t')
    assert interface.last_error == 'Line 2: Label not found: missing'
    assert await call(interface, 'iimGetLastExtract()') == '1\t#nodata#\n'
    performance = json.loads((await call(interface, 'iimGetLastPerformance()')).split('\t', 1)[1])
    assert performance['success'] is False
    assert performance['errorCode'] == ReturnCode.ERROR


@pytest.mark.asyncio
async def test_play_missing_or_escaping_macro(interface):
    assert (await call(interface, 'iimPlay("nope")')).startswith('-4\t')
    assert (await call(interface, 'iimPlay("../outside.iim")')).startswith('-4\t')


@pytest.mark.asyncio
async def test_unknown_and_malformed_commands(interface):
    assert (await call(interface, 'iimFly()')).startswith('-10\t')
    assert (await call(interface, 'not a call')).startswith('-3\t')
    assert (await call(interface, 'iimSet("only")')).startswith('-6\t')


@pytest.mark.asyncio
async def test_exit_closes_connection(interface):
    response, close = await interface.handle_line('iimExit()')

    assert response == '1\n'
    assert close


@pytest.mark.asyncio
async def test_play_timeout_and_busy(interface):
    play = asyncio.create_task(interface.play('CODE:WAIT SECONDS=5', timeout=0.2))
    await asyncio.sleep(0.05)

    busy_code, _ = await interface.play('CODE:SET !VAR1 x')
    code, message = await play

    assert busy_code == ReturnCode.MACRO_RUNNING
    assert code == ReturnCode.TIMEOUT
    assert 'timeout' in message.lower()
    assert not interface.running


@pytest.mark.asyncio
async def test_stop_cancels_running_play(interface):
    play = asyncio.create_task(interface.play('CODE:WAIT SECONDS=5'))
    await asyncio.sleep(0.05)

    assert await call(interface, 'iimStop()') == '1\n'
    code, _ = await asyncio.wait_for(play, 2)

    assert code == ReturnCode.CANCELLED


@pytest.mark.asyncio
async def test_server_round_trip_over_tcp(interface):
    server = ScriptingServer(interface, '127.0.0.1', 0)
    await server.start()
    try:
        reader, writer = await asyncio.open_connection('127.0.0.1', server.port)
        writer.write(b'iimSet("-var_name", "Ann")\n')
        writer.write(b'iimPlay("greet")\n')
        writer.write(b'iimGetLastExtract(1)\n')
        writer.write(b'iimExit()\n')
        await writer.drain()

        lines = [await asyncio.wait_for(reader.readline(), 5) for _ in range(4)]
        assert lines == [b'1\n', b'1\n', b'1\thi Ann\n', b'1\n']
        assert await reader.readline() == b''
        writer.close()
    finally:
        await server.close()
