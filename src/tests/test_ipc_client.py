import asyncio
import json
import os
import shutil
import tempfile

import pytest

from podplayer.core.media_player_service import MediaPlayerService
from podplayer.core.notifications import NotificationHub
from podplayer.utils.exceptions import RemoteCommandError, RequestTimeout, TransportError
from podplayer.utils.ipc_client import MpvIPCClient


class FakeMpvServer:
    """Unix socket server speaking mpv's JSON IPC"""

    def __init__(self, path):
        self.path = path
        self.server = None
        self.requests = []
        self.writers = []
        self.responder = self.reply_success

    @staticmethod
    def reply_success(request):
        return {'request_id': request['request_id'], 'error': 'success', 'data': None}

    async def start(self):
        self.server = await asyncio.start_unix_server(self._handle, path=self.path)

    async def stop(self):
        self.drop_clients()
        self.server.close()
        await self.server.wait_closed()

    async def _handle(self, reader, writer):
        self.writers.append(writer)
        try:
            async for line in reader:
                request = json.loads(line)
                self.requests.append(request)
                reply = self.responder(request)
                if reply is not None:
                    writer.write((json.dumps(reply) + "\n").encode())
                    await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()

    def send_raw(self, data: bytes):
        for writer in self.writers:
            writer.write(data)

    def drop_clients(self):
        for writer in self.writers:
            writer.close()
        self.writers = []


@pytest.fixture
async def server():
    directory = tempfile.mkdtemp(prefix="mpvipc")
    fake = FakeMpvServer(os.path.join(directory, "mpv.sock"))
    await fake.start()
    yield fake
    await fake.stop()
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
async def client(server):
    ipc = MpvIPCClient(server.path, command_timeout=0.5, connect_timeout=1.0)
    await ipc.connect()
    yield ipc
    await ipc.disconnect()


@pytest.mark.asyncio
async def test_response_data_is_returned(client, server):
    server.responder = lambda request: {'request_id': request['request_id'], 'error': 'success', 'data': 3600.0}

    assert await client.get_property('duration') == 3600.0
    assert server.requests == [{'command': ['get_property', 'duration'], 'request_id': 1}]


@pytest.mark.asyncio
async def test_rejected_command_raises_remote_error(client, server):
    server.responder = lambda request: {'request_id': request['request_id'], 'error': 'property not found'}

    with pytest.raises(RemoteCommandError) as error:
        await client.get_property('no-such-property')

    assert error.value.message == 'property not found'
    assert error.value.command == ['get_property', 'no-such-property']


@pytest.mark.asyncio
async def test_unanswered_request_times_out(client, server):
    server.responder = lambda request: None

    with pytest.raises(RequestTimeout) as error:
        await client.command('get_version')

    assert error.value.request_id == 1
    assert client.pending_count == 0
    assert client.connected


@pytest.mark.asyncio
async def test_late_response_is_dropped(client, server):
    server.responder = lambda request: None
    with pytest.raises(RequestTimeout):
        await client.command('get_version')

    server.responder = FakeMpvServer.reply_success
    server.send_raw(b'{"request_id": 1, "error": "success", "data": 1}\n')

    assert await client.command('get_version') is None
    assert client.last_request_id == 2


@pytest.mark.asyncio
async def test_send_without_connection():
    ipc = MpvIPCClient("/nonexistent/mpv.sock")

    with pytest.raises(TransportError):
        await ipc.send_request(['get_version'])


@pytest.mark.asyncio
async def test_connect_to_missing_socket():
    ipc = MpvIPCClient("/nonexistent/mpv.sock", connect_timeout=0.5)

    with pytest.raises(TransportError):
        await ipc.connect()
    assert not ipc.connected


@pytest.mark.asyncio
async def test_events_are_delivered_in_order(client, server, wait_until):
    received = []

    async def on_change(message):
        received.append(message['data'])

    client.register_event_handler('property-change', on_change)
    await wait_until(lambda: server.writers)

    server.send_raw(
        b'{"event": "property-change", "name": "time-pos", "data": 1}\n'
        b'not json\n'
        b'\n'
        b'{"event": "property-change", "name": "time-pos", "data": 2}\n'
        b'{"event": "file-loaded"}\n'
    )

    await wait_until(lambda: len(received) == 2)
    assert received == [1, 2]
    assert client.connected


@pytest.mark.asyncio
async def test_partial_lines_are_buffered(client, server, wait_until):
    received = []

    async def on_end_file(message):
        received.append(message['reason'])

    client.register_event_handler('end-file', on_end_file)
    await wait_until(lambda: server.writers)

    server.send_raw(b'{"event": "end-fi')
    await asyncio.sleep(0.05)
    assert received == []

    server.send_raw(b'le", "reason": "eof"}\n')
    await wait_until(lambda: received)
    assert received == ['eof']


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_events(client, server, wait_until):
    received = []

    async def on_change(message):
        if message['data'] == 'boom':
            raise RuntimeError("handler failed")
        received.append(message['data'])

    client.register_event_handler('property-change', on_change)
    await wait_until(lambda: server.writers)

    server.send_raw(
        b'{"event": "property-change", "data": "boom"}\n'
        b'{"event": "property-change", "data": "ok"}\n'
    )

    await wait_until(lambda: received)
    assert received == ['ok']


@pytest.mark.asyncio
async def test_connection_loss_fails_pending_requests(client, server, wait_until):
    reasons = []
    client.register_disconnect_handler(reasons.append)
    server.responder = lambda request: None

    first = asyncio.create_task(client.command('get_version'))
    second = asyncio.create_task(client.get_property('pause'))
    await wait_until(lambda: len(server.requests) == 2)

    server.drop_clients()

    for task in (first, second):
        with pytest.raises(TransportError):
            await task
    await wait_until(lambda: reasons)
    assert reasons == ["socket closed by mpv"]
    assert not client.connected
    assert client.pending_count == 0

    with pytest.raises(TransportError):
        await client.command('get_version')

    # Request ids keep counting across reconnects
    server.responder = FakeMpvServer.reply_success
    await client.connect()
    await client.command('get_version')
    assert server.requests[-1]['request_id'] == 3
    assert reasons == ["socket closed by mpv"]


@pytest.mark.asyncio
async def test_events_before_loss_are_handled_first(client, server, wait_until):
    order = []

    async def on_change(message):
        order.append('event')

    client.register_event_handler('property-change', on_change)
    client.register_disconnect_handler(lambda reason: order.append('disconnect'))
    await wait_until(lambda: server.writers)

    server.send_raw(b'{"event": "property-change", "name": "idle-active", "data": true}\n')
    server.drop_clients()

    await wait_until(lambda: 'disconnect' in order)
    assert order == ['event', 'disconnect']


@pytest.mark.asyncio
async def test_explicit_disconnect_skips_handlers(client):
    reasons = []
    client.register_disconnect_handler(reasons.append)

    await client.disconnect()

    assert not client.connected
    assert reasons == []


@pytest.mark.asyncio
async def test_mpv_exit_during_disconnect_handling(client, server, store, wait_until):
    notes = []
    player = MediaPlayerService(
        client, store,
        {'settle_delay': 0, 'load_settle_delay': 0, 'verify_files': False, 'position_save_interval': 3600},
        notifier=NotificationHub([notes.append])
    )
    await player.initialize()
    await player.add_to_queue(1)
    await player.add_to_queue(2)
    await player.seek(30)

    async def slow_update(episode_id, position):
        await asyncio.sleep(0.3)
        store.progress.setdefault(episode_id, []).append(position)

    store.update_progress = slow_update

    # Socket EOF and process exit arrive together
    server.drop_clients()
    await wait_until(lambda: not client.connected)
    await player._on_mpv_exit(0)

    assert len(player.queue) == 0
    assert player.state.current_item is None
    assert not player.tracker.running
    assert [note['type'] for note in notes].count('media:disconnected') == 1
    assert store.progress == {1: [30]}
    await player.cleanup()
