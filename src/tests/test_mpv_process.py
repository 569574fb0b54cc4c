import os
import stat

import pytest

from podplayer.core.mpv_process import MpvProcess
from podplayer.utils.constants import MPV_ARGS
from podplayer.utils.exceptions import TransportError

CREATE_SOCKET = '''\
for arg in "$@"; do
  case "$arg" in
    --input-ipc-server=*) touch "${arg#--input-ipc-server=}" ;;
  esac
done
echo "fake mpv ready"
'''


def fake_mpv(tmp_path, body):
    path = tmp_path / "fake-mpv"
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return str(path)


def test_build_command():
    process = MpvProcess('mpv', '/tmp/player/mpv.sock', audio_output='pulse', extra_args=['--volume=50'])

    assert process.build_command() == [
        'mpv', *MPV_ARGS, '--input-ipc-server=/tmp/player/mpv.sock', '--ao=pulse', '--volume=50'
    ]
    assert '--ao=pulse' not in MpvProcess('mpv', '/tmp/mpv.sock').build_command()


@pytest.mark.asyncio
async def test_missing_binary(tmp_path):
    process = MpvProcess(str(tmp_path / "no-such-mpv"), str(tmp_path / "mpv.sock"))

    with pytest.raises(TransportError):
        await process.start()
    assert not process.running


@pytest.mark.asyncio
async def test_start_and_stop(tmp_path):
    socket_path = tmp_path / "run" / "mpv.sock"
    process = MpvProcess(fake_mpv(tmp_path, CREATE_SOCKET + "exec sleep 30\n"), str(socket_path),
                         startup_timeout=5.0)
    exits = []
    process.on_exit(exits.append)

    await process.start()
    assert process.running
    assert process.pid is not None
    assert socket_path.exists()

    await process.stop()
    assert not process.running
    assert not socket_path.exists()
    assert exits == []


@pytest.mark.asyncio
async def test_stale_socket_is_replaced(tmp_path):
    socket_path = tmp_path / "mpv.sock"
    socket_path.write_text("")
    process = MpvProcess(fake_mpv(tmp_path, "exec sleep 30\n"), str(socket_path), startup_timeout=0.3)

    with pytest.raises(TransportError):
        await process.start()

    assert not process.running
    assert not os.path.exists(socket_path)


@pytest.mark.asyncio
async def test_exit_during_startup(tmp_path):
    process = MpvProcess(fake_mpv(tmp_path, "exit 2\n"), str(tmp_path / "mpv.sock"), startup_timeout=5.0)

    with pytest.raises(TransportError) as error:
        await process.start()

    assert "code 2" in error.value.message


@pytest.mark.asyncio
async def test_unexpected_exit_is_reported(tmp_path, wait_until):
    process = MpvProcess(fake_mpv(tmp_path, CREATE_SOCKET + "sleep 0.3\nexit 3\n"), str(tmp_path / "mpv.sock"))
    exits = []

    async def on_exit(code):
        exits.append(code)

    process.on_exit(on_exit)
    await process.start()

    await wait_until(lambda: exits, timeout=5.0)
    assert exits == [3]
    assert not process.running
    await process.stop()
