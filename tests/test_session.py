import asyncio

import pytest

from promptdj.errors import PublishRejectedError, SessionClosedError, SessionError
from promptdj.session import SessionChannel, SessionEvent, SessionHooks


@pytest.mark.asyncio
async def test_connect_waits_for_setup(connector) -> None:
    channel = SessionChannel(connector)
    assert channel.connection_error
    await channel.connect()
    assert channel.connected
    assert channel.state == "connected"
    await channel.close()
    assert connector.latest.closed
    assert channel.state == "disconnected"


@pytest.mark.asyncio
async def test_connecting_flag_covers_setup_wait(connector) -> None:
    seen: list[bool] = []
    channel = SessionChannel(
        connector,
        hooks=SessionHooks(on_setup_complete=lambda: seen.append(channel.connecting)),
    )
    assert not channel.connecting
    await channel.connect()
    assert seen == [True]
    assert not channel.connecting
    await channel.close()


@pytest.mark.asyncio
async def test_setup_error_raises_and_clears_connecting(connector) -> None:
    connector.setup_error = RuntimeError("handshake failed")
    errors: list[Exception] = []
    channel = SessionChannel(connector, hooks=SessionHooks(on_error=errors.append))
    with pytest.raises(SessionError, match="failed during setup"):
        await channel.connect()
    assert [str(exc) for exc in errors] == ["handshake failed"]
    assert not channel.connecting
    assert channel.connection_error
    await channel.close()


@pytest.mark.asyncio
async def test_connect_failure_raises_session_error(connector) -> None:
    connector.fail_with = RuntimeError("bad key")
    channel = SessionChannel(connector)
    with pytest.raises(SessionError, match="Failed to initialize music session"):
        await channel.connect()
    assert channel.connection_error


@pytest.mark.asyncio
async def test_setup_timeout_raises(connector) -> None:
    connector.setup = False
    channel = SessionChannel(connector, setup_timeout=0.05)
    with pytest.raises(SessionError, match="did not complete"):
        await channel.connect()
    assert connector.latest.closed
    assert not channel.connected


@pytest.mark.asyncio
async def test_events_reach_hooks_in_order(connector) -> None:
    chunks: list[bytes] = []
    filtered: list[tuple[str, str]] = []
    channel = SessionChannel(
        connector,
        hooks=SessionHooks(
            on_audio_chunk=chunks.append,
            on_filtered_prompt=lambda text, reason: filtered.append((text, reason)),
        ),
    )
    await channel.connect()
    session = connector.latest
    session.emit(SessionEvent(kind="audio_chunk", data=b"\x00\x01"))
    session.emit(SessionEvent(kind="filtered_prompt", text="Lead: X", reason="unsafe"))
    session.emit(SessionEvent(kind="audio_chunk", data=b"\x02\x03"))
    await asyncio.sleep(0.01)
    assert chunks == [b"\x00\x01", b"\x02\x03"]
    assert filtered == [("Lead: X", "unsafe")]
    await channel.close()


@pytest.mark.asyncio
async def test_error_event_marks_connection_and_drops_commands(connector) -> None:
    errors: list[Exception] = []
    channel = SessionChannel(connector, hooks=SessionHooks(on_error=errors.append))
    await channel.connect()
    session = connector.latest
    session.emit(SessionEvent(kind="error", error=RuntimeError("socket reset")))
    await asyncio.sleep(0.01)
    assert channel.connection_error
    assert [str(exc) for exc in errors] == ["socket reset"]
    assert await channel.send("play") is False
    assert await channel.set_weighted_prompts([]) is False
    assert session.commands() == []


@pytest.mark.asyncio
async def test_stream_end_is_reported_as_close(connector) -> None:
    closed: list[SessionEvent] = []
    channel = SessionChannel(
        connector,
        hooks=SessionHooks(on_event=lambda event: closed.append(event) if event.kind == "close" else None),
    )
    await channel.connect()
    connector.latest.end()
    await asyncio.sleep(0.01)
    assert channel.connection_error
    assert len(closed) == 1
    assert isinstance(closed[0].error, SessionClosedError)


@pytest.mark.asyncio
async def test_commands_are_forwarded_when_connected(connector) -> None:
    channel = SessionChannel(connector)
    await channel.connect()
    assert await channel.send("play") is True
    assert await channel.send("reset_context") is True
    assert await channel.set_generation_config({"bpm": 100}) is True
    assert connector.latest.commands() == ["play", "reset_context"]
    assert connector.latest.sent("config") == [{"bpm": 100}]
    await channel.close()


@pytest.mark.asyncio
async def test_rejected_prompts_raise_publish_error(connector) -> None:
    channel = SessionChannel(connector)
    await channel.connect()
    connector.latest.reject_prompts = ValueError("prompt blocked")
    with pytest.raises(PublishRejectedError, match="prompt blocked"):
        await channel.set_weighted_prompts([{"text": "a", "weight": 1.0}])
    await channel.close()


@pytest.mark.asyncio
async def test_reconnect_replaces_and_closes_previous_session(connector) -> None:
    chunks: list[bytes] = []
    channel = SessionChannel(connector, hooks=SessionHooks(on_audio_chunk=chunks.append))
    await channel.connect()
    first = connector.latest
    first.emit(SessionEvent(kind="error", error=RuntimeError("lost")))
    await asyncio.sleep(0.01)
    await channel.ensure_connected()
    assert len(connector.sessions) == 2
    assert first.closed
    assert channel.connected
    first.emit(SessionEvent(kind="audio_chunk", data=b"\x00\x00"))
    await asyncio.sleep(0.01)
    assert chunks == []
    await channel.close()


@pytest.mark.asyncio
async def test_failing_hook_does_not_stop_receive_loop(connector) -> None:
    seen: list[bytes] = []

    def _chunk(data: bytes) -> None:
        seen.append(data)
        if len(seen) == 1:
            raise RuntimeError("hook failure")

    channel = SessionChannel(connector, hooks=SessionHooks(on_audio_chunk=_chunk))
    await channel.connect()
    connector.latest.emit(SessionEvent(kind="audio_chunk", data=b"\x00\x00"))
    connector.latest.emit(SessionEvent(kind="audio_chunk", data=b"\x01\x00"))
    await asyncio.sleep(0.01)
    assert len(seen) == 2
    assert channel.connected
    await channel.close()
