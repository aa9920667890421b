from __future__ import annotations

import asyncio

import pytest

from gerritstream import Event, ListenerState, StreamListener
from gerritstream.errors import CommandFailedError, ConnectError, DecodeError, StateError, StreamIOError
from tests.conftest import FakeFactory, FakeSession, lines

pytestmark = [pytest.mark.unit, pytest.mark.timeout(10)]


async def collect(listener: StreamListener) -> list[str]:
    return [event.type async for event in listener.events()]


async def settle() -> None:
    await asyncio.sleep(0.05)


class TestDelivery:
    async def test_events_in_order_until_end_of_stream(self, endpoint):
        session = FakeSession([b'{"type":"x"}\n{"typ', b'e":"y"}\n', lines('{"type":"z"}')])
        factory = FakeFactory(session)
        listener = StreamListener(endpoint, session_factory=factory)

        listener.start()
        assert await collect(listener) == ["x", "y", "z"]

        assert listener.state is ListenerState.STOPPED
        assert listener.error is None
        assert session.closed
        assert factory.commands == ["gerrit stream-events"]

    async def test_no_event_before_record_is_complete(self, endpoint):
        session = FakeSession([b'{"type":"x"}\n{"typ'], eof=False)
        listener = StreamListener(endpoint, session_factory=FakeFactory(session))
        listener.start()
        await settle()

        assert listener.pending == 1
        session.push(b'e":"y"}\n')
        await settle()
        assert listener.pending == 2

        await listener.aclose()
        assert await collect(listener) == ["x", "y"]

    async def test_consumer_subscribed_before_start(self, endpoint):
        session = FakeSession([lines('{"type":"a"}', '{"type":"b"}')])
        listener = StreamListener(endpoint, session_factory=FakeFactory(session))

        consumer = asyncio.create_task(collect(listener))
        await settle()
        listener.start()
        assert await consumer == ["a", "b"]

    async def test_async_context_manager(self, endpoint):
        session = FakeSession([lines('{"type":"a"}')], eof=False)
        async with StreamListener(endpoint, session_factory=FakeFactory(session)) as listener:
            async for event in listener:
                assert event.type == "a"
                break
        assert listener.state is ListenerState.STOPPED
        assert session.closed

    async def test_cancelled_consumer_keeps_dequeued_event(self, endpoint):
        session = FakeSession(eof=False)
        listener = StreamListener(endpoint, session_factory=FakeFactory(session))
        listener.start()

        async def first() -> str:
            async for event in listener:
                return event.type
            return ""

        consumer = asyncio.create_task(first())
        await settle()
        # the pending get receives the event in the same loop step as the cancel
        listener._queue.put_nowait(Event(type="a"))
        consumer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await consumer

        assert listener.pending == 1
        session.end()
        assert await collect(listener) == ["a"]

    async def test_custom_command(self, endpoint):
        factory = FakeFactory(FakeSession())
        listener = StreamListener(endpoint, ("stream-events", "-s", "change-merged"), session_factory=factory)
        listener.start()
        await listener.wait_stopped()
        assert factory.commands == ["gerrit stream-events -s change-merged"]


class TestLifecycle:
    async def test_start_while_running_is_rejected(self, endpoint):
        listener = StreamListener(endpoint, session_factory=FakeFactory(FakeSession(eof=False)))
        listener.start()
        with pytest.raises(StateError):
            listener.start()
        await listener.aclose()

    async def test_start_while_stopping_is_rejected(self, endpoint):
        listener = StreamListener(endpoint, session_factory=FakeFactory(FakeSession(eof=False)))
        listener.start()
        listener.stop()
        assert listener.state is ListenerState.STOPPING
        with pytest.raises(StateError):
            listener.start()
        await listener.wait_stopped()

    async def test_stop_when_not_running_is_noop(self, endpoint):
        listener = StreamListener(endpoint, session_factory=FakeFactory())
        listener.stop()
        assert listener.state is ListenerState.IDLE
        await listener.wait_stopped()

    async def test_repeated_stop_is_safe(self, endpoint):
        session = FakeSession(eof=False)
        listener = StreamListener(endpoint, session_factory=FakeFactory(session))
        listener.start()
        await settle()

        listener.stop()
        listener.stop()
        await listener.wait_stopped()
        listener.stop()

        assert listener.state is ListenerState.STOPPED
        assert session.releases == 1

    async def test_stop_unblocks_pending_read(self, endpoint):
        session = FakeSession(eof=False)
        listener = StreamListener(endpoint, session_factory=FakeFactory(session))
        listener.start()
        await settle()
        assert session.reads == 1

        listener.stop()
        await asyncio.wait_for(listener.wait_stopped(), timeout=1.0)

        assert listener.state is ListenerState.STOPPED
        assert listener.error is None
        assert session.closed

    async def test_stop_during_open(self, endpoint):
        opened = asyncio.Event()

        async def slow_factory(ep, command):
            opened.set()
            await asyncio.sleep(3600)

        listener = StreamListener(endpoint, session_factory=slow_factory)
        listener.start()
        await opened.wait()
        listener.stop()
        await asyncio.wait_for(listener.wait_stopped(), timeout=1.0)
        assert listener.state is ListenerState.STOPPED

    async def test_restart_after_stop_opens_new_session(self, endpoint):
        first = FakeSession([lines('{"type":"a"}')], eof=False)
        second = FakeSession([lines('{"type":"b"}')])
        factory = FakeFactory(first, second)
        listener = StreamListener(endpoint, session_factory=factory)

        listener.start()
        await settle()
        await listener.aclose()
        assert first.closed

        listener.start()
        assert await collect(listener) == ["a", "b"]
        assert len(factory.commands) == 2

    async def test_no_events_after_stop(self, endpoint):
        session = FakeSession([lines('{"type":"a"}')], eof=False)
        listener = StreamListener(endpoint, session_factory=FakeFactory(session))
        listener.start()
        await settle()
        await listener.aclose()

        session.push(lines('{"type":"late"}'))
        await settle()
        assert await collect(listener) == ["a"]

    def test_start_requires_running_loop(self, endpoint):
        listener = StreamListener(endpoint, session_factory=FakeFactory())
        with pytest.raises(RuntimeError):
            listener.start()
        assert listener.state is ListenerState.IDLE

    @pytest.mark.parametrize("kwargs", [{"max_pending": 0}, {"decode_errors": "ignore"}])
    def test_invalid_options(self, endpoint, kwargs):
        with pytest.raises(ValueError):
            StreamListener(endpoint, **kwargs)


class TestBackpressure:
    async def test_full_queue_blocks_producer(self, endpoint):
        records = [f'{{"type":"e{i}"}}' for i in range(6)]
        session = FakeSession([lines(*records[:3]), lines(*records[3:])], eof=False)
        listener = StreamListener(endpoint, max_pending=2, session_factory=FakeFactory(session))
        listener.start()
        await settle()

        assert listener.pending == 2
        assert session.reads == 1
        assert listener.state is ListenerState.RUNNING

        session.end()
        assert await collect(listener) == [f"e{i}" for i in range(6)]

    async def test_stop_while_blocked_on_full_queue(self, endpoint):
        session = FakeSession([lines(*(['{"type":"x"}'] * 5))], eof=False)
        listener = StreamListener(endpoint, max_pending=1, session_factory=FakeFactory(session))
        listener.start()
        await settle()
        assert listener.pending == 1

        listener.stop()
        await asyncio.wait_for(listener.wait_stopped(), timeout=1.0)
        assert session.closed
        assert await collect(listener) == ["x"]


class TestErrors:
    async def test_decode_errors_reported_and_skipped(self, endpoint):
        reported: list[DecodeError] = []
        session = FakeSession([lines('{"type":"a"}', "garbage", '{"type":"b"}')])
        listener = StreamListener(
            endpoint,
            session_factory=FakeFactory(session),
            on_decode_error=reported.append,
        )
        listener.start()

        assert await collect(listener) == ["a", "b"]
        assert listener.decode_error_count == 1
        assert [e.line for e in reported] == [b"garbage"]
        assert listener.error is None

    async def test_decode_error_fatal_policy(self, endpoint):
        session = FakeSession([lines('{"type":"a"}', "garbage", '{"type":"b"}')])
        listener = StreamListener(endpoint, decode_errors="fatal", session_factory=FakeFactory(session))
        listener.start()

        seen: list[str] = []
        with pytest.raises(DecodeError):
            async for event in listener:
                seen.append(event.type)

        assert seen == ["a"]
        assert isinstance(listener.error, DecodeError)
        assert session.closed

    async def test_connect_error_is_observable(self, endpoint):
        listener = StreamListener(endpoint, session_factory=FakeFactory(error=ConnectError("auth failed")))
        listener.start()

        with pytest.raises(ConnectError):
            await collect(listener)
        assert listener.state is ListenerState.STOPPED
        assert isinstance(listener.error, ConnectError)

    async def test_read_error_stops_listener(self, endpoint, read_failure):
        session = FakeSession([lines('{"type":"a"}')], eof=False, read_error=read_failure)
        listener = StreamListener(endpoint, session_factory=FakeFactory(session))
        listener.start()

        seen: list[str] = []
        with pytest.raises(StreamIOError):
            async for event in listener:
                seen.append(event.type)
        assert seen == ["a"]
        assert session.closed

    async def test_remote_exit_failure(self, endpoint):
        session = FakeSession(exit_status=1, stderr=b"fatal: not permitted: stream events")
        listener = StreamListener(endpoint, session_factory=FakeFactory(session))
        listener.start()
        await listener.wait_stopped()

        assert isinstance(listener.error, CommandFailedError)
        assert listener.error.exit_status == 1
        assert b"not permitted" in listener.error.stderr

    async def test_error_cleared_on_restart(self, endpoint):
        factory = FakeFactory(FakeSession([lines('{"type":"ok"}')]))
        listener = StreamListener(endpoint, session_factory=factory)
        factory.error = ConnectError("down")
        listener.start()
        await listener.wait_stopped()
        assert listener.error is not None

        factory.error = None
        listener.start()
        assert await collect(listener) == ["ok"]
        assert listener.error is None
