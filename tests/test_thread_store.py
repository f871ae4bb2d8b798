import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from src.chat.fragments import Fragment, Message, ThreadSummary
from src.client.thread_store import ThreadStore


def _msg(message_id, text="hi", role="assistant", minutes=0):
    return Message(
        id=message_id,
        role=role,
        content=(Fragment(type="text", text=text),),
        timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
    )


def test_append_returns_new_snapshot_and_notifies():
    async def _run():
        store = ThreadStore()
        store.open_thread("t")
        seen = []
        store.add_listener(lambda thread_id, snapshot: seen.append((thread_id, len(snapshot))))
        first = store.snapshot("t")
        await store.append("t", _msg("m1"))
        await store.append("t", _msg("m2"))
        return store, first, seen

    store, first, seen = asyncio.run(_run())
    assert first == ()
    assert [message.id for message in store.snapshot("t")] == ["m1", "m2"]
    assert seen == [("t", 1), ("t", 2)]


def test_snapshot_of_unknown_thread_raises():
    with pytest.raises(KeyError):
        ThreadStore().snapshot("missing")


def test_listener_errors_do_not_break_append():
    async def _run():
        store = ThreadStore()
        store.open_thread("t")

        def _boom(thread_id, snapshot):
            raise RuntimeError("listener failed")

        store.add_listener(_boom)
        await store.append("t", _msg("m1"))
        return store

    store = asyncio.run(_run())
    assert len(store.snapshot("t")) == 1


def test_load_history_installs_server_messages():
    async def _fetch():
        return [_msg("s1"), _msg("s2")]

    async def _run():
        store = ThreadStore()
        loaded = await store.load_history("t", _fetch)
        return store, loaded

    store, loaded = asyncio.run(_run())
    assert loaded is True
    assert store.is_loaded("t") is True
    assert [message.id for message in store.snapshot("t")] == ["s1", "s2"]


def test_load_history_keeps_messages_appended_during_fetch():
    async def _run():
        store = ThreadStore()
        store.open_thread("t")
        release = asyncio.Event()

        async def _fetch():
            await release.wait()
            return [_msg("s1"), _msg("shared")]

        loader = asyncio.create_task(store.load_history("t", _fetch))
        await asyncio.sleep(0)
        await store.append("t", _msg("local-1", role="user"))
        await store.append("t", _msg("shared"))
        release.set()
        await loader
        return store

    store = asyncio.run(_run())
    assert [message.id for message in store.snapshot("t")] == ["s1", "shared", "local-1"]


def test_cancel_fetch_prevents_history_write():
    async def _run():
        store = ThreadStore()
        store.open_thread("t")
        started = asyncio.Event()

        async def _fetch():
            started.set()
            await asyncio.sleep(10)
            return [_msg("late")]

        loader = asyncio.create_task(store.load_history("t", _fetch))
        await started.wait()
        await store.cancel_fetch("t")
        await store.append("t", _msg("optimistic", role="user"))
        loaded = await loader
        return store, loaded

    store, loaded = asyncio.run(_run())
    assert loaded is False
    assert [message.id for message in store.snapshot("t")] == ["optimistic"]
    assert store.is_loaded("t") is False


def test_load_history_propagates_fetch_errors():
    async def _fetch():
        raise RuntimeError("server down")

    with pytest.raises(RuntimeError):
        asyncio.run(ThreadStore().load_history("t", _fetch))


def test_summaries_sorted_by_recent_activity():
    store = ThreadStore()
    store.set_summaries(
        [
            ThreadSummary(thread_id="old", last_message_at=datetime(2025, 1, 1, tzinfo=timezone.utc)),
            ThreadSummary(thread_id="never"),
            ThreadSummary(thread_id="new", last_message_at=datetime(2026, 1, 1, tzinfo=timezone.utc)),
        ]
    )
    store.touch("never", datetime(2026, 6, 1, tzinfo=timezone.utc))
    assert [summary.thread_id for summary in store.summaries()] == ["never", "new", "old"]


def test_close_thread_forgets_state():
    store = ThreadStore()
    store.open_thread("t")
    asyncio.run(store.close_thread("t"))
    assert store.summaries() == []
    with pytest.raises(KeyError):
        store.snapshot("t")


def test_set_summaries_keeps_newer_local_activity():
    store = ThreadStore()
    store.open_thread("t")
    local = datetime(2026, 3, 1, tzinfo=timezone.utc)
    store.touch("t", local)
    store.set_summaries(
        [ThreadSummary(thread_id="t", title="Demo", last_message_at=datetime(2026, 2, 1, tzinfo=timezone.utc))]
    )
    (summary,) = store.summaries()
    assert summary.title == "Demo"
    assert summary.last_message_at == local
    assert store.is_loaded("t") is False


def test_is_loaded_after_history_install():
    store = ThreadStore()

    async def _fetch():
        return [_msg("m1")]

    asyncio.run(store.load_history("t", _fetch))
    assert store.is_loaded("t") is True
