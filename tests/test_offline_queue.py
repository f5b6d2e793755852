import pytest

from src.core.connectivity import ConnectivityMonitor
from src.core.models import Sender, TranslationRequest
from src.core.offline_queue import OfflineQueue


def _request(text):
    return TranslationRequest.create(source_lang="hi", target_lang="en", text=text)


def _fill(queue, *texts):
    return [queue.enqueue(_request(t), message_id=f"m-{t}", sender=Sender.CITIZEN) for t in texts]


@pytest.mark.asyncio
async def test_drain_replays_in_fifo_order_and_empties_queue():
    monitor = ConnectivityMonitor(True)
    replayed = []

    async def replay(entry):
        replayed.append(entry.request.text)
        return True

    queue = OfflineQueue(monitor, replay)
    _fill(queue, "one", "two", "three")

    report = await queue.drain_if_online()

    assert replayed == ["one", "two", "three"]
    assert report.attempted == 3
    assert report.failed == 0
    assert report.remaining == 0
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_drain_is_skipped_while_offline():
    monitor = ConnectivityMonitor(False)
    calls = []

    async def replay(entry):
        calls.append(entry)
        return True

    queue = OfflineQueue(monitor, replay)
    _fill(queue, "one")

    report = await queue.drain_if_online()

    assert report.skipped is True
    assert report.remaining == 1
    assert calls == []


@pytest.mark.asyncio
async def test_failed_replay_does_not_stop_drain():
    monitor = ConnectivityMonitor(True)
    replayed = []

    async def replay(entry):
        replayed.append(entry.request.text)
        if entry.request.text == "one":
            raise RuntimeError("pipeline exploded")
        return entry.request.text != "two"

    queue = OfflineQueue(monitor, replay)
    _fill(queue, "one", "two", "three")

    report = await queue.drain_if_online()

    assert replayed == ["one", "two", "three"]
    assert report.attempted == 3
    assert report.failed == 2
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_drain_stops_when_connectivity_drops():
    monitor = ConnectivityMonitor(True)
    replayed = []

    async def replay(entry):
        replayed.append(entry.request.text)
        await monitor.set_online(False)
        return True

    queue = OfflineQueue(monitor, replay)
    _fill(queue, "one", "two", "three")

    report = await queue.drain_if_online()

    assert replayed == ["one"]
    assert report.remaining == 2
    assert [e.request.text for e in queue.pending()] == ["two", "three"]


@pytest.mark.asyncio
async def test_entries_added_during_drain_wait_for_next_drain():
    monitor = ConnectivityMonitor(True)
    replayed = []
    queue = OfflineQueue(monitor)

    async def replay(entry):
        replayed.append(entry.request.text)
        if entry.request.text == "one":
            _fill(queue, "late")
        return True

    queue.bind_replay(replay)
    _fill(queue, "one", "two")

    first = await queue.drain_if_online()
    assert replayed == ["one", "two"]
    assert first.remaining == 1

    second = await queue.drain_if_online()
    assert replayed == ["one", "two", "late"]
    assert second.remaining == 0


@pytest.mark.asyncio
async def test_nested_drain_call_is_skipped():
    monitor = ConnectivityMonitor(True)
    queue = OfflineQueue(monitor)
    nested = []

    async def replay(entry):
        assert queue.draining is True
        nested.append(await queue.drain_if_online())
        return True

    queue.bind_replay(replay)
    _fill(queue, "one")

    await queue.drain_if_online()

    assert nested[0].skipped is True
    assert queue.draining is False


@pytest.mark.asyncio
async def test_drain_without_replay_function_raises():
    queue = OfflineQueue(ConnectivityMonitor(True))
    _fill(queue, "one")

    with pytest.raises(RuntimeError):
        await queue.drain_if_online()


def test_entry_summary_has_no_payload_bytes():
    queue = OfflineQueue(ConnectivityMonitor(False))
    entry = queue.enqueue(
        TranslationRequest.create(source_lang="hi", target_lang="en", audio_payload=b"\x00" * 32),
        message_id="m-1",
        sender=Sender.CITIZEN,
    )

    data = entry.to_dict()

    assert data["messageId"] == "m-1"
    assert data["audio_bytes"] == 32
    assert "audio_payload" not in data
