"""Tests for the event subscription worker."""

import threading

from perfmon_agent.collector.base import CollectionError, SourceUnavailable, SubscriptionError
from perfmon_agent.collector.event import EventWorker, RetryPolicy

from conftest import event_spec, wait_for

FAST_RETRY = RetryPolicy(initial_seconds=0.01, factor=2.0, maximum_seconds=0.05, attempts=3)


def _start(worker):
    thread = threading.Thread(target=worker.run, daemon=True)
    thread.start()
    return thread


def test_retry_policy_backoff_is_capped():
    policy = RetryPolicy(initial_seconds=1.0, factor=2.0, maximum_seconds=5.0)
    assert [policy.delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_events_emitted_in_arrival_order(source, stream, emitter):
    spec = event_spec("proc-start")
    worker = EventWorker(spec, source, emitter, poll_timeout=0.05)
    thread = _start(worker)
    try:
        assert wait_for(lambda: source.subscriptions)
        events = source.events["proc-start"]
        for value in ("first", "second", "third"):
            events.put(value)
        assert wait_for(lambda: len(stream.records()) == 3)
    finally:
        worker.stop()
        thread.join(timeout=2)

    values = [r["metrics"][0]["value"] for r in stream.records()]
    assert values == ["first", "second", "third"]
    assert stream.records()[0]["metrics"][0]["event_type"] == "WMIEvent"
    assert source.subscriptions[0].closed


def test_bad_event_is_skipped(source, stream, emitter, caplog):
    worker = EventWorker(event_spec("e"), source, emitter, poll_timeout=0.05)
    thread = _start(worker)
    try:
        assert wait_for(lambda: source.subscriptions)
        source.events["e"].put(CollectionError("property read failed"))
        source.events["e"].put(42.0)
        assert wait_for(lambda: len(stream.records()) == 1)
    finally:
        worker.stop()
        thread.join(timeout=2)
    assert stream.records()[0]["metrics"][0]["value"] == 42.0
    assert "property read failed" in caplog.text


def test_subscription_retried_until_it_succeeds(source, stream, emitter, caplog):
    source.subscribe_errors["e"] = [SubscriptionError("namespace busy"), SubscriptionError("still busy")]
    worker = EventWorker(event_spec("e"), source, emitter, retry=FAST_RETRY, poll_timeout=0.05)
    thread = _start(worker)
    try:
        assert wait_for(lambda: source.subscriptions)
        source.events["e"].put(1.0)
        assert wait_for(lambda: len(stream.records()) == 1)
    finally:
        worker.stop()
        thread.join(timeout=2)
    assert caplog.text.count("retrying in") == 2


def test_gives_up_after_last_attempt(source, emitter, caplog):
    source.subscribe_errors["e"] = [SubscriptionError("malformed query")] * 5
    worker = EventWorker(event_spec("e"), source, emitter, retry=FAST_RETRY)
    thread = _start(worker)
    thread.join(timeout=2)
    assert not thread.is_alive()
    assert source.subscriptions == []
    assert "giving up" in caplog.text


def test_source_unavailable_ends_the_worker(source, emitter, caplog):
    source.subscribe_errors["e"] = [SourceUnavailable("no WMI here")]
    worker = EventWorker(event_spec("e"), source, emitter, retry=FAST_RETRY)
    thread = _start(worker)
    thread.join(timeout=2)
    assert not thread.is_alive()
    assert "event source unavailable" in caplog.text


def test_dropped_subscription_is_reestablished(source, stream, emitter):
    worker = EventWorker(event_spec("e"), source, emitter, retry=FAST_RETRY, poll_timeout=0.05)
    thread = _start(worker)
    try:
        assert wait_for(lambda: source.subscriptions)
        source.events["e"].put(SubscriptionError("connection reset"))
        assert wait_for(lambda: len(source.subscriptions) == 2)
        source.events["e"].put(7.0)
        assert wait_for(lambda: len(stream.records()) == 1)
    finally:
        worker.stop()
        thread.join(timeout=2)
    assert source.subscriptions[0].closed
