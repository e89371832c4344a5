"""
Tests for the cooperative scheduler.
"""

import logging

import pytest


def test_call_later_runs_once_at_deadline(scheduler, clock):
    calls = []
    scheduler.call_later(0.5, lambda: calls.append(clock()))
    assert scheduler.run_due() == 0
    clock.advance(0.5)
    assert scheduler.run_due() == 1
    clock.advance(10)
    scheduler.run_due()
    assert calls == [1000.5]


def test_call_every_repeats_until_cancelled(scheduler, clock):
    calls = []
    handle = scheduler.call_every(1.0, lambda: calls.append(clock()))
    for _ in range(3):
        clock.advance(1.0)
        scheduler.run_due()
    handle.cancel()
    clock.advance(5.0)
    scheduler.run_due()
    assert len(calls) == 3
    assert scheduler.pending() == 0


def test_periodic_timer_can_cancel_itself(scheduler, clock):
    calls = []

    def tick():
        calls.append(1)
        handle.cancel()

    handle = scheduler.call_every(1.0, tick)
    clock.advance(1.0)
    scheduler.run_due()
    clock.advance(1.0)
    scheduler.run_due()
    assert calls == [1]


def test_periodic_timer_does_not_burst_after_stall(scheduler, clock):
    calls = []
    scheduler.call_every(1.0, lambda: calls.append(1))
    clock.advance(10.0)
    scheduler.run_due()
    assert calls == [1]


def test_cancelled_timer_does_not_run(scheduler, clock):
    calls = []
    handle = scheduler.call_later(1.0, lambda: calls.append(1))
    handle.cancel()
    assert not handle.active
    clock.advance(2.0)
    assert scheduler.run_due() == 0
    assert calls == []


def test_callback_exception_is_logged_not_raised(scheduler, clock, caplog):
    calls = []

    def boom():
        raise RuntimeError("boom")

    scheduler.call_later(1.0, boom, name="boom")
    scheduler.call_later(1.0, lambda: calls.append(1))
    clock.advance(1.0)
    with caplog.at_level(logging.ERROR):
        assert scheduler.run_due() == 2
    assert calls == [1]
    assert "boom" in caplog.text


def test_next_deadline_skips_cancelled(scheduler):
    first = scheduler.call_later(1.0, lambda: None)
    scheduler.call_later(3.0, lambda: None)
    first.cancel()
    assert scheduler.next_deadline() == 1003.0


def test_call_every_requires_positive_interval(scheduler):
    with pytest.raises(ValueError):
        scheduler.call_every(0, lambda: None)


def test_cancel_all(scheduler, clock):
    calls = []
    scheduler.call_later(1.0, lambda: calls.append(1))
    scheduler.call_every(1.0, lambda: calls.append(2))
    scheduler.cancel_all()
    clock.advance(5.0)
    scheduler.run_due()
    assert calls == []
    assert scheduler.next_deadline() is None
