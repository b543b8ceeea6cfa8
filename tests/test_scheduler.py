import threading

from claude_pipeline.scheduler import ResumeScheduler


def test_callback_fires_after_delay():
    scheduler = ResumeScheduler()
    fired = threading.Event()

    scheduler.schedule("p1", 0.01, fired.set)

    assert scheduler.wait(timeout=5) is True
    assert fired.is_set()
    assert scheduler.pending() == []


def test_cancelled_callback_never_fires():
    scheduler = ResumeScheduler()
    fired = threading.Event()

    scheduler.schedule("p1", 60, fired.set)
    assert scheduler.pending() == ["p1"]
    assert scheduler.cancel("p1") is True
    assert scheduler.cancel("p1") is False

    assert scheduler.wait(timeout=5) is True
    assert not fired.is_set()


def test_rescheduling_a_key_replaces_the_timer():
    scheduler = ResumeScheduler()
    calls = []

    scheduler.schedule("p1", 60, lambda: calls.append("old"))
    scheduler.schedule("p1", 0, lambda: calls.append("new"))
    scheduler.wait(timeout=5)

    assert calls == ["new"]


def test_wait_covers_callbacks_scheduled_by_callbacks():
    scheduler = ResumeScheduler()
    calls = []

    def first():
        calls.append("first")
        scheduler.schedule("p2", 0, lambda: calls.append("second"))

    scheduler.schedule("p1", 0, first)

    assert scheduler.wait(timeout=5) is True
    assert calls == ["first", "second"]


def test_cancel_all_clears_pending():
    scheduler = ResumeScheduler()
    scheduler.schedule("a", 60, lambda: None)
    scheduler.schedule("b", 60, lambda: None)

    scheduler.cancel_all()

    assert scheduler.pending() == []
    assert scheduler.wait(timeout=5) is True
