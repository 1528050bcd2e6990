try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import timedelta

from hscode_agent.core.scheduling import ManualClock, TaskScheduler


def test_run_due_executes_in_due_order():
    clock = ManualClock()
    scheduler = TaskScheduler(clock)
    ran: list[str] = []
    scheduler.schedule("late", clock.now() + timedelta(minutes=5), lambda: ran.append("late"))
    scheduler.schedule("early", clock.now() + timedelta(minutes=1), lambda: ran.append("early"))
    scheduler.schedule("future", clock.now() + timedelta(hours=1), lambda: ran.append("future"))

    clock.advance(timedelta(minutes=10))
    executed = scheduler.run_due()

    assert executed == ["early", "late"]
    assert ran == ["early", "late"]
    assert scheduler.is_scheduled("future")
    assert len(scheduler) == 1


def test_rescheduling_replaces_previous_task():
    clock = ManualClock()
    scheduler = TaskScheduler(clock)
    ran: list[str] = []
    scheduler.schedule("key", clock.now(), lambda: ran.append("first"))
    scheduler.schedule("key", clock.now() + timedelta(minutes=1), lambda: ran.append("second"))

    assert scheduler.run_due() == []
    clock.advance(timedelta(minutes=1))
    assert scheduler.run_due() == ["key"]
    assert ran == ["second"]


def test_cancelled_task_never_runs():
    clock = ManualClock()
    scheduler = TaskScheduler(clock)
    ran: list[str] = []
    scheduler.schedule("key", clock.now(), lambda: ran.append("key"))

    assert scheduler.cancel("key") is True
    assert scheduler.cancel("key") is False
    assert scheduler.run_due() == []
    assert ran == []


def test_task_cancelled_by_earlier_task_is_skipped():
    clock = ManualClock()
    scheduler = TaskScheduler(clock)
    ran: list[str] = []
    scheduler.schedule("first", clock.now(), lambda: scheduler.cancel("second"))
    scheduler.schedule(
        "second", clock.now() + timedelta(seconds=1), lambda: ran.append("second")
    )

    clock.advance(timedelta(seconds=5))

    assert scheduler.run_due() == ["first"]
    assert ran == []


def test_failing_task_does_not_stop_the_others(caplog):
    clock = ManualClock()
    scheduler = TaskScheduler(clock)
    ran: list[str] = []

    def explode() -> None:
        raise RuntimeError("boom")

    scheduler.schedule("bad", clock.now(), explode)
    scheduler.schedule("good", clock.now() + timedelta(seconds=1), lambda: ran.append("good"))
    clock.advance(timedelta(seconds=1))

    assert scheduler.run_due() == ["good"]
    assert ran == ["good"]
    assert "Scheduled task 'bad' failed" in caplog.text
