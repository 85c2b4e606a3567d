import threading

import pytest

from sparring.config import EngineSettings
from sparring.engine import ControlAction, MatchStatus, RoundStatus, RoundTimer, ThreadingScheduler, TimerFrame


def test_round_timer_pause_and_resume_keep_remaining(clock):
    timer = RoundTimer(120, clock)
    timer.start()
    clock.advance(30)
    timer.pause()

    assert timer.remaining() == 90
    clock.advance(500)
    assert timer.remaining() == 90
    assert not timer.running

    timer.start()
    clock.advance(15)
    assert timer.remaining() == 75
    assert timer.elapsed() == 45


def test_round_timer_bottoms_out_at_zero(clock):
    timer = RoundTimer(10, clock)
    timer.start()
    clock.advance(25)

    assert timer.remaining() == 0
    assert timer.expired()


def test_restored_timer_starts_paused_with_remaining_time(clock):
    timer = RoundTimer.restored(120, 42.5, clock)

    assert not timer.running
    assert timer.remaining() == 42.5
    assert timer.frame().remaining_seconds(clock()) == 43


def test_timer_frame_is_a_detached_view(clock):
    timer = RoundTimer(60, clock)
    timer.start()
    frame = timer.frame()
    timer.pause()

    clock.advance(10)
    assert isinstance(frame, TimerFrame)
    assert frame.remaining(clock()) == 50
    assert timer.remaining() == 60


def test_round_timer_requires_positive_duration(clock):
    with pytest.raises(ValueError):
        RoundTimer(0, clock)


def test_expiry_ends_round_exactly_once(make_machine, scheduler):
    machine = make_machine()
    machine.start()

    scheduler.advance(120)

    assert machine.match.current_round == 2
    first, second = machine.rounds()
    assert first.status is RoundStatus.ENDED
    assert first.actual_duration_seconds == 120
    assert second.status is RoundStatus.IN_PROGRESS
    assert machine.last_outcome.action is ControlAction.END_ROUND
    assert len(scheduler.pending()) == 1


def test_expiry_runs_match_to_completion(make_machine, scheduler):
    machine = make_machine(total_rounds=2, allow_extra_round=False)
    machine.start()

    scheduler.advance(500)

    assert machine.status is MatchStatus.ENDED
    assert len(machine.rounds()) == 2
    assert scheduler.pending() == []


def test_paused_round_does_not_expire(make_machine, scheduler):
    machine = make_machine()
    machine.start()
    scheduler.advance(100)
    machine.pause()

    scheduler.advance(300)
    assert machine.status is MatchStatus.PAUSED
    assert machine.scoreboard().remaining_seconds == 20

    machine.resume()
    scheduler.advance(19)
    assert machine.match.current_round == 1
    scheduler.advance(1)
    assert machine.match.current_round == 2


def test_stale_timer_callback_is_ignored(make_machine, scheduler):
    machine = make_machine()
    machine.start()
    [stale] = scheduler.pending()

    machine.end_round()
    scheduler.advance(120)
    stale.callback()

    assert machine.match.current_round == 3
    assert len(machine.rounds()) == 3


def test_early_timer_wake_saves_snapshot_and_rearms(make_machine, scheduler, clock, gateway):
    machine = make_machine()
    machine.start()
    [call] = scheduler.pending()

    clock.advance(60)
    call.callback()

    assert machine.status is MatchStatus.IN_PROGRESS
    assert machine.match.current_round == 1
    [rearmed] = scheduler.pending()
    assert rearmed is not call
    assert rearmed.due == clock() + 5
    assert gateway.snapshots[machine.match_id].remaining_seconds == 60


def test_timer_without_snapshot_interval_sleeps_until_expiry(make_machine, scheduler, clock):
    machine = make_machine(engine_settings=EngineSettings(snapshot_interval_seconds=None))
    machine.start()

    [call] = scheduler.pending()
    assert call.due == clock() + 120


def test_threading_scheduler_runs_callback():
    fired = threading.Event()

    ThreadingScheduler().schedule(0.01, fired.set)

    assert fired.wait(2)


def test_threading_scheduler_call_can_be_cancelled():
    fired = threading.Event()

    call = ThreadingScheduler().schedule(5, fired.set)
    call.cancel()

    assert not fired.wait(0.05)
