from app.services.timer.clock import (
    SyncState,
    anchor_sample,
    compute_elapsed,
    estimate_server_time,
    pause_duration_ms,
    paused_seconds,
)

T0 = 1_760_000_000_000


def test_estimate_uses_monotonic_delta_since_last_sample():
    state = SyncState()
    anchor_sample(state, server_ms=T0, client_monotonic_ms=100.0, client_wall_ms=T0 - 5_000)

    # Wall clock jumping around does not matter once anchored
    assert estimate_server_time(state, client_monotonic_ms=3_100.0, client_wall_ms=0) == T0 + 3_000


def test_estimate_falls_back_to_wall_clock_plus_offset():
    state = SyncState(offset_ms=1_500)

    assert estimate_server_time(state, client_monotonic_ms=0, client_wall_ms=T0) == T0 + 1_500


def test_anchor_records_offset_against_wall_clock():
    state = SyncState()
    anchor_sample(state, server_ms=T0, client_monotonic_ms=0, client_wall_ms=T0 - 2_000)

    assert state.offset_ms == 2_000
    assert state.has_anchor


def test_compute_elapsed_subtracts_paused_time():
    state = SyncState(start_ms=T0, paused_ms=20_000)

    assert compute_elapsed(state, T0 + 100_000) == 80


def test_sub_second_pauses_are_not_lost():
    # Nine 0.9 s pauses over 18 s
    state = SyncState(start_ms=T0, paused_ms=9 * 900)

    assert compute_elapsed(state, T0 + 18_000) == 9
    assert paused_seconds(state) == 8


def test_compute_elapsed_is_clamped():
    state = SyncState(start_ms=T0, paused_ms=50_000)
    assert compute_elapsed(state, T0 + 10_000) == 0

    state = SyncState(start_ms=T0)
    assert compute_elapsed(state, T0 + 2 * 86_400_000) == 86_400


def test_compute_elapsed_without_start_is_zero():
    assert compute_elapsed(SyncState(), T0) == 0


def test_pause_duration_keeps_milliseconds():
    assert pause_duration_ms(T0, T0 + 2_999) == 2_999
    assert pause_duration_ms(None, T0) == 0
    assert pause_duration_ms(T0, T0 - 1_000) == 0


def test_clear_run_keeps_clock_anchor():
    state = SyncState(start_ms=T0, paused_ms=4_000, pause_start_ms=T0 + 1)
    anchor_sample(state, T0, 10.0, T0)

    state.clear_run()

    assert state.start_ms is None and state.paused_ms == 0 and state.pause_start_ms is None
    assert state.has_anchor

    state.clear()
    assert not state.has_anchor and state.offset_ms == 0
