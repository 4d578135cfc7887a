import pytest

from src.engine.ema import compute_ema_series
from src.engine.errors import InsufficientDataError
from src.engine.rsi import compute_rsi, compute_rsi_series

CLOSES = [100, 101, 103, 99, 105, 110, 108, 120]


def test_ema_seeded_with_first_close_and_aligned():
    ema = compute_ema_series(CLOSES, 2)
    assert len(ema) == len(CLOSES)
    assert ema[0] == 100
    assert ema[1] == pytest.approx(100.6667, abs=1e-4)
    assert ema[-1] == pytest.approx(115.9759, abs=1e-3)


def test_ema_slow_values():
    ema = compute_ema_series(CLOSES, 4)
    assert ema[3] == pytest.approx(100.464, abs=1e-3)
    assert ema[-1] == pytest.approx(111.852, abs=1e-3)


def test_ema_is_deterministic():
    assert compute_ema_series(CLOSES, 9) == compute_ema_series(list(CLOSES), 9)


def test_ema_single_and_empty():
    assert compute_ema_series([42.0], 9) == [42.0]
    with pytest.raises(InsufficientDataError):
        compute_ema_series([], 9)


def test_ema_rejects_bad_period():
    with pytest.raises(ValueError):
        compute_ema_series(CLOSES, 0)


def test_rsi_sentinel_and_values():
    rsi = compute_rsi_series(CLOSES, 14)
    assert len(rsi) == len(CLOSES)
    assert rsi[0] == 50.0
    assert rsi[1] == 100.0
    assert rsi[3] == pytest.approx(42.857, abs=1e-3)
    assert rsi[4] == pytest.approx(69.231, abs=1e-3)
    # 14 up / 6 down over the window is exactly 70
    assert rsi[6] == 70.0
    assert rsi[7] == pytest.approx(81.25)


def test_rsi_wilder_smoothing_starts_from_seed_window():
    # seed over 2 changes: avg gain 0.5, avg loss 0.5; then +2 smooths to 1.25 / 0.25
    rsi = compute_rsi_series([10, 11, 10, 12], 2)
    assert rsi[:3] == [50.0, 100.0, 50.0]
    assert rsi[3] == pytest.approx(83.333, abs=1e-3)


def test_rsi_bounds_over_long_series():
    closes = [100 + ((i * 37) % 23) - 11 for i in range(300)]
    rsi = compute_rsi_series(closes, 14)
    assert len(rsi) == 300
    assert all(0.0 <= v <= 100.0 for v in rsi)


def test_rsi_flat_and_rising():
    assert compute_rsi_series([5, 5, 5, 5], 3) == [50.0, 50.0, 50.0, 50.0]
    assert compute_rsi([1, 2, 3, 4, 5, 6], 3) == 100.0


def test_rsi_single_and_empty():
    assert compute_rsi_series([10.0]) == [50.0]
    with pytest.raises(InsufficientDataError):
        compute_rsi_series([])
    with pytest.raises(ValueError):
        compute_rsi_series(CLOSES, 0)
