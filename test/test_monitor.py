import math

from csq.engine.monitor import DivergenceMonitor


def test_consecutive_strikes_required():
    mon = DivergenceMonitor(factor=10.0, patience=2)
    assert [mon.update(v) for v in (1.0, 20.0, 30.0)] == [False, False, True]
    assert "above" in mon.reason


def test_recovery_resets_strikes():
    mon = DivergenceMonitor(factor=10.0, patience=2)
    assert [mon.update(v) for v in (1.0, 20.0, 5.0, 20.0)] == [False] * 4
    assert mon.strikes == 1


def test_baseline_is_first_positive_value():
    mon = DivergenceMonitor(factor=10.0, patience=1)
    assert not mon.update(0.0)
    assert mon.baseline is None
    assert not mon.update(2.0)
    assert mon.baseline == 2.0
    assert mon.update(25.0)


def test_non_finite_value_diverges_immediately():
    mon = DivergenceMonitor()
    assert mon.update(math.nan)
    assert "non-finite" in mon.reason
    assert math.isnan(mon.value)


def test_value_holds_last_monitored_error():
    mon = DivergenceMonitor(factor=10.0, patience=2)
    for v in (1.0, 20.0, 30.0):
        mon.update(v)
    assert mon.value == 30.0
