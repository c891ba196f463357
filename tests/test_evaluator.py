import os
import sys
import unittest
from datetime import UTC, datetime, timedelta


sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))


from sae.health.evaluator import evaluate, evaluate_state  # noqa: E402
from sae.models import SensorState, Status, Thresholds  # noqa: E402


NOW = datetime(2026, 2, 10, 12, 0, tzinfo=UTC)
FRESH = NOW - timedelta(minutes=1)


class TestEvaluateScenarios(unittest.TestCase):
    """min=32, max=40, warning=10% -> band=0.8，ok 区间为 [32.8, 39.2]。"""

    def test_value_inside_band_is_ok(self) -> None:
        self.assertEqual(evaluate(36, 32, 40, 10, FRESH, NOW), Status.OK)

    def test_value_in_upper_band_is_warning(self) -> None:
        self.assertEqual(evaluate(39.5, 32, 40, 10, FRESH, NOW), Status.WARNING)

    def test_value_above_max_is_alert(self) -> None:
        self.assertEqual(evaluate(45, 32, 40, 10, FRESH, NOW), Status.ALERT)

    def test_stale_reading_is_offline_regardless_of_value(self) -> None:
        stale = NOW - timedelta(minutes=40)
        for value in (36, 39.5, 45, -100, None):
            self.assertEqual(evaluate(value, 32, 40, 10, stale, NOW), Status.OFFLINE)
        self.assertEqual(evaluate(36, None, None, None, stale, NOW), Status.OFFLINE)


class TestEvaluateProperties(unittest.TestCase):
    def test_ok_for_whole_inner_range(self) -> None:
        lo, hi, pct = 32.0, 40.0, 10.0
        band = (hi - lo) * pct / 100
        self.assertEqual(evaluate(lo + band, lo, hi, pct, FRESH, NOW), Status.OK)
        self.assertEqual(evaluate(hi - band, lo, hi, pct, FRESH, NOW), Status.OK)
        steps = 50
        for i in range(1, steps):
            v = (lo + band) + (hi - lo - 2 * band) * i / steps
            self.assertEqual(evaluate(v, lo, hi, pct, FRESH, NOW), Status.OK, v)

    def test_out_of_range_is_alert_even_near_offline_boundary(self) -> None:
        edge = NOW - timedelta(minutes=30)
        self.assertEqual(evaluate(31.9, 32, 40, 10, edge, NOW), Status.ALERT)
        self.assertEqual(evaluate(40.1, 32, 40, None, edge, NOW), Status.ALERT)

    def test_lower_band_is_warning(self) -> None:
        self.assertEqual(evaluate(32.5, 32, 40, 10, FRESH, NOW), Status.WARNING)
        self.assertEqual(evaluate(32, 32, 40, 10, FRESH, NOW), Status.WARNING)

    def test_limits_themselves_are_not_alert(self) -> None:
        self.assertEqual(evaluate(32, 32, 40, None, FRESH, NOW), Status.OK)
        self.assertEqual(evaluate(40, 32, 40, None, FRESH, NOW), Status.OK)

    def test_without_warning_percent_there_is_no_warning_tier(self) -> None:
        self.assertEqual(evaluate(39.9, 32, 40, None, FRESH, NOW), Status.OK)

    def test_missing_limit_is_unknown(self) -> None:
        self.assertEqual(evaluate(36, None, 40, 10, FRESH, NOW), Status.UNKNOWN)
        self.assertEqual(evaluate(36, 32, None, 10, FRESH, NOW), Status.UNKNOWN)
        self.assertEqual(evaluate(100, None, None, None, FRESH, NOW), Status.UNKNOWN)

    def test_swapped_limits_always_alert(self) -> None:
        self.assertEqual(evaluate(36.0, 40.0, 32.0, None, FRESH, NOW), Status.ALERT)
        self.assertEqual(evaluate(36.0, 40.0, 32.0, 10, FRESH, NOW), Status.ALERT)
        self.assertEqual(evaluate(40.0, 40.0, 32.0, None, FRESH, NOW), Status.ALERT)

    def test_no_value_ever_received(self) -> None:
        self.assertEqual(evaluate(None, 32, 40, 10, None, NOW), Status.OFFLINE)
        self.assertEqual(evaluate(None, 32, 40, 10, FRESH, NOW), Status.UNKNOWN)

    def test_offline_threshold_is_exclusive_and_configurable(self) -> None:
        self.assertEqual(evaluate(36, 32, 40, 10, NOW - timedelta(minutes=30), NOW), Status.OK)
        self.assertEqual(
            evaluate(36, 32, 40, 10, NOW - timedelta(minutes=30, seconds=1), NOW),
            Status.OFFLINE,
        )
        self.assertEqual(
            evaluate(36, 32, 40, 10, NOW - timedelta(minutes=6), NOW, offline_after=timedelta(minutes=5)),
            Status.OFFLINE,
        )

    def test_naive_timestamps_are_treated_as_utc(self) -> None:
        naive_seen = datetime(2026, 2, 10, 11, 59)
        self.assertEqual(evaluate(36, 32, 40, 10, naive_seen, NOW), Status.OK)

    def test_evaluate_state_uses_state_fields(self) -> None:
        state = SensorState(
            sensor_id="s1",
            name="Freezer",
            unit="°F",
            latest_value=45.0,
            last_seen_at=FRESH,
            thresholds=Thresholds(min_limit=32, max_limit=40, warning_percent=10),
            status=Status.OK,
            status_updated_at=None,
        )
        self.assertEqual(evaluate_state(state, NOW), Status.ALERT)
