import sys
import unittest
from datetime import datetime, timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / 'backend'))

from workers_api.core.errors import ValidationError  # noqa: E402
from workers_api.schemas.eligibility import EligibilityRecord  # noqa: E402
from workers_api.services.eligibility import evaluate  # noqa: E402

NOW = datetime(2026, 3, 10, 12, 0, 0)


def _rec(id, user_id='u1', verified=True, is_valid=True, last_update=None, status=None, skip_until=None):
    return EligibilityRecord(
        id=id,
        user_id=user_id,
        verified=verified,
        is_valid=is_valid,
        last_update=last_update,
        last_update_status=status,
        skip_until=skip_until,
    )


def _population():
    return [
        _rec(1, 'u1'),
        _rec(2, 'u2', last_update=NOW - timedelta(hours=30)),
        _rec(3, 'u2', last_update=NOW - timedelta(hours=2)),
        _rec(4, 'u1', verified=False),
        _rec(5, 'u2', skip_until=NOW + timedelta(hours=1)),
        _rec(6, 'u1', last_update=NOW - timedelta(hours=48), status='error'),
    ]


class EligibilityRulesTests(unittest.TestCase):
    def test_stats_over_mixed_population(self):
        result = evaluate(_population(), 24, NOW)
        stats = result.stats
        self.assertEqual(stats.total, 6)
        self.assertEqual(stats.eligible, 3)
        self.assertEqual(stats.not_eligible, 3)
        self.assertEqual(stats.updated_today, 1)
        self.assertEqual(stats.eligible_with_errors, 1)
        self.assertEqual(stats.eligible_updated, 0)
        self.assertEqual(stats.eligible_pending, 3)
        self.assertEqual(stats.coverage_percent, 17)

    def test_queue_is_oldest_first_with_never_updated_leading(self):
        result = evaluate(_population(), 24, NOW)
        self.assertEqual(result.queue, [1, 6, 2])

    def test_zero_threshold_counts_records_updated_today(self):
        result = evaluate(_population(), 0, NOW)
        self.assertEqual(result.stats.eligible, 4)
        self.assertEqual(result.stats.eligible_updated, 1)
        self.assertEqual(result.stats.eligible_pending, 3)

    def test_skip_until_equal_to_now_is_eligible(self):
        result = evaluate([_rec(1, skip_until=NOW)], 24, NOW)
        self.assertEqual(result.stats.eligible, 1)

    def test_threshold_boundary_is_inclusive(self):
        result = evaluate([_rec(1, last_update=NOW - timedelta(hours=24))], 24, NOW)
        self.assertEqual(result.queue, [1])

    def test_empty_population_reports_zero_coverage(self):
        result = evaluate([], 24, NOW)
        self.assertEqual(result.stats.total, 0)
        self.assertEqual(result.stats.coverage_percent, 0)
        self.assertEqual(result.queue, [])

    def test_coverage_rounds_halves_up(self):
        records = [_rec(1, last_update=NOW - timedelta(hours=1))] + [_rec(i, last_update=NOW - timedelta(days=3)) for i in range(2, 9)]
        self.assertEqual(evaluate(records, 24, NOW).stats.coverage_percent, 13)

    def test_full_coverage(self):
        records = [_rec(i, last_update=NOW - timedelta(minutes=i)) for i in range(1, 4)]
        self.assertEqual(evaluate(records, 24, NOW).stats.coverage_percent, 100)

    def test_test_mode_restricts_eligible_but_not_total(self):
        result = evaluate(_population(), 24, NOW, test_user_ids={'u1'})
        self.assertTrue(result.test_mode)
        self.assertEqual(result.stats.total, 6)
        self.assertEqual(result.stats.updated_today, 1)
        self.assertEqual(result.stats.eligible, 2)
        self.assertEqual(result.stats.not_eligible, 4)
        self.assertEqual(result.queue, [1, 6])

    def test_negative_threshold_is_rejected(self):
        with self.assertRaises(ValidationError):
            evaluate(_population(), -1, NOW)

    def test_stats_serialize_with_camel_case_keys(self):
        dumped = evaluate(_population(), 24, NOW).stats.model_dump(by_alias=True)
        self.assertIn('coveragePercent', dumped)
        self.assertIn('eligibleWithErrors', dumped)


if __name__ == '__main__':
    unittest.main()
