"""Tests for the exponential backoff schedule."""

import pytest

from subscription_worker.queues.backoff import ExponentialBackoff


class TestExponentialBackoff:
    """Tests for ExponentialBackoff delay calculation."""

    def test_delays_double_without_jitter(self):
        backoff = ExponentialBackoff(base_delay=2.0, max_delay=120.0)
        assert [backoff.next_delay() for _ in range(4)] == [2.0, 4.0, 8.0, 16.0]

    def test_caps_at_max_delay(self):
        backoff = ExponentialBackoff(base_delay=10.0, max_delay=30.0)
        assert backoff.delay_for(4) == 30.0

    def test_jitter_is_added_not_scaled(self):
        backoff = ExponentialBackoff(base_delay=4.0, max_delay=100.0, jitter=1.0)
        for _ in range(50):
            assert 8.0 <= backoff.delay_for(1) <= 9.0

    def test_delay_for_does_not_count_attempts(self):
        backoff = ExponentialBackoff()
        backoff.delay_for(3)
        assert backoff.attempt == 0

    def test_attempt_counter_and_reset(self):
        backoff = ExponentialBackoff(base_delay=1.0)
        backoff.next_delay()
        backoff.next_delay()
        assert backoff.attempt == 2

        backoff.reset()

        assert backoff.attempt == 0
        assert backoff.next_delay() == 1.0

    def test_exhausted_after_budget(self):
        backoff = ExponentialBackoff(max_attempts=2)
        assert not backoff.exhausted
        backoff.next_delay()
        backoff.next_delay()
        assert backoff.exhausted

        backoff.reset()

        assert not backoff.exhausted

    def test_unbounded_never_exhausted(self):
        backoff = ExponentialBackoff()
        for _ in range(20):
            backoff.next_delay()
        assert not backoff.exhausted

    @pytest.mark.parametrize(
        "attempts,expected",
        [(0, False), (3, False), (5, False), (6, True)],
    )
    def test_reaches_ceiling(self, attempts, expected):
        # 1, 2, 4, 8, 16 (+1 jitter) fit under 20; 32 does not
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=20.0, jitter=1.0)
        assert backoff.reaches_ceiling(attempts) is expected

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"base_delay": -1.0},
            {"max_delay": -1.0},
            {"jitter": -0.5},
            {"multiplier": 0.5},
            {"max_attempts": -1},
        ],
    )
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            ExponentialBackoff(**kwargs)
