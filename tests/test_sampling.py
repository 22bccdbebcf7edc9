"""Deterministic weighted sampling."""
import pytest

from expansion.config import ConfigError
from expansion.sampling import WeightedSampler, sampling_weight
from expansion.utils import LinearCongruentialGenerator
from conftest import make_candidate


def pool(n=40):
    types = ['city', 'town', 'village']
    return [make_candidate(f"p{i:02d}", population=2000 + 7919 * i, settlement_type=types[i % 3],
                           total=(i % 7) / 7.0)
            for i in range(n)]


class TestSamplingWeight:

    def test_weight_formula(self):
        c = make_candidate('x', population=100000, settlement_type='city', total=0.5)
        # log10(100) * 1.2 * (0.5 + 0.25)
        assert sampling_weight(c) == pytest.approx(1.8)

    def test_weight_floor(self):
        tiny = make_candidate('x', population=500, settlement_type='village', total=0.0)
        assert sampling_weight(tiny) == 0.1

    def test_negative_total_uses_half_multiplier(self):
        c = make_candidate('x', population=10000, settlement_type='town', total=-0.3)
        assert sampling_weight(c) == pytest.approx(0.5)


class TestLinearCongruentialGenerator:

    def test_sequence_is_reproducible(self):
        a = LinearCongruentialGenerator(42)
        b = LinearCongruentialGenerator(42)
        assert [a.random() for _ in range(5)] == [b.random() for _ in range(5)]

    def test_first_value(self):
        # (42 * 1664525 + 1013904223) mod 2^32
        assert LinearCongruentialGenerator(42).random() == pytest.approx(1083814273 / 2 ** 32)

    def test_values_in_unit_interval(self):
        rng = LinearCongruentialGenerator(7)
        assert all(0.0 <= rng.random() < 1.0 for _ in range(1000))


class TestWeightedSampler:

    def test_missing_seed_is_config_error(self):
        with pytest.raises(ConfigError):
            WeightedSampler(None)

    def test_small_pool_returned_whole(self):
        candidates = pool(5)
        result = WeightedSampler(1).sample(candidates, 10)
        assert sorted(c.id for c in result) == sorted(c.id for c in candidates)
        assert all(c.sampling_weight is not None for c in result)

    def test_exact_target_size(self):
        result = WeightedSampler(42).sample(pool(40), 15)
        assert len(result) == 15
        assert len({c.id for c in result}) == 15

    def test_same_seed_same_output(self):
        first = [c.id for c in WeightedSampler(42).sample(pool(40), 15)]
        second = [c.id for c in WeightedSampler(42).sample(pool(40), 15)]
        assert first == second

    def test_input_order_independent(self):
        forward = [c.id for c in WeightedSampler(9).sample(pool(40), 12)]
        backward = [c.id for c in WeightedSampler(9).sample(list(reversed(pool(40))), 12)]
        assert forward == backward

    def test_output_sorted_by_score(self):
        result = WeightedSampler(5).sample(pool(40), 20)
        keys = [(-c.total, c.id) for c in result]
        assert keys == sorted(keys)

    def test_dominant_weight_forces_backfill(self):
        candidates = [make_candidate('big', population=10 ** 9, settlement_type='city', total=1.0)]
        candidates += [make_candidate(f"v{i}", population=500, settlement_type='village', total=0.0)
                       for i in range(5)]
        result = WeightedSampler(3).sample(candidates, 4)
        assert len(result) == 4
        assert 'big' in {c.id for c in result}

    def test_empty_and_zero_target(self):
        sampler = WeightedSampler(1)
        assert sampler.sample([], 5) == []
        assert sampler.sample(pool(3), 0) == []
