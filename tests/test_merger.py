"""Source mixing and drive-time suppression."""
import numpy as np
import pytest

from expansion.merger import CandidateMerger, DriveTimeSuppressor
from expansion.utils import drive_minutes, haversine_m
from conftest import make_candidate


def dense_candidates(n=80, seed=11):
    rng = np.random.RandomState(seed)
    return [make_candidate(f"d{i:02d}", lat=52.3 + rng.uniform(0, 0.4), lng=13.0 + rng.uniform(0, 0.8),
                           total=round(float(rng.uniform(0, 1)), 3))
            for i in range(n)]


class TestMixSources:

    def test_default_split(self):
        settlement = [make_candidate(f"s{i}", total=0.5) for i in range(10)]
        grid = [make_candidate(f"g{i}", total=0.9, grid=True) for i in range(10)]
        merged = CandidateMerger.mix_sources(settlement, grid, 10)
        assert sum(1 for c in merged if c.source == 'settlement') == 8
        assert sum(1 for c in merged if c.source == 'h3_explore') == 2

    def test_missing_grid_share_goes_to_settlements(self):
        settlement = [make_candidate(f"s{i}") for i in range(10)]
        assert len(CandidateMerger.mix_sources(settlement, [], 10)) == 10

    def test_missing_settlement_share_goes_to_grid(self):
        settlement = [make_candidate(f"s{i}") for i in range(3)]
        grid = [make_candidate(f"g{i}", grid=True) for i in range(10)]
        merged = CandidateMerger.mix_sources(settlement, grid, 10)
        assert sum(1 for c in merged if c.source == 'settlement') == 3
        assert sum(1 for c in merged if c.source == 'h3_explore') == 7

    def test_custom_ratio_keeps_best_of_each(self):
        settlement = [make_candidate(f"s{i}", total=0.1 * i) for i in range(10)]
        grid = [make_candidate(f"g{i}", total=0.1 * i, grid=True) for i in range(10)]
        merged = CandidateMerger.mix_sources(settlement, grid, 4, {'settlement': 0.5, 'h3_explore': 0.5})
        assert sorted(c.id for c in merged) == ['g8', 'g9', 's8', 's9']


class TestDriveTimeSuppressor:

    def test_threshold_distance(self):
        assert DriveTimeSuppressor(10, 50).max_distance_m == pytest.approx(8333.333)

    def test_close_pair_suppressed(self):
        a = make_candidate('a', lat=52.52, lng=13.405, total=0.8)
        b = make_candidate('b', lat=52.53, lng=13.405, total=0.6)
        result = DriveTimeSuppressor(10, 50).suppress([b, a])

        assert [c.id for c in result.selected] == ['a']
        assert [c.id for c in result.suppressed] == ['b']
        audit = result.clusters[0]
        assert audit.center.id == 'a'
        assert audit.size == 2
        assert audit.suppressed[0].drive_time_minutes == pytest.approx(1111.95 / 1000 / 50 * 60, rel=1e-3)
        assert audit.avg_drive_time == pytest.approx(audit.suppressed[0].drive_time_minutes / 2)

    def test_far_pair_kept(self):
        a = make_candidate('a', lat=52.52, lng=13.405, total=0.8)
        b = make_candidate('b', lat=52.72, lng=13.405, total=0.6)
        result = DriveTimeSuppressor(10, 50).suppress([a, b])
        assert [c.id for c in result.selected] == ['a', 'b']
        assert result.clusters == []

    def test_suppression_invariant(self):
        candidates = dense_candidates()
        suppressor = DriveTimeSuppressor(10, 50)
        result = suppressor.suppress(candidates)

        kept = result.selected
        assert len(kept) + len(result.suppressed) == len(candidates)
        for s in result.suppressed:
            assert any(
                drive_minutes(haversine_m(k.lat, k.lng, s.lat, s.lng), 50) <= 10 and k.total >= s.total
                for k in kept
            )
        for i, k1 in enumerate(kept):
            for k2 in kept[i + 1:]:
                assert drive_minutes(haversine_m(k1.lat, k1.lng, k2.lat, k2.lng), 50) > 10

    def test_candidates_are_not_mutated(self):
        candidates = dense_candidates(20)
        before = [(c.id, c.total, c.cluster_size) for c in candidates]
        DriveTimeSuppressor(10, 50).suppress(candidates)
        assert [(c.id, c.total, c.cluster_size) for c in candidates] == before

    def test_preserve_top_scorers(self):
        a = make_candidate('a', lat=52.520, lng=13.405, total=0.9)
        b = make_candidate('b', lat=52.529, lng=13.405, total=0.8)
        c = make_candidate('c', lat=52.538, lng=13.405, total=0.7)

        plain = DriveTimeSuppressor(10, 50).apply([a, b, c])
        assert [x.id for x in plain.selected] == ['a']

        preserving = DriveTimeSuppressor(10, 50, preserve_top_scorers=1).apply([a, b, c])
        assert [x.id for x in preserving.selected] == ['a', 'b']
        assert [x.id for x in preserving.preserved] == ['a']
        assert [x.id for x in preserving.suppressed] == ['c']

    def test_minimum_spacing(self):
        a = make_candidate('a', lat=52.520, lng=13.405, total=0.9)
        b = make_candidate('b', lat=52.620, lng=13.405, total=0.8)
        c = make_candidate('c', lat=52.900, lng=13.405, total=0.7)

        result = DriveTimeSuppressor(10, 50, min_spacing_m=15000).apply([a, b, c])
        assert [x.id for x in result.selected] == ['a', 'c']
        assert [x.id for x in result.spaced_out] == ['b']

    def test_drive_time_stats(self):
        a = make_candidate('a', lat=52.52, lng=13.405)
        b = make_candidate('b', lat=52.61, lng=13.405)
        stats = DriveTimeSuppressor(10, 50).drive_time_stats([a, b])
        assert stats['avg_nearest_neighbor_drive_time'] == pytest.approx(10.0075 / 50 * 60, rel=1e-3)
        assert stats['clustered_pairs'] == 0

        close = make_candidate('c', lat=52.53, lng=13.405)
        stats = DriveTimeSuppressor(10, 50).drive_time_stats([a, b, close])
        assert stats['clustered_pairs'] == 1
        assert stats['min_drive_time'] == pytest.approx(1.334, rel=1e-2)

    def test_empty(self):
        suppressor = DriveTimeSuppressor()
        assert suppressor.apply([]).selected == []
        assert suppressor.drive_time_stats([])['clustered_pairs'] == 0
