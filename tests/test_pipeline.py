"""End-to-end pipeline behaviour."""
import math
import random

import pytest

from expansion.metrics import InMemoryMetricsSink
from expansion.pipeline import ExpansionPipeline, run_fingerprint
from expansion.report import result_to_frames
from expansion.utils import drive_minutes, haversine_m
from conftest import synthetic_records, synthetic_stores

EXAMPLE_CONFIG = {
    'clusteringDistanceMeters': 5000,
    'driveTimeMinutes': 10,
    'driveSpeedKmh': 50,
    'randomSeed': 42,
}
SYNTHETIC_CONFIG = {'random_seed': 42, 'max_candidates_per_region': 40}


@pytest.fixture(scope='module')
def synthetic_result():
    pipeline = ExpansionPipeline(SYNTHETIC_CONFIG)
    return pipeline.run(synthetic_records(120), synthetic_stores(30), target_count=20)


class TestExampleScenario:

    def test_nearby_candidates_collapse(self, example_records):
        result = ExpansionPipeline(EXAMPLE_CONFIG).run(example_records, [], target_count=10)

        assert [c.id for c in result.selected] == ['c1', 'c3']
        c1 = result.selected[0]
        assert c1.cluster_size == 2
        assert c1.cluster_members == 'Berlin Mitte, Berlin Nord'

    def test_shortfall_is_reported(self, example_records):
        result = ExpansionPipeline(EXAMPLE_CONFIG).run(example_records, [], target_count=10)
        summary = result.summary
        assert summary['available'] == 2
        assert summary['available_below_target'] is True
        assert summary['shortfall'] == 8
        assert summary['stage_counts']['received'] == 3
        assert summary['stage_counts']['clustered'] == 2

    def test_rationales(self, example_records):
        result = ExpansionPipeline(EXAMPLE_CONFIG).run(example_records, [], target_count=10)
        assert set(result.rationales) == {'c1', 'c3'}
        assert 'Berlin Mitte' in result.rationales['c1']
        assert '完全空白' in result.rationales['c1']

    def test_custom_enricher(self, example_records):
        result = ExpansionPipeline(EXAMPLE_CONFIG).run(example_records, [], target_count=10,
                                                       enricher=lambda c: f"site {c.id}")
        assert result.rationales == {'c1': 'site c1', 'c3': 'site c3'}

    def test_malformed_record_is_skipped(self, example_records):
        records = example_records + [{'id': 'bad', 'lat': 'north', 'lng': 13.0, 'population': 90000}]
        result = ExpansionPipeline(EXAMPLE_CONFIG).run(records, [], target_count=10)
        assert result.summary['ingest']['dropped_malformed'] == 1
        assert [c.id for c in result.selected] == ['c1', 'c3']

    def test_frames(self, example_records):
        result = ExpansionPipeline(EXAMPLE_CONFIG).run(example_records, [], target_count=10)
        selected_df, suppressed_df, ledger_df = result_to_frames(result)
        assert list(selected_df['id']) == ['c1', 'c3']
        assert selected_df['rationale'].notna().all()
        assert suppressed_df.empty
        assert sorted(ledger_df['region_code']) == ['BE', 'BY']


class TestDeterminism:

    def test_identical_runs(self):
        first = ExpansionPipeline(SYNTHETIC_CONFIG).run(synthetic_records(120), synthetic_stores(30), 20)
        second = ExpansionPipeline(SYNTHETIC_CONFIG).run(synthetic_records(120), synthetic_stores(30), 20)
        assert [c.id for c in first.selected] == [c.id for c in second.selected]
        assert first.summary['fingerprint'] == second.summary['fingerprint']

    def test_input_order_does_not_matter(self):
        records = synthetic_records(120)
        shuffled = list(records)
        random.Random(5).shuffle(shuffled)
        first = ExpansionPipeline(SYNTHETIC_CONFIG).run(records, synthetic_stores(30), 20)
        second = ExpansionPipeline(SYNTHETIC_CONFIG).run(shuffled, synthetic_stores(30), 20)
        assert [c.id for c in first.selected] == [c.id for c in second.selected]

    def test_repeat_detection_uses_caller_window(self, example_records):
        pipeline = ExpansionPipeline(EXAMPLE_CONFIG)
        first = pipeline.run(example_records, [], target_count=10)
        again = pipeline.run(example_records, [], target_count=10,
                             recent_fingerprints=[first.summary['fingerprint']])
        assert first.summary['repeat_of_recent'] is False
        assert again.summary['repeat_of_recent'] is True
        assert first.summary['fingerprint'] == run_fingerprint(first.selected)


class TestSyntheticRun:

    def test_target_respected(self, synthetic_result):
        assert 0 < len(synthetic_result.selected) <= 20
        assert synthetic_result.summary['stage_counts']['grid'] > 0

    def test_sorted_by_score(self, synthetic_result):
        keys = [(-c.total, c.id) for c in synthetic_result.selected]
        assert keys == sorted(keys)

    def test_score_bounds(self, synthetic_result):
        for c in synthetic_result.selected:
            s = c.score
            for value in (s.population, s.gap, s.anchor, s.performance, s.saturation_penalty, s.confidence):
                assert 0.0 <= value <= 1.0

    def test_suppression_invariant(self, synthetic_result):
        for audit in synthetic_result.clusters:
            for member in audit.suppressed:
                c = member.candidate
                minutes = drive_minutes(haversine_m(audit.center.lat, audit.center.lng, c.lat, c.lng), 50)
                assert minutes <= 10
                assert audit.center.total >= c.total

    def test_fairness_bound(self, synthetic_result):
        n = len(synthetic_result.selected)
        for count in synthetic_result.region_distribution.values():
            assert count <= math.ceil(round(0.4 * n, 9))

    def test_selected_and_capped_are_disjoint(self, synthetic_result):
        selected = {c.id for c in synthetic_result.selected}
        assert selected.isdisjoint(c.id for c in synthetic_result.capped)
        assert selected.isdisjoint(c.id for c in synthetic_result.suppressed)


class TestEdgeCases:

    def test_empty_input(self):
        result = ExpansionPipeline({'random_seed': 1}).run([], [], target_count=5)
        assert result.selected == []
        assert result.suppressed == []
        assert result.region_distribution == {}
        assert result.summary['available'] == 0
        assert result.summary['shortfall'] == 5
        assert result.summary['available_below_target'] is True

    def test_zero_target(self, example_records):
        result = ExpansionPipeline(EXAMPLE_CONFIG).run(example_records, [], target_count=0)
        assert result.selected == []
        assert len(result.capped) == 2

    def test_metrics_sink(self, example_records):
        metrics = InMemoryMetricsSink()
        ExpansionPipeline(EXAMPLE_CONFIG, metrics=metrics).run(example_records, [], target_count=10)
        assert metrics.value('pipeline', 'selected') == 2
        assert metrics.value('clustering', 'discarded') == 1
        frame = metrics.to_frame()
        assert {'stage', 'metric', 'kind', 'value'} <= set(frame.columns)
