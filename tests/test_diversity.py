"""Settlement-type rebalancing."""
from expansion.diversity import TypeDiversifier
from conftest import make_candidate


def typed_pool(cities, towns, villages):
    out = []
    for t, n in (('city', cities), ('town', towns), ('village', villages)):
        out += [make_candidate(f"{t}_{i:02d}", settlement_type=t, total=0.9 - 0.01 * i) for i in range(n)]
    return out


class TestTypeDiversifier:

    def test_default_quotas(self):
        div = TypeDiversifier()
        by_type = {'city': [1] * 10, 'town': [1] * 10, 'village': [1] * 10}
        assert div.quotas(by_type, 10) == {'city': 4, 'town': 4, 'village': 2}

    def test_remainder_goes_to_most_available(self):
        div = TypeDiversifier()
        by_type = {'city': [1] * 3, 'town': [1] * 9, 'village': [1] * 5}
        # floor(2.8) + floor(2.8) + floor(1.4) = 5, remainder 2
        assert div.quotas(by_type, 7) == {'city': 2, 'town': 4, 'village': 1}

    def test_remainder_tie_prefers_cities(self):
        div = TypeDiversifier()
        by_type = {'city': [1] * 4, 'town': [1] * 4, 'village': [1] * 4}
        assert div.quotas(by_type, 7)['city'] == 4

    def test_balanced_selection(self):
        result = TypeDiversifier().diversify(typed_pool(10, 10, 10), 10)
        counts = {t: sum(1 for c in result if c.settlement_type == t) for t in ('city', 'town', 'village')}
        assert counts == {'city': 4, 'town': 4, 'village': 2}

    def test_short_type_is_backfilled(self):
        result = TypeDiversifier().diversify(typed_pool(1, 10, 10), 10)
        assert len(result) == 10
        assert sum(1 for c in result if c.settlement_type == 'city') == 1

    def test_custom_weights(self):
        result = TypeDiversifier({'cities': 0.0, 'towns': 0.0, 'villages': 1.0}).diversify(typed_pool(5, 5, 5), 5)
        assert all(c.settlement_type == 'village' for c in result)

    def test_target_larger_than_pool(self):
        candidates = typed_pool(2, 1, 0)
        result = TypeDiversifier().diversify(candidates, 10)
        assert sorted(c.id for c in result) == sorted(c.id for c in candidates)

    def test_empty(self):
        assert TypeDiversifier().diversify([], 5) == []
