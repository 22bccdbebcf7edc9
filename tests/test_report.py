"""Rule-based rationale text."""
from expansion.report import build_rationale
from conftest import make_candidate


class TestBuildRationale:

    def test_large_city_without_stores(self):
        c = make_candidate('x', population=250000, settlement_type='city')
        c.anchor_count = 12
        text = build_rationale(c)
        assert '人口基数大' in text
        assert '完全空白' in text
        assert '商业生态成熟' in text
        assert '周边业绩一般' in text

    def test_bands(self):
        c = make_candidate('x', population=30000, settlement_type='town')
        c.nearest_store_distances = [9000.0]
        c.anchor_count = 6
        c.nearby_turnover_mean = 900000.0
        text = build_rationale(c)
        assert '人口规模中等' in text
        assert '存在一定服务空白' in text
        assert '商业活跃度中等' in text
        assert '业绩优秀' in text

    def test_competitive_small_market(self):
        c = make_candidate('x', population=5000, settlement_type='village')
        c.nearest_store_distances = [2000.0]
        c.nearby_turnover_mean = 600000.0
        text = build_rationale(c)
        assert '社区较小' in text
        assert '竞争区域' in text
        assert '商业仍在发展' in text
        assert '业绩稳健' in text
