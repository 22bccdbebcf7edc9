import math

import numpy as np

from expansion.config import (ANCHOR_BASE_COUNTS, ANCHOR_MERGE_RADII, ANCHOR_MERGE_RATIOS,
                              DIMINISHING_RETURNS_ENABLED, MAX_ANCHORS_PER_SITE)
from expansion.models import AnchorResolution

ANCHOR_TYPES = ('malls', 'grocers', 'stations', 'retail', 'restaurants')
TYPE_ALIASES = {
    'mall': 'malls',
    'grocer': 'grocers',
    'grocery': 'grocers',
    'station': 'stations',
    'shop': 'retail',
    'shops': 'retail',
    'restaurant': 'restaurants',
}


def normalize_anchor_counts(raw_counts):
    counts = {t: 0 for t in ANCHOR_TYPES}
    for key, value in (raw_counts or {}).items():
        key = TYPE_ALIASES.get(key.lower(), key.lower())
        if key in counts:
            counts[key] += max(int(value), 0)
    return counts


def diminishing_returns_score(count):
    """score = Σ 1/√rank, rank = 1..count (第 1 个锚点贡献 1.0，第 2 个约 0.71 ...)"""
    if count <= 0:
        return 0.0
    ranks = np.arange(1, count + 1, dtype=float)
    return round(float(np.sum(1.0 / np.sqrt(ranks))), 3)


def marginal_contribution(rank):
    return 1.0 / math.sqrt(rank)


class AnchorDensityResolver:
    """
    锚点 POI 去重 + 封顶 + 边际递减评分
    去重按类型对的固定比例合并聚合计数，每次合并都记入审计表
    """

    def __init__(self, max_anchors_per_site=MAX_ANCHORS_PER_SITE,
                 diminishing_returns=DIMINISHING_RETURNS_ENABLED, merge_radii=None):
        self.max_anchors_per_site = max_anchors_per_site
        self.diminishing_returns = diminishing_returns
        self.merge_radii = dict(ANCHOR_MERGE_RADII, **(merge_radii or {}))

    @classmethod
    def from_config(cls, cfg):
        return cls(cfg['max_anchors_per_site'], cfg['diminishing_returns_enabled'], cfg['anchor_merge_radii'])

    @staticmethod
    def estimate_raw_counts(settlement_type, population):
        """没有原始计数时按类型和人口规模推算 (结果永远视为估算值)"""
        base = ANCHOR_BASE_COUNTS.get(settlement_type, ANCHOR_BASE_COUNTS['village'])
        factor = math.log10(population / 1000) if population > 1000 else 1.0
        return {t: int(math.floor(c * factor + 0.5)) for t, c in base.items()}

    def _merge(self, report, type1, type2, radius_key, merged):
        report.append({
            'type1': type1,
            'type2': type2,
            'radius': self.merge_radii[radius_key],
            'merged_count': merged,
        })

    def deduplicate(self, counts):
        deduped = dict(counts)
        report = []

        # 商场-租户：商场里的超市/零售只算一次
        mall_tenant = math.floor(
            min(deduped['malls'], deduped['grocers'] + deduped['retail']) * ANCHOR_MERGE_RATIOS['mall_tenant'])
        if mall_tenant > 0:
            grocer_cut = math.floor(mall_tenant * ANCHOR_MERGE_RATIOS['mall_tenant_grocer_share'])
            deduped['grocers'] = max(0, deduped['grocers'] - grocer_cut)
            deduped['retail'] = max(0, deduped['retail'] - (mall_tenant - grocer_cut))
            self._merge(report, 'mall', 'tenant', 'mall_tenant', mall_tenant)

        # 车站-商铺
        station_shops = math.floor(min(deduped['stations'], deduped['retail']) * ANCHOR_MERGE_RATIOS['station_shops'])
        if station_shops > 0:
            deduped['retail'] = max(0, deduped['retail'] - station_shops)
            self._merge(report, 'station', 'shops', 'station_shops', station_shops)

        grocer_cluster = math.floor(deduped['grocers'] * ANCHOR_MERGE_RATIOS['grocer_grocer'])
        if grocer_cluster > 0:
            deduped['grocers'] = max(0, deduped['grocers'] - grocer_cluster)
            self._merge(report, 'grocer', 'grocer', 'grocer_grocer', grocer_cluster)

        retail_cluster = math.floor(deduped['retail'] * ANCHOR_MERGE_RATIOS['retail_retail'])
        if retail_cluster > 0:
            deduped['retail'] = max(0, deduped['retail'] - retail_cluster)
            self._merge(report, 'retail', 'retail', 'retail_retail', retail_cluster)

        return deduped, report

    def resolve(self, raw_counts):
        counts = normalize_anchor_counts(raw_counts)
        deduped, report = self.deduplicate(counts)

        total_raw = sum(deduped.values())
        count = min(total_raw, self.max_anchors_per_site)
        # 超出上限的部分只记录，不从审计表中抹掉
        capped = total_raw - count

        if self.diminishing_returns:
            score = diminishing_returns_score(count)
        else:
            score = float(count)

        return AnchorResolution(
            raw=counts,
            deduplicated=deduped,
            total_raw=total_raw,
            count=count,
            capped=capped,
            score=score,
            merge_report=report,
            diminishing_returns_applied=self.diminishing_returns,
        )

    def resolve_candidate(self, candidate):
        raw = candidate.raw_anchor_counts
        if raw is None:
            raw = self.estimate_raw_counts(candidate.settlement_type, candidate.population)
        resolution = self.resolve(raw)
        candidate.anchors = resolution
        candidate.anchor_count = resolution.count
        candidate.anchor_breakdown = dict(resolution.deduplicated, total_raw=resolution.total_raw,
                                          capped=resolution.capped)
        return resolution
