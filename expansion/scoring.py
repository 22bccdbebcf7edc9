import math

import numpy as np
from scipy.special import expit

from expansion.anchors import AnchorDensityResolver
from expansion.config import (ANCHOR_WEIGHT_CAP, GAP_REDISTRIBUTION_SHARE, MIN_PERFORMANCE_SAMPLE,
                              PERFORMANCE_RADIUS_M, RING_RADII_M)
from expansion.metrics import NullMetricsSink
from expansion.models import DataQuality, Score
from expansion.utils import R_EARTH_M, build_ball_tree, clamp, meters_to_radians, to_radians

GAP_CENTER_M = 10000.0
GAP_SCALE_M = 3000.0
ANCHOR_SATURATION_COUNT = 20
TURNOVER_NORMALIZER = 1000000.0
SATURATION_STORE_COUNT = 10
NEUTRAL_PERFORMANCE = 0.5

# 完整度清单：(权重, 真实值得分, 估算值得分)
COMPLETENESS_WEIGHTS = {
    'population_source': 0.3,
    'performance_sample': 0.3,
    'anchor_coverage': 0.2,
    'data_recency': 0.1,
    'income_proxy': 0.1,
}
RECENCY_SCORES = {'current': 1.0, 'recent': 0.9, 'stale': 0.8}


def score_population(population):
    # 对数归一化: 1000 -> 0.0, 1,000,000 -> 1.0
    if population <= 0:
        return 0.0
    return clamp(math.log10(population / 1000.0) / 3.0)


def score_gap(nearest_distances):
    """离已有门店越远分越高；没有任何门店时视为最大空白"""
    if len(nearest_distances) == 0:
        return 1.0
    avg_distance = float(np.mean(nearest_distances))
    return float(expit((avg_distance - GAP_CENTER_M) / GAP_SCALE_M))


def score_anchors(anchor_count):
    return min(anchor_count / ANCHOR_SATURATION_COUNT, 1.0)


def score_performance(turnover_mean, sample_size):
    if sample_size == 0:
        return NEUTRAL_PERFORMANCE  # 附近没有门店数据，不惩罚
    return clamp(turnover_mean / TURNOVER_NORMALIZER)


def score_saturation(store_count_10km):
    return min(store_count_10km / SATURATION_STORE_COUNT, 1.0)


class ScoringEngine:
    """
    多因子评分 + 数据质量画像
    估算数据对应的权重被削减，削减量的 80% 转给 gap，20% 记为不确定性权重 (不参与计分)
    """

    def __init__(self, cfg, anchor_resolver=None, metrics=None):
        self.weights = dict(cfg['weights'])
        self.cap_factor = cfg['sparse_data_cap_factor']
        self.anchor_resolver = anchor_resolver or AnchorDensityResolver.from_config(cfg)
        self.metrics = metrics or NullMetricsSink()

    # ------------------------------------------------------------------
    # 门店指标
    # ------------------------------------------------------------------
    def attach_store_metrics(self, candidates, stores):
        """一次性为所有候选点计算最近 3 店距离、距离环门店数、10km 内平均营业额"""
        if not candidates:
            return
        if not stores:
            for c in candidates:
                c.nearest_store_distances = []
                c.store_count_5km = c.store_count_10km = c.store_count_15km = 0
                c.nearby_turnover_mean = 0.0
                c.performance_sample_size = 0
            return

        tree = build_ball_tree(stores)
        coords_rad = to_radians(candidates)

        k = min(3, len(stores))
        dist_rad, _ = tree.query(coords_rad, k=k)
        ring_counts = [tree.query_radius(coords_rad, r=meters_to_radians(r), count_only=True) for r in RING_RADII_M]
        nearby = tree.query_radius(coords_rad, r=meters_to_radians(PERFORMANCE_RADIUS_M))

        turnovers = np.array([np.nan if s.turnover is None else s.turnover for s in stores], dtype=float)

        for i, c in enumerate(candidates):
            c.nearest_store_distances = [float(d) * R_EARTH_M for d in dist_rad[i]]
            c.store_count_5km, c.store_count_10km, c.store_count_15km = (int(rc[i]) for rc in ring_counts)
            sample = turnovers[nearby[i]]
            sample = sample[~np.isnan(sample)]
            c.performance_sample_size = int(len(sample))
            c.nearby_turnover_mean = float(sample.mean()) if len(sample) else 0.0

    # ------------------------------------------------------------------
    # 数据质量
    # ------------------------------------------------------------------
    def assess_data_quality(self, candidate):
        sample_size = candidate.performance_sample_size
        dq = DataQuality(
            population_estimated=candidate.population_estimated,
            performance_insufficient=sample_size < MIN_PERFORMANCE_SAMPLE,
            anchors_estimated=True,  # 锚点数量都是推导值
            income_estimated=candidate.income_proxy is None,
            data_stale=candidate.data_recency == 'stale',
            performance_sample_size=sample_size,
        )

        checklist = {
            'population_source': 0.6 if dq.population_estimated else 1.0,
            'performance_sample': 0.4 if dq.performance_insufficient else 1.0,
            'anchor_coverage': 0.7 if dq.anchors_estimated else 1.0,
            'data_recency': RECENCY_SCORES.get(candidate.data_recency, 1.0),
            'income_proxy': 0.5 if dq.income_estimated else 1.0,
        }
        dq.checklist = checklist
        dq.completeness_score = round(sum(COMPLETENESS_WEIGHTS[k] * v for k, v in checklist.items()), 3)

        flags = []
        if dq.population_estimated:
            flags.append('population_estimated')
        if dq.performance_insufficient:
            flags.append('performance_insufficient_sample')
        if dq.anchors_estimated:
            flags.append('anchor_estimated')
        if dq.data_stale:
            flags.append('data_stale')
        if dq.income_estimated:
            flags.append('income_estimated')
        dq.reliability_flags = flags
        return dq

    def apply_weight_caps(self, dq):
        """返回 (调整后权重, 不确定性权重)"""
        adjusted = dict(self.weights)
        total_reduction = 0.0

        if dq.population_estimated:
            total_reduction += adjusted['population'] * (1 - self.cap_factor)
            adjusted['population'] *= self.cap_factor

        if dq.performance_insufficient:
            total_reduction += adjusted['performance'] * (1 - self.cap_factor)
            adjusted['performance'] *= self.cap_factor

        if dq.anchors_estimated:
            total_reduction += adjusted['anchor'] * (1 - ANCHOR_WEIGHT_CAP)
            adjusted['anchor'] *= ANCHOR_WEIGHT_CAP

        adjusted['gap'] += total_reduction * GAP_REDISTRIBUTION_SHARE
        uncertainty = total_reduction * (1 - GAP_REDISTRIBUTION_SHARE)
        return adjusted, uncertainty

    @staticmethod
    def calculate_confidence(candidate, dq):
        confidence = 0.5
        confidence += 0.1 if dq.population_estimated else 0.2
        if not dq.performance_insufficient:
            confidence += 0.2
        if candidate.settlement_type == 'city':
            confidence += 0.1
        return clamp(confidence * dq.completeness_score)

    # ------------------------------------------------------------------
    # 评分
    # ------------------------------------------------------------------
    def score_candidate(self, candidate):
        """门店指标需已挂载 (attach_store_metrics)"""
        self.anchor_resolver.resolve_candidate(candidate)
        dq = self.assess_data_quality(candidate)
        adjusted, uncertainty = self.apply_weight_caps(dq)

        score = Score(
            population=score_population(candidate.population),
            gap=score_gap(candidate.nearest_store_distances),
            anchor=score_anchors(candidate.anchor_count),
            performance=score_performance(candidate.nearby_turnover_mean, dq.performance_sample_size),
            saturation_penalty=score_saturation(candidate.store_count_10km),
        )
        score.total = (adjusted['population'] * score.population
                       + adjusted['gap'] * score.gap
                       + adjusted['anchor'] * score.anchor
                       + adjusted['performance'] * score.performance
                       - adjusted['saturation'] * score.saturation_penalty)
        score.confidence = self.calculate_confidence(candidate, dq)
        score.adjusted_weights = adjusted
        score.uncertainty_weight = uncertainty

        candidate.score = score
        candidate.data_quality = dq
        return score

    def score_all(self, candidates, stores):
        if not candidates:
            print("[Scoring] 没有候选点需要评分")
            return []

        self.attach_store_metrics(candidates, stores)
        for c in candidates:
            self.score_candidate(c)

        avg_total = float(np.mean([c.total for c in candidates]))
        held = sum(1 for c in candidates if c.data_quality.evidence_check == 'HOLD')
        self.metrics.count('scoring', 'scored', len(candidates))
        self.metrics.gauge('scoring', 'avg_total', avg_total)
        print(f"[Scoring] 评分完成: {len(candidates)} 个候选点 | 平均分 {avg_total:.3f} | 证据不足(HOLD) {held}")
        return candidates

    # ------------------------------------------------------------------
    # 诊断
    # ------------------------------------------------------------------
    def diagnostics(self, candidate):
        dq = candidate.data_quality
        score = candidate.score
        anchors = candidate.anchors
        adjusted = score.adjusted_weights
        area_km2 = math.pi * (PERFORMANCE_RADIUS_M / 1000.0) ** 2

        return {
            'inputs': {
                'population': candidate.population,
                'nearest3_distances_km': [round(d / 1000.0, 2) for d in candidate.nearest_store_distances],
                'anchor_pois': candidate.anchor_count,
                'anchor_breakdown': candidate.anchor_breakdown,
                'local_density': round(candidate.store_count_10km / area_km2, 3),
                'peer_turnover': candidate.nearby_turnover_mean,
                'store_count_5km': candidate.store_count_5km,
                'store_count_10km': candidate.store_count_10km,
                'store_count_15km': candidate.store_count_15km,
                'cluster_size': candidate.cluster_size,
                'cluster_members': candidate.cluster_members,
                'settlement_type': candidate.settlement_type,
                'sampling_weight': candidate.sampling_weight,
            },
            'normalized_scores': {
                'population': score.population,
                'gap': score.gap,
                'anchor': score.anchor,
                'performance': score.performance,
                'saturation_penalty': score.saturation_penalty,
            },
            'weights': {'original': dict(self.weights), 'adjusted': dict(adjusted)},
            'final_score': score.total,
            'confidence': score.confidence,
            'data_quality': {
                'estimated': {
                    'population': dq.population_estimated,
                    'performance': dq.performance_insufficient,
                    'anchors': dq.anchors_estimated,
                    'income': dq.income_estimated,
                },
                'completeness_score': dq.completeness_score,
                'completeness_checklist': dict(dq.checklist),
                'reliability_flags': list(dq.reliability_flags),
                'performance_sample_size': dq.performance_sample_size,
                'minimum_evidence_check': dq.evidence_check,
            },
            'anchor_analysis': {
                'raw_count': sum(anchors.raw.values()),
                'deduplicated_count': anchors.total_raw,
                'capped_anchors': anchors.capped,
                'merge_report': list(anchors.merge_report),
                'diminishing_returns_score': anchors.score,
                'diminishing_returns_applied': anchors.diminishing_returns_applied,
            },
            'uncertainty_indicators': {
                'uncertainty_weight': score.uncertainty_weight,
                'weight_reductions': {k: self.weights[k] - adjusted[k] for k in ('population', 'performance', 'anchor')},
                'redistributed_to_gap': adjusted['gap'] - self.weights['gap'],
            },
        }
