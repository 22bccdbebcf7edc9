import math
from dataclasses import dataclass, field
from typing import List

import numpy as np

from expansion.config import DRIVE_SPEED_KMH, DRIVE_TIME_MINUTES, MIX_RATIO
from expansion.metrics import NullMetricsSink
from expansion.models import Candidate, ClusterAudit, ClusterMember
from expansion.utils import (build_ball_tree, drive_minutes, haversine_m, haversine_vectorized,
                             max_drive_distance_m, meters_to_radians, score_key, to_radians)


@dataclass
class SuppressionResult:
    selected: List[Candidate] = field(default_factory=list)
    suppressed: List[Candidate] = field(default_factory=list)
    clusters: List[ClusterAudit] = field(default_factory=list)
    spaced_out: List[Candidate] = field(default_factory=list)
    preserved: List[Candidate] = field(default_factory=list)


class CandidateMerger:
    """
    负责处理多源召回点位的融合：居民点候选 + 网格探索候选
    按 mix_ratio 分配名额，一方不足时由另一方补齐
    """

    @staticmethod
    def mix_sources(settlement_candidates, grid_candidates, pool_size, mix_ratio=None):
        mix_ratio = dict(MIX_RATIO, **(mix_ratio or {}))
        share_total = mix_ratio['settlement'] + mix_ratio['h3_explore']
        settlement_share = mix_ratio['settlement'] / share_total if share_total > 0 else 1.0

        settlement_sorted = sorted(settlement_candidates, key=score_key)
        grid_sorted = sorted(grid_candidates, key=score_key)

        settlement_quota = math.floor(pool_size * settlement_share)
        grid_quota = pool_size - settlement_quota

        # 一方候选不足时，空出的名额交给另一方
        settlement_take = min(len(settlement_sorted), settlement_quota + max(0, grid_quota - len(grid_sorted)))
        grid_take = min(len(grid_sorted), pool_size - settlement_take)

        merged = sorted(settlement_sorted[:settlement_take] + grid_sorted[:grid_take], key=score_key)
        print(f"[Merger] 多源融合: 居民点 {settlement_take}/{len(settlement_sorted)} (配额 {settlement_quota}) + "
              f"网格 {grid_take}/{len(grid_sorted)} (配额 {grid_quota}) = {len(merged)}")
        return merged


class DriveTimeSuppressor:
    """
    车程非极大值抑制 (NMS)：按分数降序，每个车程邻域只保留分数最高的点
    车程 = 大圆距离 / 固定车速，不是真实路网
    """

    def __init__(self, drive_time_minutes=DRIVE_TIME_MINUTES, speed_kmh=DRIVE_SPEED_KMH,
                 min_spacing_m=0, preserve_top_scorers=0, metrics=None):
        self.drive_time_minutes = drive_time_minutes
        self.speed_kmh = speed_kmh
        self.min_spacing_m = min_spacing_m
        self.preserve_top_scorers = preserve_top_scorers
        self.metrics = metrics or NullMetricsSink()

    @classmethod
    def from_config(cls, cfg, metrics=None):
        return cls(cfg['drive_time_minutes'], cfg['drive_speed_kmh'], cfg['min_spacing_m'],
                   cfg['preserve_top_scorers'], metrics)

    @property
    def max_distance_m(self):
        return max_drive_distance_m(self.drive_time_minutes, self.speed_kmh)

    def suppress(self, candidates):
        """返回 SuppressionResult (selected / suppressed / clusters)，不修改候选点本身"""
        result = SuppressionResult()
        if not candidates:
            return result

        ordered = sorted(candidates, key=score_key)
        tree = build_ball_tree(ordered)
        # 半径略放大，最终以精确车程判定
        neighbors = tree.query_radius(to_radians(ordered), r=meters_to_radians(self.max_distance_m) * 1.000001)

        processed = np.zeros(len(ordered), dtype=bool)
        for i, center in enumerate(ordered):
            if processed[i]:
                continue
            processed[i] = True

            members = []
            for j in sorted(int(j) for j in neighbors[i]):
                if processed[j]:
                    continue
                other = ordered[j]
                distance = haversine_m(center.lat, center.lng, other.lat, other.lng)
                minutes = drive_minutes(distance, self.speed_kmh)
                if minutes <= self.drive_time_minutes:
                    processed[j] = True
                    members.append(ClusterMember(other, minutes, distance))

            result.selected.append(center)
            if members:
                result.suppressed.extend(m.candidate for m in members)
                avg_drive = sum(m.drive_time_minutes for m in members) / (len(members) + 1)
                result.clusters.append(ClusterAudit(center, members, avg_drive))

        self.metrics.count('nms', 'suppressed', len(result.suppressed))
        self.metrics.count('nms', 'clusters', len(result.clusters))
        print(f"[NMS] 车程抑制 ({self.drive_time_minutes}min ≈ {self.max_distance_m / 1000:.1f}km @ "
              f"{self.speed_kmh}km/h): 保留 {len(result.selected)}, 抑制 {len(result.suppressed)}, "
              f"簇 {len(result.clusters)}")
        return result

    @staticmethod
    def apply_minimum_spacing(candidates, min_spacing_m):
        """纯距离 NMS：与任一已保留点距离小于下限则剔除。返回 (kept, removed)"""
        kept, removed = [], []
        for c in sorted(candidates, key=score_key):
            if kept:
                dists_km = haversine_vectorized(c.lng, c.lat,
                                                np.array([k.lng for k in kept]), np.array([k.lat for k in kept]))
                if np.min(dists_km) * 1000.0 < min_spacing_m:
                    removed.append(c)
                    continue
            kept.append(c)
        return kept, removed

    def apply(self, candidates):
        """保留头部 -> 车程抑制 -> (可选) 最小间距"""
        ordered = sorted(candidates, key=score_key)
        preserved = ordered[:self.preserve_top_scorers]
        result = self.suppress(ordered[self.preserve_top_scorers:])
        result.preserved = preserved

        selected = sorted(preserved + result.selected, key=score_key)
        if self.min_spacing_m > 0:
            selected, result.spaced_out = self.apply_minimum_spacing(selected, self.min_spacing_m)
            self.metrics.count('nms', 'spaced_out', len(result.spaced_out))
            print(f"[NMS] 最小间距 {self.min_spacing_m}m: 剔除 {len(result.spaced_out)}, 剩余 {len(selected)}")
        result.selected = selected
        return result

    def drive_time_stats(self, candidates):
        """最近邻车程统计 (分钟)"""
        if len(candidates) < 2:
            return {'avg_nearest_neighbor_drive_time': 0.0, 'min_drive_time': 0.0,
                    'max_drive_time': 0.0, 'clustered_pairs': 0}

        lats = np.array([c.lat for c in candidates])
        lngs = np.array([c.lng for c in candidates])
        dist_km = haversine_vectorized(lngs[:, None], lats[:, None], lngs[None, :], lats[None, :])
        minutes = dist_km / self.speed_kmh * 60.0
        np.fill_diagonal(minutes, np.inf)

        nearest = minutes.min(axis=1)
        clustered_pairs = int(np.sum(np.triu(minutes <= self.drive_time_minutes, k=1)))
        return {
            'avg_nearest_neighbor_drive_time': float(nearest.mean()),
            'min_drive_time': float(nearest.min()),
            'max_drive_time': float(nearest.max()),
            'clustered_pairs': clustered_pairs,
        }
