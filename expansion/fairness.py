import math
from dataclasses import dataclass, field
from typing import Dict, List

import numpy as np
import pandas as pd

from expansion.config import (BONUS_POOL_SHARE, DEFAULT_REGION_POPULATION, FAIRNESS_THRESHOLD,
                              MAX_PER_REGION_PERCENTAGE)
from expansion.metrics import NullMetricsSink
from expansion.models import Candidate, RegionAllocation
from expansion.utils import score_key


def concentration_cap(pct, n):
    """单个区域最多可占的名额 ceil(pct * n)，先做舍入以消除浮点误差"""
    return max(1, math.ceil(round(pct * n, 9)))


@dataclass
class AllocationResult:
    selected: List[Candidate] = field(default_factory=list)
    capped: List[Candidate] = field(default_factory=list)
    regions: Dict[str, RegionAllocation] = field(default_factory=dict)
    flagged: List[str] = field(default_factory=list)

    @property
    def region_distribution(self):
        return {code: r.allocated for code, r in self.regions.items()}

    @property
    def fairness_ledger(self):
        return {code: r.to_ledger() for code, r in self.regions.items()}


class RegionalFairnessAllocator:
    """
    区域公平分配：
    1. 人口(对数)加权的基础配额 + 绩效奖励名额 + 人工上限
    2. 每区域取分数最高的 quota 个
    3. 集中度保护：任一区域超过 max_per_region_percentage 则标记并重新平衡
    """

    def __init__(self, max_per_region_percentage=MAX_PER_REGION_PERCENTAGE, bonus_slots=1,
                 manual_caps=None, base_by_population=True, region_populations=None, metrics=None):
        self.max_pct = max_per_region_percentage
        self.bonus_slots = bonus_slots
        self.manual_caps = dict(manual_caps or {})
        self.base_by_population = base_by_population
        self.region_populations = dict(region_populations or {})
        self.metrics = metrics or NullMetricsSink()

    @classmethod
    def from_config(cls, cfg, metrics=None):
        return cls(cfg['max_per_region_percentage'], cfg['region_perf_bonus_slots'], cfg['manual_region_caps'],
                   cfg['base_by_population'], cfg['region_populations'], metrics)

    def population_of(self, region_code):
        return self.region_populations.get(region_code, DEFAULT_REGION_POPULATION)

    # ------------------------------------------------------------------
    # 区域画像与配额
    # ------------------------------------------------------------------
    def build_regions(self, candidates, stores=()):
        store_counts = {}
        for s in stores:
            store_counts[s.region_code] = store_counts.get(s.region_code, 0) + 1

        by_region = {}
        for c in candidates:
            by_region.setdefault(c.region_code, []).append(c)

        regions = {}
        for code in sorted(by_region):
            pool = by_region[code]
            population = self.population_of(code)
            regions[code] = RegionAllocation(
                region_code=code,
                population=population,
                population_weight=math.log10(population),  # 对数压缩超大区域
                existing_stores=store_counts.get(code, 0),
                avg_peer_performance=float(np.mean([c.nearby_turnover_mean for c in pool])),
                avg_score=float(np.mean([c.total for c in pool])),
                available=len(pool),
            )
        return regions, {code: sorted(pool, key=score_key) for code, pool in by_region.items()}

    def compute_quotas(self, regions, target):
        codes = list(regions)
        if not codes:
            return regions

        if self.base_by_population:
            reserved = 0
            if self.bonus_slots > 0:
                reserved = min(self.bonus_slots * len(codes), math.floor(round(target * BONUS_POOL_SHARE, 9)))
            base_pool = target - reserved

            total_weight = sum(r.population_weight for r in regions.values())
            for r in regions.values():
                share = r.population_weight / total_weight if total_weight > 0 else 1.0 / len(codes)
                r.base = math.floor(round(base_pool * share, 9))

            if reserved > 0:
                ranked = sorted(codes, key=lambda code: (-regions[code].avg_peer_performance, code))
                for code in ranked[:reserved // self.bonus_slots]:
                    regions[code].bonus = self.bonus_slots
        else:
            for r in regions.values():
                r.base = target // len(codes)

        for r in regions.values():
            r.quota = r.base + r.bonus
            if r.region_code in self.manual_caps:
                # 人工上限优先，同时取消奖励名额
                r.manual_cap = self.manual_caps[r.region_code]
                r.quota = min(r.quota, r.manual_cap)
                r.bonus = 0
        return regions

    # ------------------------------------------------------------------
    # 分配
    # ------------------------------------------------------------------
    def _region_caps(self, regions, n):
        guard = concentration_cap(self.max_pct, n) if len(regions) > 1 else math.inf
        return {code: (r.manual_cap if r.manual_cap is not None else guard) for code, r in regions.items()}

    def _violations(self, regions, counts, n):
        if len(regions) < 2 or n == 0:
            return []
        cap = concentration_cap(self.max_pct, n)
        return [code for code, r in regions.items() if r.manual_cap is None and counts.get(code, 0) > cap]

    def _fill(self, regions, pools, limit):
        """
        第一轮：各区域在上限内取自己的配额
        第二轮：剩余名额从所有区域按分数补齐，仍然遵守上限
        """
        caps = self._region_caps(regions, limit)
        chosen = []
        for code, r in regions.items():
            chosen.extend(pools[code][:min(r.quota, caps[code])])
        chosen = sorted(chosen, key=score_key)[:limit]
        counts = {code: sum(1 for c in chosen if c.region_code == code) for code in regions}

        chosen_ids = {c.id for c in chosen}
        leftovers = sorted((c for pool in pools.values() for c in pool if c.id not in chosen_ids), key=score_key)
        for c in leftovers:
            if len(chosen) >= limit:
                break
            if counts[c.region_code] < caps[c.region_code]:
                chosen.append(c)
                counts[c.region_code] += 1
        return chosen, counts

    def allocate(self, candidates, target, stores=()):
        result = AllocationResult()
        if not candidates or target <= 0:
            result.capped = sorted(candidates, key=score_key)
            return result

        regions, pools = self.build_regions(candidates, stores)
        self.compute_quotas(regions, target)
        result.regions = regions

        # 配额分配
        quota_selection = []
        for code, r in regions.items():
            quota_selection.extend(pools[code][:r.quota])
        quota_counts = {code: sum(1 for c in quota_selection if c.region_code == code) for code in regions}
        result.flagged = self._violations(regions, quota_counts, len(quota_selection))
        for code in result.flagged:
            regions[code].flagged = True
            print(f"⚠️ 警告: 区域 {code} 占比 {quota_counts[code]}/{len(quota_selection)} "
                  f"超过 {self.max_pct:.0%}，执行重新平衡")

        # 集中度保护 + 补齐：名额缩小后上限随之收紧，直到满足约束
        limit = min(target, len(candidates))
        while True:
            chosen, counts = self._fill(regions, pools, limit)
            if not self._violations(regions, counts, len(chosen)) or len(chosen) >= limit:
                break
            limit = len(chosen)

        chosen_ids = {c.id for c in chosen}
        result.selected = sorted(chosen, key=score_key)
        result.capped = sorted((c for c in candidates if c.id not in chosen_ids), key=score_key)
        for code, r in regions.items():
            r.allocated = counts[code]
            print(f"   {code}: {r.allocated}/{r.available} 入选 (base: {r.base}, bonus: {r.bonus}, "
                  f"manual: {r.manual_cap}, quota: {r.quota})")

        self.metrics.count('fairness', 'selected', len(result.selected))
        self.metrics.count('fairness', 'capped', len(result.capped))
        self.metrics.count('fairness', 'flagged_regions', len(result.flagged))
        print(f"[Fairness] 区域公平分配: {len(result.selected)}/{target} 入选, 覆盖 {len(regions)} 个区域")
        return result

    # ------------------------------------------------------------------
    # 公平性分析
    # ------------------------------------------------------------------
    def analyze_fairness(self, selected, region_codes=None, threshold=FAIRNESS_THRESHOLD):
        """
        各区域 人口占比 vs 站点占比
        返回 (DataFrame, overall_score)，overall_score 越接近 1 越均衡
        """
        codes = sorted(set(region_codes or []) | {c.region_code for c in selected})
        columns = ['region', 'population', 'population_share', 'selected_sites', 'site_share',
                   'fairness_ratio', 'status', 'deviation']
        if not codes:
            return pd.DataFrame(columns=columns), 1.0

        total_sites = len(selected)
        total_population = sum(self.population_of(code) for code in codes)
        rows = []
        for code in codes:
            sites = sum(1 for c in selected if c.region_code == code)
            population_share = self.population_of(code) / total_population
            site_share = sites / total_sites if total_sites > 0 else 0.0
            ratio = site_share / population_share if population_share > 0 else 0.0
            if ratio < 1 - threshold:
                status = 'under'
            elif ratio > 1 + threshold:
                status = 'over'
            else:
                status = 'balanced'
            rows.append({
                'region': code,
                'population': self.population_of(code),
                'population_share': population_share,
                'selected_sites': sites,
                'site_share': site_share,
                'fairness_ratio': ratio,
                'status': status,
                'deviation': abs(site_share - population_share),
            })

        df = pd.DataFrame(rows, columns=columns)
        overall = max(0.0, 1.0 - df['deviation'].sum() / (len(codes) * 0.5))
        return df, float(overall)
