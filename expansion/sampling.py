import math

import numpy as np

from expansion.config import TYPE_SAMPLING_MULTIPLIER, ConfigError
from expansion.metrics import NullMetricsSink
from expansion.utils import LinearCongruentialGenerator, clamp, score_key

MIN_SAMPLING_WEIGHT = 0.1
MAX_ATTEMPT_FACTOR = 10


def sampling_weight(candidate):
    """
    人口取对数避免特大城市垄断，再乘类型系数和分数系数 (0.5~1.0)
    下限 0.1，保证任何候选点都有被抽中的机会
    """
    base = math.log10(candidate.population / 1000.0) if candidate.population > 0 else 0.0
    type_multiplier = TYPE_SAMPLING_MULTIPLIER.get(candidate.settlement_type, TYPE_SAMPLING_MULTIPLIER['village'])
    score_multiplier = 0.5 + 0.5 * clamp(candidate.total)
    return max(base * type_multiplier * score_multiplier, MIN_SAMPLING_WEIGHT)


class WeightedSampler:
    """确定性加权抽样：相同输入 + 相同种子 => 相同输出 (含顺序)"""

    def __init__(self, seed, metrics=None):
        if seed is None:
            raise ConfigError("加权采样缺少随机种子")
        self.seed = seed
        self.metrics = metrics or NullMetricsSink()

    def sample(self, candidates, target):
        if not candidates or target <= 0:
            return []

        # 先按稳定键排序，使结果与输入顺序无关
        pool = sorted(candidates, key=score_key)
        weights = np.array([sampling_weight(c) for c in pool], dtype=float)
        for c, w in zip(pool, weights):
            c.sampling_weight = float(w)

        if len(pool) <= target:
            return pool

        cumulative = np.cumsum(weights / weights.sum())
        rng = LinearCongruentialGenerator(self.seed)

        selected = set()
        max_attempts = target * MAX_ATTEMPT_FACTOR
        attempts = 0
        while len(selected) < target and attempts < max_attempts:
            # 第一个累计权重大于随机值的位置
            idx = int(np.searchsorted(cumulative, rng.random(), side='right'))
            if idx < len(pool):
                selected.add(idx)
            attempts += 1

        drawn = len(selected)
        if len(selected) < target:
            # 抽样次数用尽：按权重从高到低补齐
            remaining = sorted((i for i in range(len(pool)) if i not in selected),
                               key=lambda i: (-weights[i], pool[i].id))
            selected.update(remaining[:target - len(selected)])

        result = sorted((pool[i] for i in selected), key=score_key)
        self.metrics.count('sampling', 'drawn', drawn)
        self.metrics.count('sampling', 'backfilled', len(result) - drawn)
        print(f"[Sampler] 加权采样: {len(pool)} -> {len(result)} (抽中 {drawn}, 补齐 {len(result) - drawn}, "
              f"尝试 {attempts} 次, seed={self.seed})")
        return result
