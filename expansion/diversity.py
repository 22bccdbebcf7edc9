import math

from expansion.config import DIVERSITY_WEIGHTS
from expansion.metrics import NullMetricsSink
from expansion.models import SETTLEMENT_TYPES
from expansion.utils import score_key

# 居民点类型 -> 多样性权重的 key
WEIGHT_KEYS = {'city': 'cities', 'town': 'towns', 'village': 'villages'}


class TypeDiversifier:
    """按城市/镇/村目标比例重新平衡候选池"""

    def __init__(self, diversity_weights=None, metrics=None):
        self.weights = dict(DIVERSITY_WEIGHTS, **(diversity_weights or {}))
        self.metrics = metrics or NullMetricsSink()

    def quotas(self, by_type, target):
        quotas = {t: math.floor(target * self.weights[WEIGHT_KEYS[t]]) for t in SETTLEMENT_TYPES}
        remainder = target - sum(quotas.values())
        if remainder > 0:
            # 取整余数给可用数量最多的类型 (并列时按 城市/镇/村 顺序)
            most_available = max(SETTLEMENT_TYPES, key=lambda t: (len(by_type[t]), -SETTLEMENT_TYPES.index(t)))
            quotas[most_available] += remainder
        return quotas

    def diversify(self, candidates, target):
        if not candidates or target <= 0:
            return []
        target = min(target, len(candidates))

        by_type = {t: sorted((c for c in candidates if c.settlement_type == t), key=score_key)
                   for t in SETTLEMENT_TYPES}
        quotas = self.quotas(by_type, target)

        chosen = []
        for t in SETTLEMENT_TYPES:
            chosen.extend(by_type[t][:quotas[t]])

        if len(chosen) < target:
            # 某类数量不足：用剩余的最高分候选点补齐，不限类型
            chosen_ids = {c.id for c in chosen}
            remaining = sorted((c for c in candidates if c.id not in chosen_ids), key=score_key)
            chosen.extend(remaining[:target - len(chosen)])

        result = sorted(chosen, key=score_key)[:target]
        counts = {t: sum(1 for c in result if c.settlement_type == t) for t in SETTLEMENT_TYPES}
        for t, n in counts.items():
            self.metrics.gauge('diversity', f'{t}_count', n)
        print(f"[Diversity] 类型平衡: {len(candidates)} -> {len(result)} | "
              f"城市 {counts['city']} / 镇 {counts['town']} / 村 {counts['village']} "
              f"(配额 {quotas['city']}/{quotas['town']}/{quotas['village']})")
        return result
