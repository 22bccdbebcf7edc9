import hashlib

from expansion.anchors import AnchorDensityResolver
from expansion.clustering import SpatialClusterer
from expansion.config import TARGET_COUNT, ConfigError, build_config
from expansion.diversity import TypeDiversifier
from expansion.fairness import RegionalFairnessAllocator
from expansion.ingest import load_candidates, load_stores
from expansion.merger import CandidateMerger, DriveTimeSuppressor
from expansion.metrics import NullMetricsSink
from expansion.models import SelectionResult
from expansion.report import build_rationale
from expansion.sampling import WeightedSampler
from expansion.scoring import ScoringEngine
from expansion.utils import score_key


def run_fingerprint(selected):
    """入选 id 序列的 sha256，用来判断本次结果是否与近期某次运行完全相同"""
    payload = '\n'.join(c.id for c in selected).encode('utf-8')
    return hashlib.sha256(payload).hexdigest()


class ExpansionPipeline:
    """
    评分 -> 聚类 -> 采样 -> 类型平衡 -> 多源融合 -> 车程抑制 -> 区域公平
    配置在构造时校验，错误配置不会处理任何候选点
    """

    def __init__(self, config=None, metrics=None):
        self.cfg = build_config(config)
        self.metrics = metrics or NullMetricsSink()

        cfg = self.cfg
        self.scoring = ScoringEngine(cfg, AnchorDensityResolver.from_config(cfg), self.metrics)
        self.clusterer = SpatialClusterer(cfg['clustering_distance_m'], self.metrics)
        self.sampler = WeightedSampler(cfg['random_seed'], self.metrics)
        self.diversifier = TypeDiversifier(cfg['diversity_weights'], self.metrics)
        self.suppressor = DriveTimeSuppressor.from_config(cfg, self.metrics)
        self.allocator = RegionalFairnessAllocator.from_config(cfg, self.metrics)

    def run(self, candidates, stores=(), target_count=TARGET_COUNT, recent_fingerprints=(), enricher=None):
        if not isinstance(target_count, int) or isinstance(target_count, bool) or target_count < 0:
            raise ConfigError(f"target_count 必须是非负整数, 实际为 {target_count!r}")

        cfg = self.cfg
        pool_size = cfg['max_candidates_per_region']

        # 1. 读入 + 评分
        ingested, ingest_stats = load_candidates(candidates, cfg['pop_min'], self.metrics)
        store_list = load_stores(stores)
        scored = self.scoring.score_all(ingested, store_list)

        # 2. 居民点分支：聚类 -> 采样 -> 类型平衡；网格分支直接取高分
        settlement = [c for c in scored if c.source == 'settlement']
        grid = [c for c in scored if c.source == 'h3_explore']

        representatives = self.clusterer.cluster(settlement)
        sampled = self.sampler.sample(representatives, min(2 * pool_size, len(representatives)))
        diversified = self.diversifier.diversify(sampled, pool_size)
        grid_top = sorted(grid, key=score_key)[:pool_size]

        # 3. 多源融合 + 车程抑制
        pool = CandidateMerger.mix_sources(diversified, grid_top, pool_size, cfg['mix_ratio'])
        nms = self.suppressor.apply(pool)

        # 4. 区域公平分配
        allocation = self.allocator.allocate(nms.selected, target_count, store_list)
        _, fairness_score = self.allocator.analyze_fairness(allocation.selected, list(allocation.regions))

        enricher = enricher or build_rationale
        rationales = {c.id: enricher(c) for c in allocation.selected}

        fingerprint = run_fingerprint(allocation.selected)
        available = len(nms.selected)
        summary = {
            'target': target_count,
            'available': available,
            'available_below_target': available < target_count,
            'shortfall': max(0, target_count - len(allocation.selected)),
            'stage_counts': {
                'received': ingest_stats['received'],
                'ingested': ingest_stats['ingested'],
                'clustered': len(representatives),
                'sampled': len(sampled),
                'diversified': len(diversified),
                'grid': len(grid_top),
                'pool': len(pool),
                'after_nms': available,
                'selected': len(allocation.selected),
            },
            'ingest': ingest_stats,
            'preserved': [c.id for c in nms.preserved],
            'spaced_out': [c.id for c in nms.spaced_out],
            'flagged_regions': list(allocation.flagged),
            'fairness_score': fairness_score,
            'drive_time_stats': self.suppressor.drive_time_stats(allocation.selected),
            'fingerprint': fingerprint,
            'repeat_of_recent': fingerprint in set(recent_fingerprints or ()),
            'random_seed': cfg['random_seed'],
        }
        if summary['available_below_target']:
            print(f"⚠️ 警告: 可用候选 {available} 少于目标 {target_count}，缺口 {summary['shortfall']}")
        for stage, n in summary['stage_counts'].items():
            self.metrics.gauge('pipeline', stage, n)

        return SelectionResult(
            selected=allocation.selected,
            suppressed=nms.suppressed + nms.spaced_out,
            capped=allocation.capped,
            clusters=nms.clusters,
            region_distribution=allocation.region_distribution,
            fairness_ledger=allocation.fairness_ledger,
            summary=summary,
            rationales=rationales,
        )
