import numpy as np

from expansion.config import CLUSTERING_DISTANCE_M
from expansion.metrics import NullMetricsSink
from expansion.utils import build_ball_tree, meters_to_radians, score_key, to_radians


class SpatialClusterer:
    """
    贪心空间聚类：半径内的候选点归为一簇，每簇只保留总分最高的代表点
    单次遍历，合并后不再重新聚类
    """

    def __init__(self, radius_m=CLUSTERING_DISTANCE_M, metrics=None):
        self.radius_m = radius_m
        self.metrics = metrics or NullMetricsSink()

    def build_clusters(self, candidates):
        """
        按分数降序遍历 (同分按 id)，因此每簇的种子点就是代表点，
        所有成员都在代表点的聚类半径内
        """
        if not candidates:
            return []

        ordered = sorted(candidates, key=score_key)
        tree = build_ball_tree(ordered)
        neighbors = tree.query_radius(to_radians(ordered), r=meters_to_radians(self.radius_m))

        processed = np.zeros(len(ordered), dtype=bool)
        clusters = []
        for i in range(len(ordered)):
            if processed[i]:
                continue
            members = [i] + sorted(int(j) for j in neighbors[i] if j != i and not processed[j])
            processed[members] = True
            clusters.append([ordered[j] for j in members])
        return clusters

    def cluster(self, candidates):
        clusters = self.build_clusters(candidates)

        representatives = []
        for members in clusters:
            best = min(members, key=score_key)
            best.cluster_size = len(members)
            best.cluster_members = ', '.join(m.name for m in members) if len(members) > 1 else None
            representatives.append(best)

        self.metrics.count('clustering', 'clusters', len(clusters))
        self.metrics.count('clustering', 'discarded', len(candidates) - len(representatives))
        if clusters:
            print(f"[Cluster] 空间聚类: {len(candidates)} -> {len(representatives)} 个代表点 "
                  f"(半径 {self.radius_m}m, 平均簇大小 {len(candidates) / len(clusters):.1f})")
        return representatives
