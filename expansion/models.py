from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from expansion.config import MIN_EVIDENCE_COMPLETENESS

SETTLEMENT_TYPES = ('city', 'town', 'village')


@dataclass
class ExistingStore:
    """已有门店 (外部只读数据)"""
    id: str
    lat: float
    lng: float
    region_code: str
    turnover: Optional[float] = None


@dataclass
class DataQuality:
    population_estimated: bool = False
    performance_insufficient: bool = False
    anchors_estimated: bool = True
    income_estimated: bool = True
    data_stale: bool = False
    performance_sample_size: int = 0
    completeness_score: float = 0.0
    checklist: Dict[str, float] = field(default_factory=dict)
    reliability_flags: List[str] = field(default_factory=list)

    @property
    def evidence_check(self):
        # 完整度过低只标记 HOLD，不剔除
        return 'PASS' if self.completeness_score >= MIN_EVIDENCE_COMPLETENESS else 'HOLD'


@dataclass
class Score:
    population: float = 0.0
    gap: float = 0.0
    anchor: float = 0.0
    performance: float = 0.0
    saturation_penalty: float = 0.0
    total: float = 0.0
    confidence: float = 0.0
    adjusted_weights: Dict[str, float] = field(default_factory=dict)
    uncertainty_weight: float = 0.0


@dataclass
class AnchorResolution:
    """锚点去重结果 (含审计记录)"""
    raw: Dict[str, int]
    deduplicated: Dict[str, int]
    total_raw: int
    count: int
    capped: int
    score: float
    merge_report: List[dict]
    diminishing_returns_applied: bool


@dataclass
class Candidate:
    id: str
    name: str
    lat: float
    lng: float
    population: float
    settlement_type: str
    region_code: str
    population_estimated: bool = False
    raw_anchor_counts: Optional[Dict[str, int]] = None
    income_proxy: Optional[float] = None
    data_recency: str = 'current'

    # 评分阶段写入
    nearest_store_distances: List[float] = field(default_factory=list)
    store_count_5km: int = 0
    store_count_10km: int = 0
    store_count_15km: int = 0
    nearby_turnover_mean: float = 0.0
    performance_sample_size: int = 0
    anchor_count: int = 0
    anchor_breakdown: Dict[str, int] = field(default_factory=dict)
    anchors: Optional[AnchorResolution] = None
    score: Optional[Score] = None
    data_quality: Optional[DataQuality] = None

    # 聚类 / 采样阶段写入
    cluster_size: int = 1
    cluster_members: Optional[str] = None
    sampling_weight: Optional[float] = None

    source = 'settlement'

    @property
    def coordinates(self) -> Tuple[float, float]:
        return self.lat, self.lng

    @property
    def total(self) -> float:
        return self.score.total if self.score is not None else 0.0


@dataclass
class SettlementCandidate(Candidate):
    """来自居民点 (城市/镇/村) 的候选点"""
    source = 'settlement'


@dataclass
class GridCandidate(Candidate):
    """来自网格探索 (H3 单元) 的候选点"""
    cell_id: Optional[str] = None
    source = 'h3_explore'


@dataclass
class ClusterMember:
    candidate: Candidate
    drive_time_minutes: float
    distance_m: float


@dataclass
class ClusterAudit:
    """车程抑制中的一个簇：保留的中心 + 被抑制的成员"""
    center: Candidate
    suppressed: List[ClusterMember]
    avg_drive_time: float

    @property
    def size(self):
        return len(self.suppressed) + 1


@dataclass
class RegionAllocation:
    region_code: str
    population: float
    population_weight: float
    existing_stores: int
    avg_peer_performance: float
    avg_score: float
    available: int
    base: int = 0
    bonus: int = 0
    manual_cap: Optional[int] = None
    quota: int = 0
    allocated: int = 0
    flagged: bool = False

    def to_ledger(self):
        return {
            'base': self.base,
            'bonus': self.bonus,
            'manual': self.manual_cap,
            'allocated': self.allocated,
            'available': self.available,
            'quota': self.quota,
            'flagged': self.flagged,
            'avg_score': round(self.avg_score, 4),
            'avg_peer_performance': round(self.avg_peer_performance, 2),
            'existing_stores': self.existing_stores,
        }


@dataclass
class SelectionResult:
    selected: List[Candidate] = field(default_factory=list)
    suppressed: List[Candidate] = field(default_factory=list)
    capped: List[Candidate] = field(default_factory=list)
    clusters: List[ClusterAudit] = field(default_factory=list)
    region_distribution: Dict[str, int] = field(default_factory=dict)
    fairness_ledger: Dict[str, dict] = field(default_factory=dict)
    summary: dict = field(default_factory=dict)
    rationales: Dict[str, str] = field(default_factory=dict)
