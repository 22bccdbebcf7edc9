import copy
import math

# --- 文件路径 ---
CANDIDATES_PATH = './data/candidates.csv'
STORES_PATH = './data/stores.csv'
OUTPUT_SELECTED = './data/output_selected.csv'
OUTPUT_SUPPRESSED = './data/output_suppressed.csv'
OUTPUT_LEDGER = './data/output_fairness_ledger.csv'

# --- 列名映射 (CSV 表头) ---
COL_ID = 'id'
COL_NAME = 'name'
COL_LAT = 'lat'
COL_LNG = 'lng'
COL_POPULATION = 'population'
COL_EST_POPULATION = 'estimatedPopulation'
COL_TYPE = 'settlementType'
COL_REGION = 'regionCode'
COL_TURNOVER = 'turnover'

# --- 运行参数 ---
TARGET_COUNT = 50
RANDOM_SEED = 42  # 采样固定种子，保证可复现

# --- 评分参数 ---
POP_MIN = 1000
WEIGHTS = {
    'population': 0.25,
    'gap': 0.35,
    'anchor': 0.20,
    'performance': 0.20,
    'saturation': 0.15,  # 惩罚项权重
}
SPARSE_DATA_CAP_FACTOR = 0.5
ANCHOR_WEIGHT_CAP = 0.8          # 锚点数量永远是推算值
GAP_REDISTRIBUTION_SHARE = 0.8   # 被削减的权重 80% 给 gap，其余记为不确定性
MIN_PERFORMANCE_SAMPLE = 3
MIN_EVIDENCE_COMPLETENESS = 0.4

# 距离环 (m)
RING_RADII_M = (5000, 10000, 15000)
PERFORMANCE_RADIUS_M = 10000

# --- 锚点去重 ---
MAX_ANCHORS_PER_SITE = 25
DIMINISHING_RETURNS_ENABLED = True
ANCHOR_MERGE_RADII = {
    'mall_tenant': 120,
    'station_shops': 100,
    'grocer_grocer': 60,
    'retail_retail': 60,
}

# --- 聚类 / 采样 / 多样性 ---
CLUSTERING_DISTANCE_M = 5000
MAX_CANDIDATES_PER_REGION = 2000
MIX_RATIO = {'settlement': 0.8, 'h3_explore': 0.2}
DIVERSITY_WEIGHTS = {'cities': 0.4, 'towns': 0.4, 'villages': 0.2}
TYPE_SAMPLING_MULTIPLIER = {'city': 1.2, 'town': 1.0, 'village': 0.8}

# --- 车程抑制 ---
DRIVE_TIME_MINUTES = 10
DRIVE_SPEED_KMH = 50
MIN_SPACING_M = 0        # 0 = 关闭
PRESERVE_TOP_SCORERS = 0

# --- 区域公平 ---
MAX_PER_REGION_PERCENTAGE = 0.40
REGION_PERF_BONUS_SLOTS = 1
BONUS_POOL_SHARE = 0.2
BASE_BY_POPULATION = True
DEFAULT_REGION_POPULATION = 1000000  # 未知区域的默认人口
FAIRNESS_THRESHOLD = 0.2

DEFAULT_CONFIG = {
    'pop_min': POP_MIN,
    'weights': WEIGHTS,
    'mix_ratio': MIX_RATIO,
    'clustering_distance_m': CLUSTERING_DISTANCE_M,
    'diversity_weights': DIVERSITY_WEIGHTS,
    'drive_time_minutes': DRIVE_TIME_MINUTES,
    'drive_speed_kmh': DRIVE_SPEED_KMH,
    'max_anchors_per_site': MAX_ANCHORS_PER_SITE,
    'diminishing_returns_enabled': DIMINISHING_RETURNS_ENABLED,
    'anchor_merge_radii': ANCHOR_MERGE_RADII,
    'sparse_data_cap_factor': SPARSE_DATA_CAP_FACTOR,
    'max_per_region_percentage': MAX_PER_REGION_PERCENTAGE,
    'region_perf_bonus_slots': REGION_PERF_BONUS_SLOTS,
    'base_by_population': BASE_BY_POPULATION,
    'manual_region_caps': {},
    'region_populations': {},
    'max_candidates_per_region': MAX_CANDIDATES_PER_REGION,
    'min_spacing_m': MIN_SPACING_M,
    'preserve_top_scorers': PRESERVE_TOP_SCORERS,
    'random_seed': None,  # 必须由调用方提供
}

# 外部接口使用 camelCase，这里统一转成内部 key
KEY_ALIASES = {
    'popMin': 'pop_min',
    'mixRatio': 'mix_ratio',
    'h3Explore': 'h3_explore',
    'clusteringDistanceMeters': 'clustering_distance_m',
    'diversityWeights': 'diversity_weights',
    'driveTimeMinutes': 'drive_time_minutes',
    'driveSpeedKmh': 'drive_speed_kmh',
    'maxAnchorsPerSite': 'max_anchors_per_site',
    'diminishingReturnsEnabled': 'diminishing_returns_enabled',
    'anchorMergeRadii': 'anchor_merge_radii',
    'sparseDataCapFactor': 'sparse_data_cap_factor',
    'maxPerRegionPercentage': 'max_per_region_percentage',
    'regionPerfBonusSlots': 'region_perf_bonus_slots',
    'baseByPopulation': 'base_by_population',
    'manualRegionCaps': 'manual_region_caps',
    'regionPopulations': 'region_populations',
    'maxCandidatesPerRegion': 'max_candidates_per_region',
    'minSpacingMeters': 'min_spacing_m',
    'preserveTopScorers': 'preserve_top_scorers',
    'randomSeed': 'random_seed',
}

# 这些 key 的值是用户自定义的映射 (区域代码 -> 数值)，不做别名转换
FREE_FORM_KEYS = ('manual_region_caps', 'region_populations')


class ConfigError(ValueError):
    """配置错误：在处理任何候选点之前直接抛出"""


def _normalize_keys(overrides):
    normalized = {}
    for key, value in overrides.items():
        key = KEY_ALIASES.get(key, key)
        if isinstance(value, dict) and key not in FREE_FORM_KEYS:
            value = _normalize_keys(value)
        normalized[key] = value
    return normalized


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _require_positive(name, value, allow_zero=False):
    if not _is_number(value):
        raise ConfigError(f"{name} 必须是数值, 实际为 {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"{name} 必须为{'非负' if allow_zero else '正'}数, 实际为 {value!r}")


def _require_fraction(name, value):
    if not _is_number(value) or not 0 <= value <= 1:
        raise ConfigError(f"{name} 必须位于 [0, 1], 实际为 {value!r}")


def validate_config(cfg):
    unknown = set(cfg) - set(DEFAULT_CONFIG)
    if unknown:
        raise ConfigError(f"未知配置项: {sorted(unknown)}")

    for name in WEIGHTS:
        _require_positive(f"weights.{name}", cfg['weights'].get(name))
    for name in DIVERSITY_WEIGHTS:
        _require_fraction(f"diversity_weights.{name}", cfg['diversity_weights'].get(name))
    for name in MIX_RATIO:
        _require_fraction(f"mix_ratio.{name}", cfg['mix_ratio'].get(name))
    if cfg['mix_ratio']['settlement'] + cfg['mix_ratio']['h3_explore'] <= 0:
        raise ConfigError("mix_ratio 两项之和必须大于 0")
    for name in ANCHOR_MERGE_RADII:
        _require_positive(f"anchor_merge_radii.{name}", cfg['anchor_merge_radii'].get(name))

    _require_positive('pop_min', cfg['pop_min'], allow_zero=True)
    _require_positive('clustering_distance_m', cfg['clustering_distance_m'])
    _require_positive('drive_time_minutes', cfg['drive_time_minutes'])
    _require_positive('drive_speed_kmh', cfg['drive_speed_kmh'])
    _require_positive('min_spacing_m', cfg['min_spacing_m'], allow_zero=True)
    _require_fraction('sparse_data_cap_factor', cfg['sparse_data_cap_factor'])

    pct = cfg['max_per_region_percentage']
    if not _is_number(pct) or not 0 < pct <= 1:
        raise ConfigError(f"max_per_region_percentage 必须位于 (0, 1], 实际为 {pct!r}")

    for name in ('max_anchors_per_site', 'region_perf_bonus_slots', 'max_candidates_per_region',
                 'preserve_top_scorers'):
        value = cfg[name]
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ConfigError(f"{name} 必须是非负整数, 实际为 {value!r}")
    if cfg['max_candidates_per_region'] == 0:
        raise ConfigError("max_candidates_per_region 必须大于 0")

    for region, cap in cfg['manual_region_caps'].items():
        if not isinstance(cap, int) or isinstance(cap, bool) or cap < 0:
            raise ConfigError(f"manual_region_caps[{region!r}] 必须是非负整数, 实际为 {cap!r}")
    for region, population in cfg['region_populations'].items():
        _require_positive(f"region_populations[{region!r}]", population)

    if not isinstance(cfg['diminishing_returns_enabled'], bool):
        raise ConfigError("diminishing_returns_enabled 必须是布尔值")
    if not isinstance(cfg['base_by_population'], bool):
        raise ConfigError("base_by_population 必须是布尔值")

    # 采样阶段依赖种子，不允许静默回退
    seed = cfg['random_seed']
    if seed is None:
        raise ConfigError("缺少 random_seed: 加权采样必须使用调用方提供的种子")
    if not isinstance(seed, int) or isinstance(seed, bool):
        raise ConfigError(f"random_seed 必须是整数, 实际为 {seed!r}")
    return cfg


def build_config(overrides=None):
    """
    默认值 + 调用方覆盖项 -> 校验后的配置字典
    嵌套字典 (weights 等) 按 key 合并，只覆盖给出的子项
    """
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    for key, value in _normalize_keys(overrides or {}).items():
        if isinstance(value, dict) and isinstance(cfg.get(key), dict) and key not in FREE_FORM_KEYS:
            cfg[key].update(value)
        else:
            cfg[key] = copy.deepcopy(value)
    return validate_config(cfg)


# 锚点类型对合并比例 (按聚合计数去重，不做几何计算)
ANCHOR_MERGE_RATIOS = {
    'mall_tenant': 0.3,
    'mall_tenant_grocer_share': 0.6,  # 商场内租户中超市所占比例，其余算零售
    'station_shops': 0.4,
    'grocer_grocer': 0.15,
    'retail_retail': 0.1,
}

# 无原始计数时按居民点类型推算的基础锚点数 (再乘以人口对数因子)
ANCHOR_BASE_COUNTS = {
    'city': {'malls': 5, 'grocers': 8, 'stations': 3, 'retail': 12, 'restaurants': 15},
    'town': {'malls': 2, 'grocers': 4, 'stations': 2, 'retail': 6, 'restaurants': 8},
    'village': {'malls': 0, 'grocers': 2, 'stations': 1, 'retail': 3, 'restaurants': 4},
}
