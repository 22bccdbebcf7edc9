import json

import numpy as np
import pandas as pd

from expansion.metrics import NullMetricsSink
from expansion.models import ExistingStore, GridCandidate, SettlementCandidate, SETTLEMENT_TYPES

# snake_case / 常见别名 -> 外部接口列名
COLUMN_ALIASES = {
    'latitude': 'lat',
    'longitude': 'lng',
    'lon': 'lng',
    'estimated_population': 'estimatedPopulation',
    'settlement_type': 'settlementType',
    'type': 'settlementType',
    'region_code': 'regionCode',
    'region': 'regionCode',
    'raw_anchor_counts': 'rawAnchorCountsByType',
    'raw_anchor_counts_by_type': 'rawAnchorCountsByType',
    'income_proxy': 'incomeProxy',
    'data_recency': 'dataRecency',
    'cell_id': 'cellId',
    'annual_turnover': 'turnover',
    'annualTurnover': 'turnover',
}

CANDIDATE_COLUMNS = ['id', 'name', 'lat', 'lng', 'population', 'estimatedPopulation', 'settlementType',
                     'regionCode', 'rawAnchorCountsByType', 'incomeProxy', 'dataRecency', 'source', 'cellId']
STORE_COLUMNS = ['id', 'lat', 'lng', 'regionCode', 'turnover']

GRID_SOURCES = {'h3_explore', 'h3', 'grid'}
RECENCY_VALUES = {'current', 'recent', 'stale'}
UNKNOWN_REGION = 'Unknown'


def _to_frame(records, columns):
    df = records.copy() if isinstance(records, pd.DataFrame) else pd.DataFrame(list(records or []))
    df = df.rename(columns={k: v for k, v in COLUMN_ALIASES.items() if k in df.columns and v not in df.columns})
    for col in columns:
        if col not in df.columns:
            df[col] = None
    return df.reset_index(drop=True)


def _clean_coordinates(df, label):
    """
    坐标转数值，无法转换或越界的记为 NaN 后删除
    只打印警告，不中断流程
    """
    df['lat'] = pd.to_numeric(df['lat'], errors='coerce')
    df['lng'] = pd.to_numeric(df['lng'], errors='coerce')
    out_of_range = (df['lat'].abs() > 90) | (df['lng'].abs() > 180)
    df.loc[out_of_range, ['lat', 'lng']] = np.nan

    invalid = df['lat'].isna() | df['lng'].isna()
    dropped = int(invalid.sum())
    if dropped > 0:
        bad_ids = df.loc[invalid, 'id'].astype(str).tolist()
        print(f"⚠️ 警告: 发现并移除了 {dropped} 条经纬度无效的{label}: {', '.join(bad_ids[:10])}")
    df = df.loc[~invalid].copy()
    df['lat'] = df['lat'].astype(float)
    df['lng'] = df['lng'].astype(float)
    return df, dropped


def _fill_ids(df, prefix):
    missing = df['id'].isna() | (df['id'].astype(str).str.strip() == '')
    df.loc[missing, 'id'] = [f"{prefix}_{i}" for i in df.index[missing]]
    df['id'] = df['id'].astype(str)
    return df


def _optional_float(value):
    if value is None:
        return None
    value = pd.to_numeric(value, errors='coerce')
    return None if pd.isna(value) else float(value)


def _parse_anchor_counts(value):
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            print(f"⚠️ 警告: 无法解析锚点计数 {value!r}，改为按居民点类型推算")
            return None
    if not isinstance(value, dict):
        return None
    counts = {}
    for key, count in value.items():
        count = pd.to_numeric(count, errors='coerce')
        counts[str(key)] = 0 if pd.isna(count) else max(int(count), 0)
    return counts


def infer_settlement_type(population):
    if population >= 100000:
        return 'city'
    if population >= 10000:
        return 'town'
    return 'village'


def _is_grid(row):
    source = row.get('source')
    if isinstance(source, str) and source.strip().lower() in GRID_SOURCES:
        return True
    cell_id = row.get('cellId')
    return cell_id is not None and not pd.isna(cell_id)


def _build_candidate(row):
    population = _optional_float(row.get('population'))
    estimated = _optional_float(row.get('estimatedPopulation'))
    population_estimated = not (population and population > 0)
    if population_estimated:
        population = estimated if estimated and estimated > 0 else 0.0

    settlement_type = str(row.get('settlementType') or '').strip().lower()
    if settlement_type not in SETTLEMENT_TYPES:
        settlement_type = infer_settlement_type(population)

    region = row.get('regionCode')
    region = UNKNOWN_REGION if region is None or pd.isna(region) or str(region).strip() == '' else str(region)

    recency = str(row.get('dataRecency') or 'current').strip().lower()
    name = row.get('name')

    kwargs = dict(
        id=row['id'],
        name=row['id'] if name is None or pd.isna(name) else str(name),
        lat=row['lat'],
        lng=row['lng'],
        population=population,
        settlement_type=settlement_type,
        region_code=region,
        population_estimated=population_estimated,
        raw_anchor_counts=_parse_anchor_counts(row.get('rawAnchorCountsByType')),
        income_proxy=_optional_float(row.get('incomeProxy')),
        data_recency=recency if recency in RECENCY_VALUES else 'current',
    )
    if _is_grid(row):
        cell_id = row.get('cellId')
        return GridCandidate(cell_id=None if cell_id is None or pd.isna(cell_id) else str(cell_id), **kwargs)
    return SettlementCandidate(**kwargs)


def load_candidates(records, pop_min=0, metrics=None):
    """
    原始候选记录 (list[dict] 或 DataFrame) -> Candidate 列表
    返回 (candidates, stats)
    """
    metrics = metrics or NullMetricsSink()
    df = _to_frame(records, CANDIDATE_COLUMNS)
    stats = {'received': len(df), 'dropped_malformed': 0, 'duplicates': 0, 'below_pop_min': 0, 'ingested': 0}
    if df.empty:
        return [], stats

    df = _fill_ids(df, 'cand')
    df, stats['dropped_malformed'] = _clean_coordinates(df, '候选点')

    dup_mask = df['id'].duplicated(keep='first')
    stats['duplicates'] = int(dup_mask.sum())
    if stats['duplicates']:
        print(f"⚠️ 警告: {stats['duplicates']} 个重复的候选 id，仅保留首条")
        df = df.loc[~dup_mask]

    candidates = []
    for row in df.to_dict('records'):
        candidate = _build_candidate(row)
        if candidate.population < pop_min:
            stats['below_pop_min'] += 1
            continue
        candidates.append(candidate)

    stats['ingested'] = len(candidates)
    metrics.count('ingest', 'dropped_malformed', stats['dropped_malformed'])
    metrics.count('ingest', 'below_pop_min', stats['below_pop_min'])
    metrics.count('ingest', 'ingested', len(candidates))
    print(f"[Ingest] 候选点: 输入 {stats['received']} | 坐标无效 {stats['dropped_malformed']} | "
          f"人口不足(<{pop_min}) {stats['below_pop_min']} | 保留 {len(candidates)}")
    return candidates, stats


def load_stores(records):
    """已有门店记录 -> ExistingStore 列表 (坐标无效的同样剔除)"""
    df = _to_frame(records, STORE_COLUMNS)
    if df.empty:
        return []
    df = _fill_ids(df, 'store')
    df, _ = _clean_coordinates(df, '门店')

    stores = []
    for row in df.to_dict('records'):
        region = row.get('regionCode')
        stores.append(ExistingStore(
            id=row['id'],
            lat=row['lat'],
            lng=row['lng'],
            region_code=UNKNOWN_REGION if region is None or pd.isna(region) else str(region),
            turnover=_optional_float(row.get('turnover')),
        ))
    return stores
