"""Shared record factories for the expansion test suite."""
import numpy as np
import pytest

from expansion.models import ExistingStore, GridCandidate, Score, SettlementCandidate

REGION_CENTERS = {
    'BY': (48.50, 11.50),
    'BE': (52.50, 13.40),
    'NW': (51.40, 7.00),
    'HH': (53.55, 10.00),
}


def make_candidate(cid, lat=52.52, lng=13.405, total=0.5, region='BE', population=50000,
                   settlement_type='town', grid=False):
    """Candidate with a pre-computed score, for stages that run after scoring."""
    cls = GridCandidate if grid else SettlementCandidate
    c = cls(id=cid, name=cid, lat=lat, lng=lng, population=population,
            settlement_type=settlement_type, region_code=region)
    c.score = Score(total=total)
    return c


def make_store(sid, lat, lng, region='BE', turnover=None):
    return ExistingStore(id=sid, lat=lat, lng=lng, region_code=region, turnover=turnover)


def synthetic_records(n=120, seed=0):
    """Deterministic candidate records spread over four regions (about 10% grid cells)."""
    rng = np.random.RandomState(seed)
    codes = sorted(REGION_CENTERS)
    records = []
    for i in range(n):
        code = codes[i % len(codes)]
        lat0, lng0 = REGION_CENTERS[code]
        population = int(rng.randint(800, 900000))
        record = {
            'id': f"cand_{i:03d}",
            'name': f"Ort {i}",
            'lat': lat0 + rng.uniform(-0.8, 0.8),
            'lng': lng0 + rng.uniform(-1.2, 1.2),
            'population': population,
            'regionCode': code,
        }
        if i % 10 == 9:
            record['source'] = 'h3_explore'
            record['cellId'] = f"871f{i:06d}ffffff"
        records.append(record)
    return records


def synthetic_stores(n=30, seed=1):
    rng = np.random.RandomState(seed)
    codes = sorted(REGION_CENTERS)
    stores = []
    for i in range(n):
        code = codes[i % len(codes)]
        lat0, lng0 = REGION_CENTERS[code]
        stores.append({
            'id': f"store_{i:03d}",
            'lat': lat0 + rng.uniform(-0.8, 0.8),
            'lng': lng0 + rng.uniform(-1.2, 1.2),
            'regionCode': code,
            'turnover': float(rng.randint(300000, 1200000)),
        })
    return stores


@pytest.fixture
def base_config():
    return {'random_seed': 42}


@pytest.fixture
def example_records():
    """Two nearby Berlin candidates (about 140 m apart) plus a far-away Munich one."""
    return [
        {'id': 'c1', 'name': 'Berlin Mitte', 'lat': 52.5200, 'lng': 13.4050, 'population': 500000,
         'settlementType': 'city', 'regionCode': 'BE'},
        {'id': 'c2', 'name': 'Berlin Nord', 'lat': 52.5210, 'lng': 13.4060, 'population': 10000,
         'settlementType': 'town', 'regionCode': 'BE'},
        {'id': 'c3', 'name': 'Muenchen', 'lat': 48.1351, 'lng': 11.5820, 'population': 50000,
         'settlementType': 'town', 'regionCode': 'BY'},
    ]
