import numpy as np
from sklearn.neighbors import BallTree

R_EARTH = 6371.0  # 地球半径 km
R_EARTH_M = R_EARTH * 1000.0

LCG_MULTIPLIER = 1664525
LCG_INCREMENT = 1013904223
LCG_MODULUS = 2 ** 32


def haversine_vectorized(lon1, lat1, lon2, lat2):
    """
    向量化计算两点间距离 (km)
    输入可以是浮点数或numpy数组
    """
    lon1, lat1, lon2, lat2 = map(np.radians, [lon1, lat1, lon2, lat2])

    don = lon2 - lon1
    dat = lat2 - lat1

    a = np.sin(dat / 2.0) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(don / 2.0) ** 2
    c = 2 * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))

    return c * R_EARTH


def haversine_m(lat1, lng1, lat2, lng2):
    return float(haversine_vectorized(lng1, lat1, lng2, lat2)) * 1000.0


def drive_minutes(distance_m, speed_kmh):
    """直线距离按固定车速折算的近似车程 (分钟)"""
    return (distance_m / 1000.0) / speed_kmh * 60.0


def max_drive_distance_m(minutes, speed_kmh):
    return minutes / 60.0 * speed_kmh * 1000.0


def clamp(value, low=0.0, high=1.0):
    return max(low, min(high, value))


def score_key(candidate):
    """稳定排序键：分数降序，同分按 id"""
    return -candidate.total, candidate.id


def build_ball_tree(items):
    """
    对带 lat/lng 的对象建立 haversine BallTree
    BallTree 需要弧度坐标 [lat, lng]
    """
    coords_rad = np.radians([[item.lat, item.lng] for item in items])
    return BallTree(coords_rad, metric='haversine')


def to_radians(items):
    return np.radians([[item.lat, item.lng] for item in items])


def meters_to_radians(distance_m):
    return distance_m / R_EARTH_M


class LinearCongruentialGenerator:
    """
    确定性伪随机数 (与种子一一对应)
    s = (s * 1664525 + 1013904223) mod 2^32, 输出 s / 2^32
    """

    def __init__(self, seed):
        self.state = seed % LCG_MODULUS

    def random(self):
        self.state = (self.state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        return self.state / LCG_MODULUS
