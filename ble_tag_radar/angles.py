from __future__ import annotations

import math
from typing import Iterable, Optional, Tuple

import numpy as np


def normalize(deg: float) -> float:
    """将角度归一化到 [0, 360)"""
    d = math.fmod(deg, 360.0)
    if d < 0:
        d += 360.0
    # 极小负数加 360 后可能恰好等于 360
    if d >= 360.0:
        d = 0.0
    return d


def shortest_signed_diff(from_deg: float, to_deg: float) -> float:
    """
    从 from_deg 转到 to_deg 的最短有符号角度，范围 (-180, 180]
    正值表示顺时针（向右转）
    """
    d = normalize(to_deg - from_deg)
    if d > 180.0:
        d -= 360.0
    return d


def abs_angular_diff(a: float, b: float) -> float:
    """两个角度之间的最小绝对差，范围 [0, 180]"""
    return abs(shortest_signed_diff(a, b))


def unit_vector(deg: float) -> Tuple[float, float]:
    rad = math.radians(deg)
    return math.cos(rad), math.sin(rad)


def vector_angle(x: float, y: float) -> float:
    return normalize(math.degrees(math.atan2(y, x)))


def circular_weighted_mean(
    samples: Iterable[Tuple[float, float]],
) -> Tuple[Optional[float], float]:
    """
    加权圆周平均
    samples: [(角度, 权重>=0), ...]
    返回 (平均角度, 合成向量长度[0,1])；长度即一致性/置信度，
    总权重为 0 或各向量完全抵消时角度为 None
    """
    data = np.asarray(list(samples), dtype=float)
    if data.size == 0:
        return None, 0.0
    data = data.reshape(-1, 2)
    weights = np.clip(data[:, 1], 0.0, None)
    total = float(weights.sum())
    if total <= 0:
        return None, 0.0
    rad = np.deg2rad(data[:, 0])
    x = float(np.sum(weights * np.cos(rad))) / total
    y = float(np.sum(weights * np.sin(rad))) / total
    length = min(math.hypot(x, y), 1.0)
    if length == 0.0:
        return None, 0.0
    return vector_angle(x, y), length


def heading_from_magnetometer(x: float, y: float) -> float:
    """由磁力计原始向量计算朝向 (0..360)"""
    return vector_angle(x, y)
