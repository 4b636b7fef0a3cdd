from __future__ import annotations

import math
from typing import Any, Dict, Optional

from .models import CalibrationParams, DistanceEstimate, ProximityZone

# 距离模型上限（米）
MAX_DISTANCE = 100.0


def rssi_to_distance(
    rssi: float, calib: CalibrationParams, max_distance: float = MAX_DISTANCE
) -> float:
    """
    对数距离路径损耗模型，返回距离 (单位: 米)
    d = 10 ^ ((tx_power - rssi) / (10 * n))，并限制在 [0, max_distance]
    """
    exponent = (calib.tx_power - rssi) / (10.0 * calib.path_loss_exponent)
    try:
        distance = math.pow(10, exponent)
    except OverflowError:
        distance = max_distance
    return min(max(distance, 0.0), max_distance)


def proximity_zone(meters: Optional[float]) -> ProximityZone:
    """距离分档：<2m / <5m / <10m / 更远"""
    if meters is None:
        return ProximityZone.UNKNOWN
    if meters < 2:
        return ProximityZone.IMMEDIATE
    if meters < 5:
        return ProximityZone.NEAR
    if meters < 10:
        return ProximityZone.MEDIUM
    return ProximityZone.FAR


def validate_calibration(tx_power: float, path_loss_exponent: float) -> CalibrationParams:
    tx_power = float(tx_power)
    path_loss_exponent = float(path_loss_exponent)
    if not math.isfinite(tx_power):
        raise ValueError("tx_power must be finite")
    if not math.isfinite(path_loss_exponent) or path_loss_exponent <= 0:
        raise ValueError("path_loss_exponent must be a positive number")
    return CalibrationParams(tx_power=tx_power, path_loss_exponent=path_loss_exponent)


class DistanceCalculator:
    """基于RSSI的距离估计，持有标定常数"""

    def __init__(self, calib: Optional[CalibrationParams] = None, max_distance: float = MAX_DISTANCE):
        self.calib = calib or CalibrationParams()
        self.max_distance = max_distance

    @classmethod
    def from_config(
        cls, rssi_config: Dict[str, Any], filters_config: Optional[Dict[str, Any]] = None
    ) -> "DistanceCalculator":
        calib = validate_calibration(
            rssi_config.get("tx_power", -61.0),
            rssi_config.get("path_loss_exponent", 2.5),
        )
        max_distance = float((filters_config or {}).get("max_distance", MAX_DISTANCE))
        return cls(calib, max_distance)

    def update_rssi_model_params(self, tx_power: float, path_loss_exponent: float) -> CalibrationParams:
        """更新RSSI模型参数（整体替换，校验失败时不修改）"""
        self.calib = validate_calibration(tx_power, path_loss_exponent)
        return self.calib

    def estimate(self, smoothed_rssi: float, calib: Optional[CalibrationParams] = None) -> float:
        return rssi_to_distance(smoothed_rssi, calib or self.calib, self.max_distance)

    def clamp(self, meters: float) -> float:
        return min(max(meters, 0.0), self.max_distance)

    def to_estimate(self, meters: float, rssi: Optional[float] = None) -> DistanceEstimate:
        meters = self.clamp(meters)
        return DistanceEstimate(meters=meters, rssi=rssi, zone=proximity_zone(meters))
