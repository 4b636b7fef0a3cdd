from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .angles import abs_angular_diff, normalize
from .models import HitEvent


@dataclass
class SweepState:
    angle_deg: float = 0.0
    last_hit_time: Optional[float] = None

    def reset(self) -> None:
        self.angle_deg = 0.0
        self.last_hit_time = None


def advance(state: SweepState, elapsed_s: float, rate_deg_s: float) -> float:
    """扫描线按角速度积分前进"""
    state.angle_deg = normalize(state.angle_deg + rate_deg_s * elapsed_s)
    return state.angle_deg


def check_hit(
    state: SweepState,
    target_angle_deg: float,
    now: float,
    tolerance_deg: float = 10.0,
    min_interval_s: float = 0.5,
) -> bool:
    """扫描线落入目标方向容差内且距离上次命中超过最小间隔时触发"""
    if abs_angular_diff(state.angle_deg, target_angle_deg) >= tolerance_deg:
        return False
    if state.last_hit_time is not None and now - state.last_hit_time <= min_interval_s:
        return False
    state.last_hit_time = now
    return True


def project_blip(
    distance_m: float,
    bearing_deg: Optional[float],
    radius_px: float = 160.0,
    max_meters: float = 20.0,
) -> Tuple[float, float]:
    """
    目标在雷达平面上的位置（中心为观察者，0° 朝上）
    半径与距离成正比，超出 max_meters 的目标画在边缘
    """
    r_rel = min(max(distance_m / max_meters, 0.0), 1.0)
    r_px = 8 + r_rel * (radius_px - 12)
    rad = math.radians(bearing_deg if bearing_deg is not None else 0.0)
    x = radius_px + r_px * math.sin(rad)
    y = radius_px - r_px * math.cos(rad)
    return x, y


class SweepHitDetector:
    """雷达扫描线与命中检测"""

    def __init__(
        self,
        rate_deg_s: float = 120.0,
        tolerance_deg: float = 10.0,
        min_interval_s: float = 0.5,
    ):
        self.rate_deg_s = rate_deg_s
        self.tolerance_deg = tolerance_deg
        self.min_interval_s = min_interval_s
        self.state = SweepState()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SweepHitDetector":
        return cls(
            rate_deg_s=float(config.get("rate_deg_s", 120.0)),
            tolerance_deg=float(config.get("tolerance_deg", 10.0)),
            min_interval_s=float(config.get("min_interval_s", 0.5)),
        )

    @property
    def angle_deg(self) -> float:
        return self.state.angle_deg

    def tick(self, elapsed_s: float, target_angle_deg: Optional[float], now: float) -> Optional[HitEvent]:
        advance(self.state, elapsed_s, self.rate_deg_s)
        if target_angle_deg is None:
            return None
        if check_hit(self.state, target_angle_deg, now, self.tolerance_deg, self.min_interval_s):
            return HitEvent(timestamp=now, angle_deg=self.state.angle_deg)
        return None

    def reset_timers(self) -> None:
        self.state.last_hit_time = None
