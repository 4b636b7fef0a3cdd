from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

import numpy as np


@dataclass
class FilterState:
    """单路数据流（RSSI 或距离）的滤波状态"""

    capacity: int = 25
    window: Deque[float] = field(default_factory=deque)
    ema_value: Optional[float] = None
    published: Optional[float] = None

    def __post_init__(self):
        if self.capacity < 1:
            raise ValueError("capacity must be >= 1")
        # 超出容量时自动淘汰最旧的值
        self.window = deque(self.window, maxlen=self.capacity)

    def reset(self) -> None:
        self.window.clear()
        self.ema_value = None
        self.published = None


def push_and_clip(state: FilterState, raw_value: float, k: float = 3.0) -> float:
    """
    中值/MAD 限幅：
    将 raw_value 放入窗口后，计算窗口中值 m 与绝对中位差 d（为 0 时取 1.0），
    把 raw_value 限制在 [m - k*d, m + k*d]
    """
    state.window.append(float(raw_value))
    values = np.fromiter(state.window, dtype=float)
    m = float(np.median(values))
    d = float(np.median(np.abs(values - m))) or 1.0
    return float(np.clip(raw_value, m - k * d, m + k * d))


def ema(state: FilterState, clipped_value: float, alpha: float) -> float:
    """指数移动平均滤波"""
    if state.ema_value is None:
        state.ema_value = float(clipped_value)
    else:
        state.ema_value = alpha * clipped_value + (1 - alpha) * state.ema_value
    return state.ema_value


def deadband(state: FilterState, value: float, threshold: float) -> float:
    """变化量小于阈值时保持上一次发布的值，抑制亚分辨率抖动"""
    if state.published is None or abs(value - state.published) >= threshold:
        state.published = value
    return state.published


class RobustFilter:
    """限幅 + EMA (+ 可选死区) 的两级滤波器"""

    def __init__(
        self,
        capacity: int = 25,
        alpha: float = 0.25,
        outlier_k: float = 3.0,
        deadband_threshold: float = 0.0,
    ):
        if not 0 < alpha <= 1:
            raise ValueError("alpha must be in (0, 1]")
        if outlier_k <= 0:
            raise ValueError("outlier_k must be positive")
        self.state = FilterState(capacity=capacity)
        self.alpha = alpha
        self.outlier_k = outlier_k
        self.deadband_threshold = max(0.0, deadband_threshold)

    @classmethod
    def from_config(cls, config: Dict[str, Any], stream: str = "rssi") -> "RobustFilter":
        """按流名称（rssi / distance）从 filters 配置段创建"""
        return cls(
            capacity=int(config.get(f"{stream}_window", 25)),
            alpha=float(config.get(f"{stream}_alpha", 0.25)),
            outlier_k=float(config.get("outlier_k", 3.0)),
            deadband_threshold=float(config.get(f"{stream}_deadband", 0.0)),
        )

    @property
    def value(self) -> Optional[float]:
        if self.deadband_threshold > 0:
            return self.state.published
        return self.state.ema_value

    def filter(self, raw_value: float) -> float:
        clipped = push_and_clip(self.state, raw_value, self.outlier_k)
        smoothed = ema(self.state, clipped, self.alpha)
        if self.deadband_threshold > 0:
            return deadband(self.state, smoothed, self.deadband_threshold)
        return smoothed

    def clear_window(self) -> None:
        self.state.window.clear()

    def reset(self) -> None:
        self.state.reset()
