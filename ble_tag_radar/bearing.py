from __future__ import annotations

import logging
import math
from collections import deque
from typing import Any, Deque, Dict, Optional, Tuple

import numpy as np

from .angles import circular_weighted_mean, normalize, unit_vector, vector_angle
from .models import BearingEstimate, Sample

logger = logging.getLogger(__name__)

# MAD 换算为正态标准差的系数
MAD_TO_SIGMA = 1.4826


class BearingEstimator:
    """
    旋转观察者的方位估计：
    在时间窗内收集 (朝向, RSSI)，以 RSSI 的稳健 z 分数作为权重，
    对朝向做加权圆周平均，并在向量空间内平滑发布的方位
    """

    def __init__(
        self,
        window_s: float = 6.0,
        min_samples: int = 12,
        min_spread_deg: float = 60.0,
        confidence_gate: float = 0.35,
        blend: float = 0.18,
    ):
        if window_s <= 0:
            raise ValueError("window_s must be positive")
        if not 0 < blend <= 1:
            raise ValueError("blend must be in (0, 1]")
        self.window_s = window_s
        self.min_samples = min_samples
        self.min_spread_deg = min_spread_deg
        self.confidence_gate = confidence_gate
        self.blend = blend

        self.samples: Deque[Sample] = deque()
        self._vector: Optional[Tuple[float, float]] = None
        self._estimate = BearingEstimate()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "BearingEstimator":
        return cls(
            window_s=float(config.get("window_s", 6.0)),
            min_samples=int(config.get("min_samples", 12)),
            min_spread_deg=float(config.get("min_spread_deg", 60.0)),
            confidence_gate=float(config.get("confidence_gate", 0.35)),
            blend=float(config.get("blend", 0.18)),
        )

    @property
    def estimate(self) -> BearingEstimate:
        return self._estimate

    def reset(self) -> None:
        self.samples.clear()
        self._vector = None
        self._estimate = BearingEstimate()

    def _evict(self, now: float) -> None:
        while self.samples and now - self.samples[0].timestamp > self.window_s:
            self.samples.popleft()

    def _heading_spread(self) -> float:
        headings = [s.heading for s in self.samples]
        return normalize(max(headings) - min(headings))

    def _weights(self) -> np.ndarray:
        rssi = np.fromiter((s.rssi for s in self.samples), dtype=float)
        med = float(np.median(rssi))
        mad = float(np.median(np.abs(rssi - med))) or 1.0
        z = (rssi - med) / (MAD_TO_SIGMA * mad)
        # 只有高于中值附近的样本才贡献权重
        return np.maximum(0.0, z + 1.0)

    def _set_confidence(self, confidence: float) -> BearingEstimate:
        self._estimate = BearingEstimate(
            angle_deg=self._estimate.angle_deg,
            confidence=min(max(confidence, 0.0), 1.0),
        )
        return self._estimate

    def update(self, sample: Sample) -> BearingEstimate:
        self.samples.append(sample)
        self._evict(sample.timestamp)

        if len(self.samples) < self.min_samples:
            return self._set_confidence(0.0)

        spread = self._heading_spread()
        if spread < self.min_spread_deg:
            # 转动角度不够，RSSI 与朝向的相关性没有意义
            logger.debug("朝向跨度不足: %.1f° < %.1f°", spread, self.min_spread_deg)
            return self._set_confidence(0.0)

        weights = self._weights()
        angle, confidence = circular_weighted_mean(
            zip((s.heading for s in self.samples), weights)
        )
        if angle is None:
            return self._set_confidence(0.0)

        if confidence <= self.confidence_gate:
            # 置信度不足时保留上一次的方位
            return self._set_confidence(confidence)

        ux, uy = unit_vector(angle)
        if self._vector is None:
            self._vector = (ux, uy)
        else:
            vx, vy = self._vector
            self._vector = (
                self.blend * ux + (1 - self.blend) * vx,
                self.blend * uy + (1 - self.blend) * vy,
            )

        published = self._estimate.angle_deg
        if math.hypot(*self._vector) > 0:
            published = vector_angle(*self._vector)
        self._estimate = BearingEstimate(angle_deg=published, confidence=min(confidence, 1.0))
        return self._estimate
