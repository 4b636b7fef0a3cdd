"""1米标定：在已知 1m 距离处采集一小段 RSSI，取中值作为新的 tx_power"""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from .models import CalibrationResult

logger = logging.getLogger(__name__)


def derive_tx_power(samples: Sequence[float], min_samples: int = 10) -> CalibrationResult:
    """样本数不足时拒绝；否则取中值并取整（dBm）"""
    values = [float(v) for v in samples if math.isfinite(v)]
    if len(values) < min_samples:
        return CalibrationResult(
            accepted=False,
            sample_count=len(values),
            reason=f"too few samples ({len(values)} < {min_samples})",
        )
    tx_power = float(round(float(np.median(values))))
    return CalibrationResult(accepted=True, new_tx_power=tx_power, sample_count=len(values))


class CalibrationRoutine:
    """
    一次性的限时采样：begin() 设定截止时间，add() 收集原始 RSSI，
    到期后 finish() 给出结果；本身不修改任何标定状态
    """

    def __init__(
        self,
        duration_s: float = 3.0,
        min_samples: int = 10,
        poll_interval_s: float = 0.08,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if duration_s <= 0:
            raise ValueError("duration_s must be positive")
        self.duration_s = duration_s
        self.min_samples = min_samples
        self.poll_interval_s = poll_interval_s
        self.clock = clock
        self.sleep = sleep

        self.samples: List[float] = []
        self.deadline: Optional[float] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any], **kwargs) -> "CalibrationRoutine":
        return cls(
            duration_s=float(config.get("duration_s", 3.0)),
            min_samples=int(config.get("min_samples", 10)),
            **kwargs,
        )

    @property
    def active(self) -> bool:
        return self.deadline is not None

    def begin(self, now: Optional[float] = None) -> None:
        now = self.clock() if now is None else now
        self.samples = []
        self.deadline = now + self.duration_s
        logger.info("开始标定，请保持设备距离TAG约1米，持续 %.1f 秒", self.duration_s)

    def add(self, rssi: float) -> None:
        if self.active:
            self.samples.append(float(rssi))

    def expired(self, now: float) -> bool:
        return self.deadline is not None and now >= self.deadline

    def finish(self) -> CalibrationResult:
        result = derive_tx_power(self.samples, self.min_samples)
        self.deadline = None
        self.samples = []
        if result.accepted:
            logger.info("标定完成: tx_power=%.0f dBm (%d 个样本)", result.new_tx_power, result.sample_count)
        else:
            logger.warning("标定失败: %s", result.reason)
        return result

    def cancel(self) -> None:
        self.deadline = None
        self.samples = []

    def run(self, read_rssi: Callable[[], Optional[float]]) -> CalibrationResult:
        """阻塞式轮询：每 poll_interval_s 读取一次最近的原始 RSSI，直到截止"""
        self.begin()
        while not self.expired(self.clock()):
            value = read_rssi()
            if value is not None:
                self.add(value)
            self.sleep(self.poll_interval_s)
        return self.finish()
