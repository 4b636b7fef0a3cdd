from __future__ import annotations

import logging
import math
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from .angles import normalize
from .bearing import BearingEstimator
from .calculator import DistanceCalculator
from .calibration import CalibrationRoutine
from .config_manager import ConfigManager
from .filters import RobustFilter
from .guidance import GuidanceEngine
from .models import (
    BearingEstimate,
    CalibrationParams,
    CalibrationResult,
    DistanceEstimate,
    GuidanceUpdate,
    HitEvent,
    Sample,
    SampleUpdate,
)
from .sweep import SweepHitDetector, project_blip

logger = logging.getLogger(__name__)

_EVENTS = ("distance", "bearing", "hit", "guidance", "calibration")


def _finite(value: Any) -> Optional[float]:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


class RadarPipeline:
    """
    估计流水线入口：
    信标 RSSI -> 限幅/EMA -> 距离 + 方位 -> 导航指令；时钟 -> 扫描线命中
    所有输入在同一把锁下串行处理（单写者）
    """

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.lock = threading.RLock()
        self.config_manager = config_manager
        self.clock = clock

        if config_manager is not None:
            filters_config = config_manager.get_filters_config()
            bearing_config = config_manager.get_bearing_config()
            sweep_config = config_manager.get_sweep_config()
            rssi_config = config_manager.get_rssi_model_config()
            guidance_config = config_manager.get_guidance_config()
            calibration_config = config_manager.get_calibration_config()
        else:
            filters_config, bearing_config, sweep_config = {}, {}, {}
            rssi_config, guidance_config, calibration_config = {}, {}, {}

        self.rssi_filter = RobustFilter.from_config(filters_config, "rssi")
        self.distance_filter = RobustFilter.from_config(
            {"distance_alpha": 0.15, "distance_deadband": 0.1, **filters_config}, "distance"
        )
        self.calculator = DistanceCalculator.from_config(rssi_config, filters_config)
        self.bearing = BearingEstimator.from_config(bearing_config)
        self.sweep = SweepHitDetector.from_config(sweep_config)
        self.guidance = GuidanceEngine.from_config(
            guidance_config, confidence_gate=self.bearing.confidence_gate
        )
        self.calibration = CalibrationRoutine.from_config(calibration_config, clock=clock)
        self.max_meters = float(sweep_config.get("max_meters", 20.0))

        self.active = False
        self.heading = 0.0
        self.last_raw_rssi: Optional[float] = None
        self.distance: Optional[DistanceEstimate] = None
        self.last_guidance: Optional[GuidanceUpdate] = None

        self._listeners: Dict[str, List[Callable[[Any], None]]] = {e: [] for e in _EVENTS}

    # ---------- Listeners ----------
    def _register(self, event: str, fn: Callable[[Any], None]) -> None:
        assert callable(fn), f"{event} listener must be a callable function"
        self._listeners[event].append(fn)

    def on_distance(self, fn: Callable[[DistanceEstimate], None]) -> None:
        self._register("distance", fn)

    def on_bearing(self, fn: Callable[[BearingEstimate], None]) -> None:
        self._register("bearing", fn)

    def on_hit(self, fn: Callable[[HitEvent], None]) -> None:
        self._register("hit", fn)

    def on_guidance(self, fn: Callable[[GuidanceUpdate], None]) -> None:
        self._register("guidance", fn)

    def on_calibration(self, fn: Callable[[CalibrationResult], None]) -> None:
        self._register("calibration", fn)

    def remove_listener(self, fn: Callable[[Any], None]) -> None:
        """从所有事件中移除回调"""
        with self.lock:
            for listeners in self._listeners.values():
                while fn in listeners:
                    listeners.remove(fn)

    def _emit(self, event: str, payload: Any) -> None:
        for fn in list(self._listeners[event]):
            try:
                fn(payload)
            except Exception as e:
                logger.exception("%s 回调出错: %s", event, e)

    # ---------- Session ----------
    def _reset(self) -> None:
        self.rssi_filter.reset()
        self.distance_filter.reset()
        self.bearing.reset()
        self.guidance.reset()
        self.sweep.reset_timers()
        self.distance = None
        self.last_raw_rssi = None
        self.last_guidance = None

    def start_session(self) -> None:
        with self.lock:
            self._reset()
            self.active = True
            logger.info("开始扫描")

    def stop_session(self) -> None:
        with self.lock:
            if self.calibration.active:
                self.calibration.cancel()
                self._emit(
                    "calibration",
                    CalibrationResult(accepted=False, reason="session stopped"),
                )
            self._reset()
            self.active = False
            logger.info("停止扫描")

    # ---------- Calibration ----------
    def get_calibration(self) -> CalibrationParams:
        return self.calculator.calib

    def set_calibration(self, tx_power: float, path_loss_exponent: float) -> CalibrationParams:
        with self.lock:
            return self._commit_calibration(tx_power, path_loss_exponent)

    def _commit_calibration(self, tx_power: float, path_loss_exponent: float) -> CalibrationParams:
        calib = self.calculator.update_rssi_model_params(tx_power, path_loss_exponent)
        # 旧标定下的距离历史不再可比
        self.distance_filter.reset()
        logger.info("标定参数更新: tx_power=%.1f, n=%.2f", calib.tx_power, calib.path_loss_exponent)
        return calib

    def begin_calibration(self, now: Optional[float] = None) -> Optional[CalibrationResult]:
        """开始 1 米标定；结果通过 on_calibration 回调给出。未在扫描时立即拒绝"""
        with self.lock:
            if not self.active:
                result = CalibrationResult(accepted=False, reason="session not active")
                logger.warning("标定失败: 请先开始扫描")
                self._emit("calibration", result)
                return result
            self.rssi_filter.clear_window()
            self.calibration.begin(now)
            return None

    def _check_calibration(self, now: float) -> Optional[CalibrationResult]:
        if not self.calibration.expired(now):
            return None
        result = self.calibration.finish()
        if result.accepted:
            self._commit_calibration(result.new_tx_power, self.calculator.calib.path_loss_exponent)
        self._emit("calibration", result)
        return result

    # ---------- Inputs ----------
    def on_beacon_sample(self, rssi: float, timestamp: Optional[float] = None) -> Optional[SampleUpdate]:
        with self.lock:
            if not self.active:
                return None
            value = _finite(rssi)
            if value is None:
                logger.debug("丢弃无效RSSI: %r", rssi)
                return None
            now = self.clock() if timestamp is None else float(timestamp)
            self.last_raw_rssi = value

            calibration_result = None
            if self.calibration.active:
                calibration_result = self._check_calibration(now)
                if calibration_result is None:
                    self.calibration.add(value)

            smoothed = self.rssi_filter.filter(value)
            meters = self.distance_filter.filter(self.calculator.estimate(smoothed))
            distance = self.calculator.to_estimate(meters, smoothed)
            self.distance = distance

            bearing = self.bearing.update(Sample(timestamp=now, rssi=smoothed, heading=self.heading))
            guidance = self.guidance.update(self.heading, bearing, distance.meters, now)
            self.last_guidance = guidance

            self._emit("distance", distance)
            self._emit("bearing", bearing)
            self._emit("guidance", guidance)
            return SampleUpdate(distance, bearing, guidance, calibration_result)

    def on_heading_sample(self, heading: float, timestamp: Optional[float] = None) -> Optional[GuidanceUpdate]:
        with self.lock:
            value = _finite(heading)
            if value is None:
                logger.debug("丢弃无效朝向: %r", heading)
                return None
            self.heading = normalize(value)
            if not self.active:
                return None
            now = self.clock() if timestamp is None else float(timestamp)
            guidance = self.guidance.update(
                self.heading,
                self.bearing.estimate,
                self.distance.meters if self.distance else None,
                now,
            )
            self.last_guidance = guidance
            self._emit("guidance", guidance)
            return guidance

    def on_clock_tick(self, elapsed_s: float, now: Optional[float] = None) -> Optional[HitEvent]:
        with self.lock:
            elapsed = _finite(elapsed_s)
            if elapsed is None or elapsed <= 0:
                return None
            now = self.clock() if now is None else float(now)
            if self.calibration.active:
                self._check_calibration(now)
            hit = self.sweep.tick(elapsed, self._target_angle(), now)
            if hit is not None:
                self._emit("hit", hit)
            return hit

    # ---------- Views ----------
    def _target_angle(self) -> Optional[float]:
        if self.distance is None:
            return None
        # 尚未定向时目标固定在雷达顶部
        angle = self.bearing.estimate.angle_deg
        return angle if angle is not None else 0.0

    def snapshot(self, radius_px: float = 160.0) -> Dict[str, Any]:
        """当前状态的平面视图（供界面/上行消息使用）"""
        with self.lock:
            bearing = self.bearing.estimate
            data: Dict[str, Any] = {
                "active": self.active,
                "heading": self.heading,
                "sweep_deg": self.sweep.angle_deg,
                "rssi": self.rssi_filter.value,
                "confidence": bearing.confidence,
            }
            if bearing.angle_deg is not None:
                data["bearing"] = bearing.angle_deg
            if self.distance is not None:
                data.update(self.distance.to_dict())
                data["blip"] = project_blip(
                    self.distance.meters, bearing.angle_deg, radius_px, self.max_meters
                )
            if self.last_guidance is not None:
                data["instruction"] = self.last_guidance.instruction.value
                data["arrow"] = self.last_guidance.arrow.value
            return data
