from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .angles import normalize, shortest_signed_diff
from .models import ArrowSymbol, BearingEstimate, GuidanceUpdate, Instruction

logger = logging.getLogger(__name__)

# 从正前方顺时针排列的 8 个方位，每个 45°
_OCTANTS = [
    ArrowSymbol.AHEAD,
    ArrowSymbol.AHEAD_RIGHT,
    ArrowSymbol.RIGHT,
    ArrowSymbol.BEHIND_RIGHT,
    ArrowSymbol.BEHIND,
    ArrowSymbol.BEHIND_LEFT,
    ArrowSymbol.LEFT,
    ArrowSymbol.AHEAD_LEFT,
]

# 角度档位：0 直行, 1 微调, 2 转向, 3 身后
_LEVELS = {
    Instruction.GO_STRAIGHT: 0,
    Instruction.SLIGHT_RIGHT: 1,
    Instruction.SLIGHT_LEFT: 1,
    Instruction.TURN_RIGHT: 2,
    Instruction.TURN_LEFT: 2,
    Instruction.BEHIND: 3,
}


def arrow_for_delta(delta_deg: Optional[float]) -> ArrowSymbol:
    """相对角度映射到箭头，分界为 22.5°, 67.5°, 112.5°, 157.5°"""
    if delta_deg is None:
        return ArrowSymbol.NONE
    idx = int(math.floor(normalize(delta_deg + 22.5) / 45.0)) % 8
    return _OCTANTS[idx]


@dataclass
class GuidanceState:
    instruction: Instruction = Instruction.AWAITING_FIX
    arrow: ArrowSymbol = ArrowSymbol.NONE
    last_change_time: Optional[float] = None
    last_announce_time: Optional[float] = None

    def reset(self) -> None:
        self.instruction = Instruction.AWAITING_FIX
        self.arrow = ArrowSymbol.NONE
        self.last_change_time = None
        self.last_announce_time = None


class GuidanceEngine:
    """
    将 (观察者朝向, 方位估计, 距离) 转换为离散的导航指令
    带角度迟滞、最小驻留时间，播报单独限频
    """

    def __init__(
        self,
        arrived_m: float = 1.5,
        straight_deg: float = 15.0,
        slight_deg: float = 35.0,
        turn_deg: float = 100.0,
        hysteresis_deg: float = 6.0,
        dwell_s: float = 1.2,
        announce_s: float = 2.0,
        confidence_gate: float = 0.35,
    ):
        if not 0 < straight_deg < slight_deg < turn_deg <= 180:
            raise ValueError("thresholds must satisfy 0 < straight < slight < turn <= 180")
        self.arrived_m = arrived_m
        self.thresholds = (straight_deg, slight_deg, turn_deg)
        self.hysteresis_deg = hysteresis_deg
        self.dwell_s = dwell_s
        self.announce_s = announce_s
        self.confidence_gate = confidence_gate
        self.state = GuidanceState()

    @classmethod
    def from_config(cls, config: Dict[str, Any], confidence_gate: float = 0.35) -> "GuidanceEngine":
        return cls(
            arrived_m=float(config.get("arrived_m", 1.5)),
            straight_deg=float(config.get("straight_deg", 15.0)),
            slight_deg=float(config.get("slight_deg", 35.0)),
            turn_deg=float(config.get("turn_deg", 100.0)),
            hysteresis_deg=float(config.get("hysteresis_deg", 6.0)),
            dwell_s=float(config.get("dwell_s", 1.2)),
            announce_s=float(config.get("announce_s", 2.0)),
            confidence_gate=confidence_gate,
        )

    def reset(self) -> None:
        self.state.reset()

    def _level(self, abs_delta: float) -> int:
        for level, threshold in enumerate(self.thresholds):
            if abs_delta <= threshold:
                return level
        return 3

    def _hold_level(self, delta: float) -> int:
        """
        迟滞：上一条指令为微调/转向时，只要 |delta| 仍在其分界线 hysteresis_deg
        以内就保持原档位，避免在分界线上来回跳
        """
        abs_delta = abs(delta)
        level = self._level(abs_delta)
        prev = self.state.instruction
        if not prev.is_directional:
            return level
        prev_right = prev in (Instruction.SLIGHT_RIGHT, Instruction.TURN_RIGHT)
        if delta != 0 and (delta > 0) != prev_right:
            return level
        prev_level = _LEVELS[prev]
        lower, upper = self.thresholds[prev_level - 1], self.thresholds[prev_level]
        if level == prev_level - 1 and abs_delta > lower - self.hysteresis_deg:
            return prev_level
        if level == prev_level + 1 and abs_delta <= upper + self.hysteresis_deg:
            return prev_level
        return level

    def decide(
        self,
        heading: float,
        bearing: Optional[BearingEstimate],
        distance_m: Optional[float],
    ) -> Tuple[Instruction, Optional[float]]:
        """不考虑驻留时间的瞬时决策，返回 (指令, 相对角度)"""
        if distance_m is None or bearing is None or bearing.angle_deg is None:
            return Instruction.AWAITING_FIX, None
        if bearing.confidence < self.confidence_gate:
            return Instruction.ROTATE_360, None

        # 正值表示目标在右侧
        delta = shortest_signed_diff(heading, bearing.angle_deg)
        if distance_m < self.arrived_m:
            return Instruction.ARRIVED, delta

        level = self._hold_level(delta)
        if level == 0:
            return Instruction.GO_STRAIGHT, delta
        if level == 3:
            return Instruction.BEHIND, delta
        if level == 1:
            return (Instruction.SLIGHT_RIGHT if delta > 0 else Instruction.SLIGHT_LEFT), delta
        return (Instruction.TURN_RIGHT if delta > 0 else Instruction.TURN_LEFT), delta

    def update(
        self,
        heading: float,
        bearing: Optional[BearingEstimate],
        distance_m: Optional[float],
        now: float,
    ) -> GuidanceUpdate:
        instruction, delta = self.decide(heading, bearing, distance_m)
        state = self.state

        committed = False
        if instruction != state.instruction and (
            state.last_change_time is None or now - state.last_change_time >= self.dwell_s
        ):
            logger.info("导航指令变更: %s -> %s", state.instruction.value, instruction.value)
            state.instruction = instruction
            state.arrow = arrow_for_delta(delta)
            state.last_change_time = now
            committed = True

        should_announce = False
        if committed and (
            state.last_announce_time is None or now - state.last_announce_time >= self.announce_s
        ):
            state.last_announce_time = now
            should_announce = True

        return GuidanceUpdate(
            instruction=state.instruction,
            arrow=state.arrow,
            should_announce=should_announce,
            delta_deg=delta,
            timestamp=now,
        )
