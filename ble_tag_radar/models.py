from __future__ import annotations

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Sample:
    """一次信标采样：平滑后的 RSSI 与当时的罗盘朝向"""

    timestamp: float
    rssi: float  # dBm，通常 -100 ~ -30
    heading: float  # 度，[0, 360)


@dataclass(frozen=True)
class CalibrationParams:
    """距离模型的两个标定常数"""

    tx_power: float = -61.0  # 1米处的RSSI值 (dBm)
    path_loss_exponent: float = 2.5  # 路径损耗指数，室内一般 2.0~3.5


class ProximityZone(Enum):
    UNKNOWN = "unknown"
    IMMEDIATE = "immediate"
    NEAR = "near"
    MEDIUM = "medium"
    FAR = "far"


class Instruction(Enum):
    AWAITING_FIX = "awaiting_fix"
    ROTATE_360 = "rotate_360"
    GO_STRAIGHT = "go_straight"
    SLIGHT_RIGHT = "slight_right"
    SLIGHT_LEFT = "slight_left"
    TURN_RIGHT = "turn_right"
    TURN_LEFT = "turn_left"
    BEHIND = "behind"
    ARRIVED = "arrived"

    @property
    def is_directional(self) -> bool:
        """是否为 slight/turn 类指令（参与角度迟滞）"""
        return self in {
            Instruction.SLIGHT_RIGHT,
            Instruction.SLIGHT_LEFT,
            Instruction.TURN_RIGHT,
            Instruction.TURN_LEFT,
        }


class ArrowSymbol(Enum):
    """以正前方为中心的 8 个方位箭头"""

    NONE = "·"
    AHEAD = "↑"
    AHEAD_RIGHT = "↗"
    RIGHT = "→"
    BEHIND_RIGHT = "↘"
    BEHIND = "↓"
    BEHIND_LEFT = "↙"
    LEFT = "←"
    AHEAD_LEFT = "↖"


def _flatten(d: Dict[str, Any]) -> Dict[str, Any]:
    # 枚举转为值，并过滤掉值为None的键
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in d.items() if v is not None}


@dataclass(frozen=True)
class BearingEstimate:
    """
    方位估计结果
    angle_deg 为 None 表示尚未定向，与 0 度不同
    """

    angle_deg: Optional[float] = None
    confidence: float = 0.0

    @property
    def has_fix(self) -> bool:
        return self.angle_deg is not None

    def to_dict(self) -> Dict[str, Any]:
        return _flatten(asdict(self))


@dataclass(frozen=True)
class DistanceEstimate:
    meters: float
    rssi: Optional[float] = None
    zone: ProximityZone = ProximityZone.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        return _flatten(asdict(self))


@dataclass(frozen=True)
class HitEvent:
    """扫描线扫过目标方向时触发（用于触觉反馈）"""

    timestamp: float
    angle_deg: float

    def to_dict(self) -> Dict[str, Any]:
        return _flatten(asdict(self))


@dataclass(frozen=True)
class GuidanceUpdate:
    instruction: Instruction
    arrow: ArrowSymbol
    should_announce: bool
    delta_deg: Optional[float] = None
    timestamp: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return _flatten(asdict(self))


@dataclass(frozen=True)
class CalibrationResult:
    accepted: bool
    new_tx_power: Optional[float] = None
    sample_count: int = 0
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _flatten(asdict(self))


@dataclass(frozen=True)
class BeaconFrame:
    """
    传输层上报的一帧信标广播
    格式：名称,RSSI[,时间戳];名称,RSSI[,时间戳];...
    时间戳为上报设备的时钟，仅作记录，不参与估计
    """

    name: str
    rssi: float
    timestamp: Optional[float] = None

    def matches(self, tag_code: str) -> bool:
        """大小写不敏感的子串匹配"""
        if not tag_code:
            return False
        return tag_code.upper() in self.name.upper()

    @classmethod
    def parse(cls, data_str: str) -> List["BeaconFrame"]:
        frames: List[BeaconFrame] = []
        for item in data_str.strip().split(";"):
            fields = [f.strip() for f in item.split(",")]
            if len(fields) not in (2, 3) or not fields[0]:
                continue
            try:
                rssi = float(fields[1])
                ts = float(fields[2]) if len(fields) == 3 else None
            except ValueError:
                continue
            frames.append(cls(name=fields[0], rssi=rssi, timestamp=ts))
        return frames


@dataclass(frozen=True)
class SampleUpdate:
    """一次信标采样经过流水线后的全部输出"""

    distance: DistanceEstimate
    bearing: BearingEstimate
    guidance: GuidanceUpdate
    calibration: Optional[CalibrationResult] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {}
        d.update(self.distance.to_dict())
        d.update(self.bearing.to_dict())
        d.update(self.guidance.to_dict())
        return d
