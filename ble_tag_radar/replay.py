"""离线回放：读取录制的 (timestamp, rssi, heading) CSV，按时间顺序驱动流水线"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import pandas as pd

from .pipeline import RadarPipeline

logger = logging.getLogger(__name__)

SESSION_COLUMNS = ["timestamp", "rssi", "heading"]

RESULT_COLUMNS = [
    "timestamp",
    "rssi",
    "heading",
    "meters",
    "zone",
    "bearing",
    "confidence",
    "instruction",
    "arrow",
    "should_announce",
    "hit",
]


def _normalize_df(df: pd.DataFrame) -> pd.DataFrame:
    missing = [c for c in SESSION_COLUMNS if c not in df.columns]
    if missing:
        raise KeyError(f"CSV 文件缺少列: {', '.join(missing)}")
    df = df[SESSION_COLUMNS].copy()
    for col in SESSION_COLUMNS:
        # 非法数值置为 NaN 后丢弃
        df[col] = pd.to_numeric(df[col], errors="coerce")
    dropped = int(df.isna().any(axis=1).sum())
    if dropped:
        logger.warning("丢弃 %d 行无效数据", dropped)
    df = df.dropna().sort_values("timestamp", kind="stable")
    return df.reset_index(drop=True)


def load_session_csv(path: str) -> pd.DataFrame:
    if not os.path.exists(path):
        raise FileNotFoundError(f"回放文件不存在：{path}")
    return _normalize_df(pd.read_csv(path))


def replay_session(df: pd.DataFrame, pipeline: Optional[RadarPipeline] = None) -> pd.DataFrame:
    """
    每一行依次作为：朝向更新 -> 时钟推进 -> 信标采样
    返回逐行的估计结果
    """
    df = _normalize_df(df)
    pipeline = pipeline or RadarPipeline(clock=lambda: 0.0)
    pipeline.start_session()

    rows: List[Dict[str, Any]] = []
    last_ts: Optional[float] = None
    for ts, rssi, heading in df.itertuples(index=False, name=None):
        pipeline.on_heading_sample(heading, ts)
        hit = None
        if last_ts is not None:
            hit = pipeline.on_clock_tick(ts - last_ts, ts)
        last_ts = ts
        update = pipeline.on_beacon_sample(rssi, ts)
        if update is None:
            continue
        rows.append(
            {
                "timestamp": ts,
                "rssi": update.distance.rssi,
                "heading": pipeline.heading,
                "meters": update.distance.meters,
                "zone": update.distance.zone.value,
                "bearing": update.bearing.angle_deg,
                "confidence": update.bearing.confidence,
                "instruction": update.guidance.instruction.value,
                "arrow": update.guidance.arrow.value,
                "should_announce": update.guidance.should_announce,
                "hit": hit is not None,
            }
        )

    pipeline.stop_session()
    logger.info("回放完成: %d 条样本", len(rows))
    return pd.DataFrame(rows, columns=RESULT_COLUMNS)


def save_results(results: pd.DataFrame, path: str) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    results.to_csv(path, index=False, encoding="utf-8")
