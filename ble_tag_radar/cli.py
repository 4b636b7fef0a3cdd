from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

import pandas as pd

from .config_manager import ConfigManager
from .mqtt_processor import MQTTRadarProcessor
from .pipeline import RadarPipeline
from .replay import load_session_csv, replay_session, save_results

logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_mqtt(args):
    config = ConfigManager(args.config)
    processor = MQTTRadarProcessor(config)

    t = threading.Thread(target=processor.start_mqtt_client, daemon=True)
    t.start()

    # graceful shutdown
    def handle_sigint(sig, frame):
        processor.stop_mqtt_client()
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_sigint)
    signal.signal(signal.SIGTERM, handle_sigint)

    t.join()


def run_replay(args):
    config = ConfigManager(args.config)
    df = load_session_csv(args.csv)
    results = replay_session(df, RadarPipeline(config, clock=lambda: 0.0))
    if args.output:
        save_results(results, args.output)
        logger.info("结果已保存: %s", args.output)
    if not results.empty:
        last = results.iloc[-1]
        bearing = last["bearing"]
        logger.info(
            "最终估计: 距离 %.2f m, 方位 %s, 置信度 %.0f%%, 指令 %s",
            last["meters"],
            "-" if pd.isna(bearing) else f"{bearing:.0f}°",
            last["confidence"] * 100,
            last["instruction"],
        )
    return 0


def run_calibrate(args):
    config = ConfigManager(args.config)
    processor = MQTTRadarProcessor(config)
    result = processor.calibrate(timeout=args.timeout)
    if result is None or not result.accepted:
        reason = result.reason if result else "no result"
        logger.error("标定未完成: %s", reason)
        return 1
    calib = processor.pipeline.get_calibration()
    config.set_rssi_model_config(calib.tx_power, calib.path_loss_exponent)
    logger.info("TX_POWER 已调整为 %.0f dBm 并保存", calib.tx_power)
    return 0


def run_set_calibration(args):
    config = ConfigManager(args.config)
    rssi_config = config.get_rssi_model_config()
    pipeline = RadarPipeline(config)
    path_loss = args.path_loss if args.path_loss is not None else rssi_config["path_loss_exponent"]
    try:
        calib = pipeline.set_calibration(args.tx_power, path_loss)
    except ValueError as e:
        logger.error("标定参数无效: %s", e)
        return 1
    config.set_rssi_model_config(calib.tx_power, calib.path_loss_exponent)
    logger.info("标定参数已保存: tx_power=%.1f dBm, n=%.2f", calib.tx_power, calib.path_loss_exponent)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="ble-tag-radar", description="BLE Tag Radar CLI")
    parser.add_argument("--config", default=None, help="配置文件路径，默认读取 ./config/config.yaml 或环境变量 BLE_RADAR_CONFIG")
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="运行 MQTT 雷达服务")
    p_run.set_defaults(func=run_mqtt)

    p_replay = sub.add_parser("replay", help="离线回放录制的 CSV")
    p_replay.add_argument("csv", help="包含 timestamp,rssi,heading 列的 CSV 文件")
    p_replay.add_argument("--output", default=None, help="结果 CSV 输出路径")
    p_replay.set_defaults(func=run_replay)

    p_cal = sub.add_parser("calibrate", help="在 1 米处标定 tx_power")
    p_cal.add_argument("--timeout", type=float, default=10.0, help="等待标定结果的最长秒数")
    p_cal.set_defaults(func=run_calibrate)

    p_set = sub.add_parser("set-calibration", help="手动设置标定参数")
    p_set.add_argument("--tx-power", type=float, required=True, help="1米处的RSSI值 (dBm)")
    p_set.add_argument("--path-loss", type=float, default=None, help="路径损耗指数")
    p_set.set_defaults(func=run_set_calibration)

    args = parser.parse_args(argv)
    if not logging.getLogger().handlers:
        setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    # 无子命令/无参数时默认启动服务器
    if not hasattr(args, "func"):
        return run_mqtt(args)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
