"""CLI config and defaults."""

from __future__ import annotations

import argparse
import math
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from .control.attitude_source import AhrsSettings, preset_settings
from .control.fusion_engine import FusionSettings


@dataclass(frozen=True)
class AppConfig:
    source: str = "replay"
    replay: str = ""
    bridge_host: str = "127.0.0.1"
    bridge_port: int = 24568
    poll_ms: int = 5
    default_dt: float = 0.01
    staleness_threshold_s: float = 0.1
    high_confidence_cutoff: float = 0.7
    high_confidence_blend: float = 0.8
    low_confidence_blend_scale: float = 0.3
    velocity_damping: float = 0.98
    suppress_while_initializing: bool = True
    ahrs_preset: str = "default"
    ahrs_gain: Optional[float] = None
    initial_x: float = 0.0
    initial_y: float = 0.0
    initial_z: float = 0.0
    status_hz: float = 5.0
    log_level: str = "info"


_APP_CONFIG_FIELDS = {f.name for f in fields(AppConfig)}
_BOOL_FIELDS = {"suppress_while_initializing"}
_INT_FIELDS = {"bridge_port", "poll_ms"}
_FLOAT_FIELDS = {
    "default_dt",
    "staleness_threshold_s",
    "high_confidence_cutoff",
    "high_confidence_blend",
    "low_confidence_blend_scale",
    "velocity_damping",
    "initial_x",
    "initial_y",
    "initial_z",
    "status_hz",
}
_OPTIONAL_FLOAT_FIELDS = {"ahrs_gain"}
_STRING_FIELDS = {"source", "replay", "bridge_host", "ahrs_preset", "log_level"}
_NEGATED_KEYS = {
    "no_suppress_while_initializing": "suppress_while_initializing",
}


def _parse_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        s = value.strip().lower()
        if s in {"1", "true", "yes", "on"}:
            return True
        if s in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"config key '{key}' expects a bool, got {value!r}")


def _coerce_config_value(key: str, value: Any) -> Any:
    try:
        if key in _BOOL_FIELDS:
            return _parse_bool(value, key)
        if key in _INT_FIELDS:
            return int(value)
        if key in _FLOAT_FIELDS:
            return float(value)
        if key in _OPTIONAL_FLOAT_FIELDS:
            return None if value is None else float(value)
        if key in _STRING_FIELDS:
            return "" if value is None else str(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid value for config key '{key}': {value!r}") from exc
    raise ValueError(f"unsupported config key '{key}'")


def _normalize_config_key(raw_key: Any) -> str:
    if not isinstance(raw_key, str):
        raise ValueError(f"config key must be string, got {type(raw_key).__name__}")
    key = raw_key.strip().replace("-", "_")
    if not key:
        raise ValueError("config key cannot be empty")
    return key


def _load_yaml_config(path: str) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise ValueError(f"--config file not found: {p}")
    if not p.is_file():
        raise ValueError(f"--config must point to a file: {p}")

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"failed to read --config file {p}: {exc}") from exc
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"failed to parse YAML config {p}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"--config root must be a mapping/object, got {type(loaded).__name__}")

    normalized: dict[str, Any] = {}
    for raw_key, raw_value in loaded.items():
        key = _normalize_config_key(raw_key)
        if key in _NEGATED_KEYS:
            key = _NEGATED_KEYS[key]
            normalized[key] = not _parse_bool(raw_value, raw_key)
            continue
        if key not in _APP_CONFIG_FIELDS:
            raise ValueError(f"unknown config key in {p}: {raw_key!r}")
        normalized[key] = _coerce_config_value(key, raw_value)
    return normalized


def _yaml_defaults_to_argparse_defaults(cfg: dict[str, Any]) -> dict[str, Any]:
    defaults: dict[str, Any] = {}
    for key, value in cfg.items():
        if key == "suppress_while_initializing":
            defaults["no_suppress_while_initializing"] = not bool(value)
        else:
            defaults[key] = value
    return defaults


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="posefusion",
        description="Fuse IMU attitude with absolute position fixes into a headset pose.",
    )
    ap.add_argument(
        "--config",
        type=str,
        default="",
        help="YAML config file path. CLI args override YAML values.",
    )
    ap.add_argument(
        "--source",
        choices=["replay", "udp"],
        default="replay",
        help="Sensor input: recorded JSON-lines session or live UDP bridge.",
    )
    ap.add_argument(
        "--replay",
        type=str,
        default="",
        help="Path to a JSON-lines session for --source replay.",
    )
    ap.add_argument(
        "--bridge-host",
        type=str,
        default="127.0.0.1",
        help="Host for the UDP sensor bridge.",
    )
    ap.add_argument(
        "--bridge-port",
        type=int,
        default=24568,
        help="Port for the UDP sensor bridge.",
    )
    ap.add_argument(
        "--poll-ms",
        type=int,
        default=5,
        help="UDP polling sleep in milliseconds.",
    )
    ap.add_argument(
        "--default-dt",
        type=float,
        default=0.01,
        help="IMU dt (s) for the first sample when packets carry no dt.",
    )

    ap.add_argument(
        "--staleness-threshold-s",
        type=float,
        default=0.1,
        help="Age of the last absolute fix after which the engine dead-reckons.",
    )
    ap.add_argument(
        "--high-confidence-cutoff",
        type=float,
        default=0.7,
        help="Fixes with confidence above this are trusted strongly.",
    )
    ap.add_argument(
        "--high-confidence-blend",
        type=float,
        default=0.8,
        help="Lerp factor toward a high-confidence fix.",
    )
    ap.add_argument(
        "--low-confidence-blend-scale",
        type=float,
        default=0.3,
        help="Lerp factor multiplier (x confidence) for low-confidence fixes.",
    )
    ap.add_argument(
        "--velocity-damping",
        type=float,
        default=0.98,
        help="Per-tick velocity damping while dead-reckoning.",
    )
    ap.add_argument(
        "--no-suppress-while-initializing",
        action="store_true",
        help="Integrate acceleration even while the AHRS is still converging.",
    )

    ap.add_argument(
        "--ahrs-preset",
        choices=["default", "fast-motion"],
        default="default",
        help="AHRS tuning preset.",
    )
    ap.add_argument(
        "--ahrs-gain",
        type=float,
        default=None,
        help="Override the preset's AHRS filter gain.",
    )

    ap.add_argument("--initial-x", type=float, default=0.0, help="Initial x (m).")
    ap.add_argument("--initial-y", type=float, default=0.0, help="Initial y (m).")
    ap.add_argument("--initial-z", type=float, default=0.0, help="Initial z (m).")
    ap.add_argument(
        "--status-hz",
        type=float,
        default=5.0,
        help="Pose status log rate in Hz of sensor time (0 disables).",
    )
    ap.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Global log level.",
    )
    return ap


def validate_config(cfg: AppConfig) -> None:
    if cfg.source not in {"replay", "udp"}:
        raise ValueError(f"--source must be one of replay|udp, got {cfg.source}")
    if cfg.source == "replay" and not str(cfg.replay).strip():
        raise ValueError("--replay must be provided when --source replay")
    if not cfg.bridge_host.strip():
        raise ValueError("--bridge-host must be non-empty")
    if not (1 <= cfg.bridge_port <= 65535):
        raise ValueError(f"--bridge-port must be in [1,65535], got {cfg.bridge_port}")
    if cfg.poll_ms <= 0:
        raise ValueError(f"--poll-ms must be > 0, got {cfg.poll_ms}")
    if not (cfg.default_dt > 0.0):
        raise ValueError(f"--default-dt must be > 0, got {cfg.default_dt}")
    if not (cfg.staleness_threshold_s >= 0.0) or not math.isfinite(cfg.staleness_threshold_s):
        raise ValueError(
            f"--staleness-threshold-s must be finite and >= 0, got {cfg.staleness_threshold_s}"
        )
    for flag, value in (
        ("--high-confidence-cutoff", cfg.high_confidence_cutoff),
        ("--high-confidence-blend", cfg.high_confidence_blend),
        ("--low-confidence-blend-scale", cfg.low_confidence_blend_scale),
        ("--velocity-damping", cfg.velocity_damping),
    ):
        if not (0.0 <= value <= 1.0):
            raise ValueError(f"{flag} must be in [0,1], got {value}")
    if cfg.ahrs_preset not in {"default", "fast-motion"}:
        raise ValueError(
            f"--ahrs-preset must be one of default|fast-motion, got {cfg.ahrs_preset}"
        )
    if cfg.ahrs_gain is not None and not (cfg.ahrs_gain > 0.0):
        raise ValueError(f"--ahrs-gain must be > 0, got {cfg.ahrs_gain}")
    if not all(math.isfinite(v) for v in (cfg.initial_x, cfg.initial_y, cfg.initial_z)):
        raise ValueError("--initial-x/--initial-y/--initial-z must be finite numbers")
    if cfg.status_hz < 0.0:
        raise ValueError(f"--status-hz must be >= 0, got {cfg.status_hz}")


def fusion_settings_from_config(cfg: AppConfig) -> FusionSettings:
    return FusionSettings(
        staleness_threshold_s=cfg.staleness_threshold_s,
        high_confidence_cutoff=cfg.high_confidence_cutoff,
        high_confidence_blend=cfg.high_confidence_blend,
        low_confidence_blend_scale=cfg.low_confidence_blend_scale,
        velocity_damping=cfg.velocity_damping,
        suppress_while_initializing=cfg.suppress_while_initializing,
    )


def ahrs_settings_from_config(cfg: AppConfig) -> AhrsSettings:
    return preset_settings(cfg.ahrs_preset, gain=cfg.ahrs_gain)


def parse_args(argv=None) -> AppConfig:
    bootstrap = argparse.ArgumentParser(add_help=False)
    bootstrap.add_argument("--config", type=str, default="")
    bootstrap_ns, _ = bootstrap.parse_known_args(argv)

    yaml_cfg: dict[str, Any] = {}
    yaml_error: Optional[str] = None
    if bootstrap_ns.config:
        try:
            yaml_cfg = _load_yaml_config(bootstrap_ns.config)
        except ValueError as exc:
            yaml_error = str(exc)

    ap = build_arg_parser()
    if yaml_error is not None:
        ap.error(yaml_error)
    if yaml_cfg:
        ap.set_defaults(**_yaml_defaults_to_argparse_defaults(yaml_cfg))
    args = ap.parse_args(argv)

    cfg = AppConfig(
        source=args.source,
        replay=str(args.replay or ""),
        bridge_host=args.bridge_host,
        bridge_port=args.bridge_port,
        poll_ms=args.poll_ms,
        default_dt=float(args.default_dt),
        staleness_threshold_s=float(args.staleness_threshold_s),
        high_confidence_cutoff=float(args.high_confidence_cutoff),
        high_confidence_blend=float(args.high_confidence_blend),
        low_confidence_blend_scale=float(args.low_confidence_blend_scale),
        velocity_damping=float(args.velocity_damping),
        suppress_while_initializing=not args.no_suppress_while_initializing,
        ahrs_preset=args.ahrs_preset,
        ahrs_gain=None if args.ahrs_gain is None else float(args.ahrs_gain),
        initial_x=float(args.initial_x),
        initial_y=float(args.initial_y),
        initial_z=float(args.initial_z),
        status_hz=float(args.status_hz),
        log_level=args.log_level,
    )
    try:
        validate_config(cfg)
    except ValueError as exc:
        ap.error(str(exc))
    return cfg
