import pytest

from posefusion.config import (
    AppConfig,
    ahrs_settings_from_config,
    fusion_settings_from_config,
    parse_args,
    validate_config,
)


def test_validate_config_accepts_defaults():
    cfg = AppConfig(replay="session.jsonl")
    validate_config(cfg)


def test_validate_config_requires_replay_path():
    with pytest.raises(ValueError, match="--replay"):
        validate_config(AppConfig())


def test_validate_config_allows_udp_without_replay():
    validate_config(AppConfig(source="udp"))


def test_validate_config_rejects_invalid_bridge_port():
    cfg = AppConfig(source="udp", bridge_port=70000)
    with pytest.raises(ValueError, match="--bridge-port"):
        validate_config(cfg)


def test_validate_config_rejects_negative_staleness_threshold():
    cfg = AppConfig(replay="s.jsonl", staleness_threshold_s=-0.1)
    with pytest.raises(ValueError, match="--staleness-threshold-s"):
        validate_config(cfg)


def test_validate_config_rejects_out_of_range_blend_factors():
    with pytest.raises(ValueError, match="--high-confidence-blend"):
        validate_config(AppConfig(replay="s.jsonl", high_confidence_blend=1.5))
    with pytest.raises(ValueError, match="--velocity-damping"):
        validate_config(AppConfig(replay="s.jsonl", velocity_damping=-0.01))


def test_validate_config_rejects_invalid_ahrs_gain():
    cfg = AppConfig(replay="s.jsonl", ahrs_gain=0.0)
    with pytest.raises(ValueError, match="--ahrs-gain"):
        validate_config(cfg)


def test_validate_config_rejects_negative_status_hz():
    cfg = AppConfig(replay="s.jsonl", status_hz=-1.0)
    with pytest.raises(ValueError, match="--status-hz"):
        validate_config(cfg)


def test_parse_args_reads_yaml_config(tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        "\n".join(
            [
                "replay: sessions/walk.jsonl",
                "staleness-threshold-s: 0.25",
                "velocity_damping: 0.9",
                "no_suppress_while_initializing: true",
                "ahrs_preset: fast-motion",
                "initial_z: 1.6",
            ]
        ),
        encoding="utf-8",
    )
    cfg = parse_args(["--config", str(cfg_path)])
    assert cfg.replay == "sessions/walk.jsonl"
    assert cfg.staleness_threshold_s == 0.25
    assert cfg.velocity_damping == 0.9
    assert cfg.suppress_while_initializing is False
    assert cfg.ahrs_preset == "fast-motion"
    assert cfg.initial_z == 1.6


def test_parse_args_cli_overrides_yaml(tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        "replay: a.jsonl\nvelocity_damping: 0.9\nsuppress_while_initializing: false\n",
        encoding="utf-8",
    )
    cfg = parse_args(
        ["--config", str(cfg_path), "--replay", "b.jsonl", "--velocity-damping", "0.95"]
    )
    assert cfg.replay == "b.jsonl"
    assert cfg.velocity_damping == 0.95
    assert cfg.suppress_while_initializing is False


def test_parse_args_rejects_unknown_yaml_key(tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("replay: a.jsonl\nsofa: x.sofa\n", encoding="utf-8")
    with pytest.raises(SystemExit):
        parse_args(["--config", str(cfg_path)])


def test_parse_args_rejects_missing_config_file(tmp_path):
    with pytest.raises(SystemExit):
        parse_args(["--config", str(tmp_path / "missing.yaml")])


def test_parse_args_rejects_invalid_values():
    with pytest.raises(SystemExit):
        parse_args(["--replay", "a.jsonl", "--high-confidence-cutoff", "2"])


def test_settings_from_config():
    cfg = parse_args(
        [
            "--replay",
            "a.jsonl",
            "--staleness-threshold-s",
            "0.2",
            "--no-suppress-while-initializing",
            "--ahrs-preset",
            "fast-motion",
            "--ahrs-gain",
            "0.4",
        ]
    )
    fusion = fusion_settings_from_config(cfg)
    assert fusion.staleness_threshold_s == 0.2
    assert fusion.high_confidence_cutoff == 0.7
    assert fusion.suppress_while_initializing is False

    ahrs = ahrs_settings_from_config(cfg)
    assert ahrs.gain == 0.4
    assert ahrs.acceleration_rejection_deg == 15.0
