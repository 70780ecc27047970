import json

import numpy as np
import pytest

from posefusion.bridge.packets import CameraPacket, ImuPacket
from posefusion.bridge.replay import iter_replay
from posefusion.run import main


def _write_session(path, records, extra_lines=()):
    lines = [json.dumps(r) for r in records]
    lines.extend(extra_lines)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def test_iter_replay_skips_comments_and_malformed_lines(tmp_path):
    session = tmp_path / "session.jsonl"
    _write_session(
        session,
        [
            {"type": "imu", "t": 0.01, "gyr_rad_s": [0, 0, 0], "acc_m_s2": [0, 0, 9.81]},
            {"type": "camera", "t": 0.02, "position_m": [1, 0, 0], "confidence": 0.9},
        ],
        extra_lines=["", "# comment", "{broken", '{"type": "imu", "t": 0.03}'],
    )
    packets = list(iter_replay(str(session)))
    assert [type(p) for p in packets] == [ImuPacket, CameraPacket]


def test_iter_replay_missing_file_raises(tmp_path):
    with pytest.raises(ValueError, match="replay file not found"):
        list(iter_replay(str(tmp_path / "missing.jsonl")))


def test_main_replays_session_and_prints_final_pose(tmp_path, capsys):
    session = tmp_path / "session.jsonl"
    records = []
    for k in range(5):
        records.append(
            {
                "type": "imu",
                "t": 0.02 * (k + 1),
                "dt": 0.02,
                "gyr_rad_s": [0.0, 0.0, 0.0],
                "acc_m_s2": [0.0, 0.0, 9.81],
            }
        )
    records.append({"type": "camera", "t": 0.11, "position_m": [1, 0, 0], "confidence": 0.9})
    _write_session(session, records)

    main(["--replay", str(session), "--status-hz", "0", "--log-level", "warning"])

    out = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    np.testing.assert_allclose(out["position_m"], [0.8, 0.0, 0.0], atol=1e-9)
    np.testing.assert_allclose(out["quaternion_wxyz"], [1.0, 0.0, 0.0, 0.0], atol=1e-9)


def test_main_exits_on_missing_replay(tmp_path):
    with pytest.raises(SystemExit):
        main(["--replay", str(tmp_path / "nope.jsonl"), "--log-level", "error"])
