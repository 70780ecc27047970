import json

import numpy as np

from posefusion.bridge.packets import (
    CameraPacket,
    ImuClock,
    ImuPacket,
    parse_packet,
    parse_payload,
)


def test_parse_imu_payload_accepts_valid_schema():
    packet = parse_payload(
        {
            "type": "imu",
            "t": 1.25,
            "dt": 0.01,
            "gyr_rad_s": [0.1, 0.0, -0.1],
            "acc_m_s2": [0.0, 0.0, 9.81],
            "mag_ut": [20.0, 0.0, -40.0],
        }
    )
    assert isinstance(packet, ImuPacket)
    assert packet.t == 1.25
    assert packet.dt == 0.01
    np.testing.assert_allclose(packet.gyr, [0.1, 0.0, -0.1])
    np.testing.assert_allclose(packet.acc, [0.0, 0.0, 9.81])
    np.testing.assert_allclose(packet.mag, [20.0, 0.0, -40.0])


def test_parse_camera_packet_to_measurement():
    data = json.dumps(
        {"type": "camera", "t": 2.0, "position_m": [1.0, 2.0, 3.0], "confidence": 0.6}
    ).encode("utf-8")
    packet = parse_packet(data)
    assert isinstance(packet, CameraPacket)
    m = packet.to_measurement()
    np.testing.assert_allclose(m.position, [1.0, 2.0, 3.0])
    assert m.confidence == 0.6
    assert m.timestamp == 2.0


def test_parse_packet_rejects_invalid_json():
    assert parse_packet(b"{not-json") is None
    assert parse_packet(b"\xff\xfe") is None
    assert parse_packet(b"[1, 2, 3]") is None


def test_parse_payload_rejects_bad_fields():
    assert parse_payload({"type": "imu", "t": 0.0, "gyr_rad_s": [0, 0], "acc_m_s2": [0, 0, 1]}) is None
    assert parse_payload({"type": "imu", "gyr_rad_s": [0, 0, 0], "acc_m_s2": [0, 0, 1]}) is None
    assert (
        parse_payload(
            {"type": "camera", "t": 0.0, "position_m": [0.0, float("nan"), 0.0]}
        )
        is None
    )
    assert (
        parse_payload(
            {"type": "camera", "t": 0.0, "position_m": [0, 0, 0], "confidence": "high"}
        )
        is None
    )
    assert parse_payload({"type": "lidar", "t": 0.0}) is None


def test_imu_clock_prefers_explicit_dt_then_timestamps():
    clock = ImuClock(default_dt=0.005)
    gyr = np.zeros(3)
    acc = np.array([0.0, 0.0, 9.81])
    assert clock.resolve(ImuPacket(t=1.0, gyr=gyr, acc=acc)) == 0.005
    assert abs(clock.resolve(ImuPacket(t=1.02, gyr=gyr, acc=acc)) - 0.02) < 1e-12
    assert clock.resolve(ImuPacket(t=1.03, gyr=gyr, acc=acc, dt=0.5)) == 0.5
    assert clock.resolve(ImuPacket(t=1.01, gyr=gyr, acc=acc)) < 0.0
