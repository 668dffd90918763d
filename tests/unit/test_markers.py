"""Unit tests for marker wire types and the UDP marker publisher."""

import socket

import msgspec
import numpy as np
import pytest

from welding_demo.visualization.markers import (
    Action,
    Colors,
    Marker,
    MarkerFrame,
    MarkerType,
    Scales,
    decode_frame,
    encode_frame,
    scale_value,
)
from welding_demo.visualization.publisher import MarkerPublisher

pytestmark = pytest.mark.unit


class TestMarkerTypes:
    def test_enum_values_match_rviz(self):
        assert MarkerType.ARROW == 0
        assert MarkerType.LINE_STRIP == 4
        assert MarkerType.TEXT == 9
        assert Action.DELETEALL == 3

    def test_colors(self):
        assert Colors.get("lime_green") == Colors.LIME_GREEN
        with pytest.raises(ValueError):
            Colors.get("plaid")

    def test_scales_increase(self):
        values = [scale_value(s) for s in Scales]
        assert values == sorted(values)
        assert scale_value(Scales.SMALL, 2.0) == pytest.approx(2 * scale_value(Scales.SMALL))

    def test_marker_defaults(self):
        m = Marker(ns="demo/Text", id=0, type=MarkerType.TEXT)
        assert m.action == Action.ADD
        assert m.orientation == [0.0, 0.0, 0.0, 1.0]
        assert m.key == ("demo/Text", 0)


class TestFrameCodec:
    def test_frame_decodes_to_equal_frame(self):
        frame = MarkerFrame(
            seq=3,
            stamp=12.5,
            markers=[
                Marker(
                    ns="demo/Path",
                    id=1,
                    type=MarkerType.LINE_STRIP,
                    points=[[0.0, 0.0, 0.0], [1.0, 2.0, 3.0]],
                    color=list(Colors.LIME_GREEN),
                ),
                Marker(ns="demo/Text", id=0, type=MarkerType.TEXT, text="pt0"),
            ],
            delete_all=True,
        )
        assert decode_frame(encode_frame(frame)) == frame

    def test_numpy_values_are_encoded(self):
        frame = MarkerFrame(
            seq=np.int64(1),
            stamp=np.float64(2.0),
            markers=[Marker(ns="n", id=0, type=MarkerType.SPHERE, position=np.zeros(3))],
        )
        decoded = decode_frame(encode_frame(frame))
        assert decoded.markers[0].position == [0.0, 0.0, 0.0]

    def test_rejects_garbage(self):
        with pytest.raises(msgspec.DecodeError):
            decode_frame(b"\xc1")

    def test_rejects_bad_vector_length(self):
        payload = msgspec.msgpack.encode([0, 0.0, [["n", 0, 2, 0, [1.0, 2.0]]], False])
        with pytest.raises(msgspec.ValidationError):
            decode_frame(payload)


class TestMarkerPublisher:
    def test_unicast_publish(self, udp_receiver):
        port = udp_receiver.getsockname()[1]
        pub = MarkerPublisher(port=port, transport="UNICAST", unicast_host="127.0.0.1")
        try:
            assert pub.transport == "UNICAST"
            assert pub.destination == ("127.0.0.1", port)

            frame = MarkerFrame(seq=0, stamp=1.0, delete_all=True)
            assert pub.publish(frame)
            data, _ = udp_receiver.recvfrom(65535)
            assert decode_frame(data) == frame
            assert pub.frames_sent == 1
        finally:
            pub.close()

    def test_multicast_unavailable_falls_back_to_unicast(self, monkeypatch, free_udp_port):
        monkeypatch.setattr(MarkerPublisher, "_verify_multicast_reachable", lambda self, sock, timeout=0.1: False)

        pub = MarkerPublisher(port=free_udp_port, transport="MULTICAST")
        try:
            assert pub.transport == "UNICAST"
        finally:
            pub.close()

    def test_send_errors_switch_to_unicast(self, monkeypatch, free_udp_port):
        monkeypatch.setattr(MarkerPublisher, "_verify_multicast_reachable", lambda self, sock, timeout=0.1: True)
        pub = MarkerPublisher(port=free_udp_port, transport="MULTICAST")

        class FailingSocket:
            def sendto(self, *args):
                raise OSError("network unreachable")

            def close(self):
                pass

        try:
            assert pub.transport == "MULTICAST"
            pub._sock.close()
            pub._sock = FailingSocket()
            frame = MarkerFrame(seq=0, stamp=0.0)
            for _ in range(3):
                assert not pub.publish(frame)
            assert pub.transport == "UNICAST"
            assert isinstance(pub._sock, socket.socket)
        finally:
            pub.close()

    def test_publish_after_close_reopens_unicast(self, udp_receiver):
        port = udp_receiver.getsockname()[1]
        pub = MarkerPublisher(port=port, transport="UNICAST")
        pub.close()
        try:
            assert pub.publish(MarkerFrame(seq=1, stamp=0.0))
            udp_receiver.recvfrom(65535)
        finally:
            pub.close()
