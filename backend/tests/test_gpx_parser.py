"""Tests for GPX normalization."""

from datetime import datetime, timezone

import pytest

from app.services.errors import ParseError
from app.services.gpx_parser import SYNTHESIZED_TIME_WARNING, map_gpx_type, parse_gpx_workout
from app.services.workout_metrics import haversine_distance_km

GPX_HEADER = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<gpx version="1.1" creator="test" xmlns="http://www.topografix.com/GPX/1/1" '
    'xmlns:gpxtpx="http://www.garmin.com/xmlschemas/TrackPointExtension/v1">\n'
)


def _gpx(body: str) -> str:
    return GPX_HEADER + body + "\n</gpx>"


MORNING_RUN = _gpx(
    """
  <trk>
    <name>Morning Run</name>
    <type>running</type>
    <trkseg>
      <trkpt lat="48.0000" lon="16.0000">
        <ele>100</ele><time>2024-05-01T07:00:00Z</time>
        <extensions><gpxtpx:TrackPointExtension><gpxtpx:hr>140</gpxtpx:hr></gpxtpx:TrackPointExtension></extensions>
      </trkpt>
      <trkpt lat="48.0050" lon="16.0000">
        <ele>90</ele><time>2024-05-01T07:10:00Z</time>
        <extensions><gpxtpx:TrackPointExtension><gpxtpx:hr>150</gpxtpx:hr></gpxtpx:TrackPointExtension></extensions>
      </trkpt>
    </trkseg>
    <trkseg>
      <trkpt lat="48.0100" lon="16.0000">
        <ele>120</ele><time>2024-05-01T07:20:00Z</time>
      </trkpt>
      <trkpt lat="48.0150" lon="16.0000">
        <ele>110</ele><time>2024-05-01T07:25:00Z</time>
      </trkpt>
      <trkpt lat="48.0200" lon="16.0000">
        <ele>130</ele><time>2024-05-01T07:30:00Z</time>
      </trkpt>
    </trkseg>
  </trk>"""
)


def test_parse_gpx_metrics():
    w = parse_gpx_workout(MORNING_RUN, user_id=7, file_name="run.gpx")
    assert w.user_id == 7
    assert w.source == "GPX_FILE"
    assert w.type == "Run"
    assert w.name == "Morning Run"
    assert w.date == datetime(2024, 5, 1, 7, 0, tzinfo=timezone.utc)
    assert w.duration_sec == 1800
    assert w.workout_time == "00:30:00"
    expected_km = 4 * haversine_distance_km(48.0, 16.0, 48.005, 16.0)
    assert w.distance_km == pytest.approx(expected_km)
    assert w.elevation_gain_m == 50
    assert w.heart_rate == 145
    assert w.calories == round(w.distance_km * 60)
    assert w.pace_sec_per_km == pytest.approx(1800 / w.distance_km)
    assert w.warnings == []


def test_parse_gpx_metadata_and_stats():
    w = parse_gpx_workout(MORNING_RUN.encode("utf-8"), user_id=1, file_name="run.gpx")
    meta = w.source_metadata
    assert meta.source == "GPX_FILE"
    assert meta.track_name == "Morning Run"
    assert meta.track_type == "running"
    assert meta.total_points == 5
    assert meta.segments == 2
    assert meta.original_file_name == "run.gpx"
    assert meta.timestamps_synthesized is False
    assert w.stats["total_points"] == 5


def test_bare_heart_rate_extension():
    gpx = _gpx(
        """
  <trk><trkseg>
    <trkpt lat="1.0" lon="1.0"><time>2024-01-01T00:00:00Z</time>
      <extensions><TrackPointExtension><hr>120</hr></TrackPointExtension></extensions></trkpt>
    <trkpt lat="1.001" lon="1.0"><time>2024-01-01T00:01:00Z</time>
      <extensions><TrackPointExtension><hr>130</hr></TrackPointExtension></extensions></trkpt>
  </trkseg></trk>"""
    )
    assert parse_gpx_workout(gpx, user_id=1).heart_rate == 125


def test_missing_timestamps_are_flagged():
    gpx = _gpx(
        """
  <trk><trkseg>
    <trkpt lat="1.0" lon="1.0"><ele>10</ele></trkpt>
    <trkpt lat="1.01" lon="1.0"><ele>12</ele></trkpt>
  </trkseg></trk>"""
    )
    w = parse_gpx_workout(gpx, user_id=1)
    assert w.source_metadata.timestamps_synthesized is True
    assert SYNTHESIZED_TIME_WARNING in w.warnings
    assert w.date.tzinfo is not None
    assert w.heart_rate is None
    assert w.elevation_gain_m == 2


def test_single_point_track():
    gpx = _gpx('<trk><trkseg><trkpt lat="1.0" lon="1.0"><time>2024-01-01T00:00:00Z</time></trkpt></trkseg></trk>')
    w = parse_gpx_workout(gpx, user_id=1)
    assert w.distance_km == 0
    assert w.duration_sec == 0
    assert w.pace_sec_per_km == 0


@pytest.mark.parametrize(
    "body,message",
    [
        ("", "No track data"),
        ("<trk><name>Empty</name></trk>", "No track segments"),
        ("<trk><trkseg></trkseg></trk>", "No track points"),
    ],
)
def test_structural_errors(body, message):
    with pytest.raises(ParseError, match=message):
        parse_gpx_workout(_gpx(body), user_id=1)


def test_invalid_xml_raises_parse_error():
    with pytest.raises(ParseError):
        parse_gpx_workout("<gpx><trk>", user_id=1)


def test_non_utf8_bytes_raise_parse_error():
    with pytest.raises(ParseError):
        parse_gpx_workout(b"\xff\xfe\x00garbage", user_id=1)


@pytest.mark.parametrize(
    "raw,expected",
    [("running", "Run"), ("Run", "Run"), ("cycling", "Cycling"), ("bike", "Cycling"), ("walk", "Walk"),
     ("hiking", "Hike"), ("swimming", "Swim"), ("yoga", "Run"), (None, "Run")],
)
def test_map_gpx_type(raw, expected):
    assert map_gpx_type(raw) == expected


def test_unreadable_heart_rate_values_are_ignored():
    gpx = _gpx(
        """
  <trk><trkseg>
    <trkpt lat="1.0" lon="1.0"><time>2024-01-01T00:00:00Z</time>
      <extensions><TrackPointExtension><hr>120</hr></TrackPointExtension></extensions></trkpt>
    <trkpt lat="1.001" lon="1.0"><time>2024-01-01T00:01:00Z</time>
      <extensions><TrackPointExtension><hr>inf</hr></TrackPointExtension></extensions></trkpt>
    <trkpt lat="1.002" lon="1.0"><time>2024-01-01T00:02:00Z</time>
      <extensions><TrackPointExtension><hr>abc</hr></TrackPointExtension></extensions></trkpt>
    <trkpt lat="1.003" lon="1.0"><time>2024-01-01T00:03:00Z</time>
      <extensions><TrackPointExtension><hr>nan</hr></TrackPointExtension></extensions></trkpt>
    <trkpt lat="1.004" lon="1.0"><time>2024-01-01T00:04:00Z</time>
      <extensions><TrackPointExtension><hr>130</hr></TrackPointExtension></extensions></trkpt>
  </trkseg></trk>"""
    )
    w = parse_gpx_workout(gpx, user_id=1)
    assert w.heart_rate == 125
    assert w.source_metadata.total_points == 5
    assert w.duration_sec == 240


def test_points_with_non_finite_coordinates_are_dropped():
    gpx = _gpx(
        """
  <trk><trkseg>
    <trkpt lat="1.0" lon="1.0"><time>2024-01-01T00:00:00Z</time></trkpt>
    <trkpt lat="nan" lon="1.0"><time>2024-01-01T00:01:00Z</time></trkpt>
    <trkpt lat="1.001" lon="1.0"><time>2024-01-01T00:02:00Z</time></trkpt>
  </trkseg></trk>"""
    )
    w = parse_gpx_workout(gpx, user_id=1)
    assert w.source_metadata.total_points == 2
    assert w.distance_km == pytest.approx(haversine_distance_km(1.0, 1.0, 1.001, 1.0))
