"""Tests for the command-line entrypoint."""

from __future__ import annotations

import io
import json

import pytest

from biosignal_fusion.main import main, replay

FRAME = {
    "eye_aspect_ratio": 0.3,
    "mouth_aspect_ratio": 0.1,
    "raw_emotion": {"label": "Sad", "score": 0.8},
    "age_guess": 40,
}


@pytest.fixture
def recording(tmp_path):
    path = tmp_path / "frames.jsonl"
    lines = [json.dumps({"features": FRAME}) for _ in range(90)]
    lines.insert(45, json.dumps({"features": None}))
    lines.append("")
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


class TestReplay:
    def test_outputs_one_line_per_frame_plus_estimate(self, recording):
        out = io.StringIO()
        count = replay(recording, out=out)
        rows = [json.loads(line) for line in out.getvalue().splitlines()]

        assert count == 91
        assert len(rows) == 92
        assert rows[0]["emotion"]["label"] == "Sad"
        assert rows[45]["face_detected"] is False
        assert rows[90]["age"]["age"] == 40
        assert 0 <= rows[-1]["probability"] <= 100

    def test_calibrated_replay_uses_personal_baseline(self, recording):
        out = io.StringIO()
        replay(recording, fps=10, calibrate=True, out=out)
        estimate = json.loads(out.getvalue().splitlines()[-1])
        assert estimate["baseline_is_default"] is False

    def test_missing_file_exits(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["replay", str(tmp_path / "missing.jsonl")])
