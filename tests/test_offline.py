from __future__ import annotations

import csv
from pathlib import Path

import pytest

from tonguecam.analysis.offline import (
    CSV_COLUMNS,
    FrameRow,
    analyze_source,
    analyze_video,
    summarize_rows,
    write_results_csv,
)
from tonguecam.errors import InitializationError, SourceError
from tonguecam.io.video_reader import Frame
from tonguecam.landmarks.provider_base import LandmarkProvider, ProviderStatus

from conftest import TONGUE_RGB, build_frame, build_landmarks, make_dummy_video


class AlwaysOpenMouth(LandmarkProvider):
    def __init__(self, pattern=None) -> None:
        super().__init__()
        self.pattern = pattern

    def _load(self) -> None:
        pass

    def _detect(self, frame, timestamp_ms):
        if self.pattern is not None and not self.pattern(timestamp_ms):
            return None
        return build_landmarks(0.45)


class FrameList:
    def __init__(self, frames) -> None:
        self.frames = list(frames)
        self.released = False

    def open(self):
        return self

    def read(self):
        return self.frames.pop(0) if self.frames else None

    def release(self) -> None:
        self.released = True


class FailingModel(AlwaysOpenMouth):
    def _load(self) -> None:
        raise RuntimeError("corrupt model")


def test_analyze_source_builds_one_row_per_frame() -> None:
    provider = AlwaysOpenMouth(pattern=lambda ts: ts < 200)
    image = build_frame(TONGUE_RGB)
    source = FrameList(Frame(idx=i, timestamp_ms=i * 40, image_rgb=image) for i in range(8))

    rows = analyze_source(lambda: source, provider)

    assert [row.frame_idx for row in rows] == list(range(8))
    assert [row.tongue_out for row in rows] == [False] * 4 + [True] + [False] * 3
    assert rows[4].person is True and rows[5].person is False
    assert rows[5].mouth_open is None
    assert rows[0].color_match == 1.0
    assert source.released is True
    assert provider.status is ProviderStatus.closed


def test_analyze_source_raises_when_the_model_fails_to_load() -> None:
    provider = FailingModel()
    source = FrameList([])

    with pytest.raises(InitializationError) as exc_info:
        analyze_source(lambda: source, provider)
    assert "corrupt model" in str(exc_info.value)


def test_analyze_video_reports_unreadable_source(tmp_path: Path) -> None:
    with pytest.raises(SourceError) as exc_info:
        analyze_video(tmp_path / "missing.mp4", AlwaysOpenMouth())
    assert "does not exist" in str(exc_info.value)


def test_summarize_rows_counts_events() -> None:
    flags = [False, True, True, False, True, False]
    rows = [
        FrameRow(i, i * 10, True, flag, 0.1 * i, 0.4, 1.0) for i, flag in enumerate(flags)
    ]

    summary = summarize_rows(rows)

    assert summary["frames"] == 6
    assert summary["tongue_out_frames"] == 3
    assert summary["tongue_out_events"] == 2
    assert summary["tongue_out_ratio"] == 0.5
    assert summary["max_score"] == 0.5


def test_summarize_rows_empty() -> None:
    summary = summarize_rows([])
    assert summary["frames"] == 0
    assert summary["tongue_out_ratio"] == 0.0
    assert summary["max_score"] == 0.0


def test_write_results_csv_layout(tmp_path: Path) -> None:
    rows = [
        FrameRow(0, 0, False, False, 0.0, None, None),
        FrameRow(1, 33, True, True, 0.672, 0.45, 1.0),
    ]

    out_path = write_results_csv(rows, tmp_path / "out" / "scores.csv")

    with out_path.open(encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        assert reader.fieldnames == CSV_COLUMNS
        records = list(reader)
    assert records[0]["mouth_open"] == ""
    assert records[1]["tongue_out"] == "1"
    assert float(records[1]["score"]) == 0.672


def test_analyze_video_closes_provider(tmp_path: Path) -> None:
    video_path = make_dummy_video(tmp_path)
    provider = AlwaysOpenMouth()

    rows = analyze_video(video_path, provider, stride=2)

    assert rows
    assert provider.status is ProviderStatus.closed
    # One reddish dummy frame is not enough to switch the detector on.
    assert not any(row.tongue_out for row in rows)
