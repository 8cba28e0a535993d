from __future__ import annotations

import csv
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from tonguecam.analysis.tongue import PredictionResult, TongueDetector
from tonguecam.io.video_reader import Frame, VideoFileSource
from tonguecam.landmarks.provider_base import LandmarkProvider
from tonguecam.session import DetectionSession, FrameSource, SessionStatus

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "frame_idx",
    "timestamp_ms",
    "person",
    "tongue_out",
    "score",
    "mouth_open",
    "color_match",
]


@dataclass(frozen=True)
class FrameRow:
    frame_idx: int
    timestamp_ms: int
    person: bool
    tongue_out: bool
    score: float
    mouth_open: float | None
    color_match: float | None


def _row(frame: Frame, result: PredictionResult) -> FrameRow:
    return FrameRow(
        frame_idx=frame.idx,
        timestamp_ms=frame.timestamp_ms,
        person=result.is_person_detected,
        tongue_out=result.is_tongue_out,
        score=result.score,
        mouth_open=None if result.debug is None else result.debug.mouth_open,
        color_match=None if result.debug is None else result.debug.color_match,
    )


def analyze_source(
    source_factory: Callable[[], FrameSource],
    provider: LandmarkProvider,
    detector: TongueDetector | None = None,
) -> list[FrameRow]:
    """Run a detection session over a finite source and collect one row per frame.

    Raises the session error when the session ends in an error status.
    """
    rows: list[FrameRow] = []

    def collect(frame: Optional[Frame], result: PredictionResult) -> None:
        if frame is not None:
            rows.append(_row(frame, result))

    session = DetectionSession(provider, source_factory, detector, on_result=collect)
    status = session.run()
    if status is not SessionStatus.stopped and session.error is not None:
        raise session.error
    return rows


def analyze_video(
    video_path: str | Path,
    provider: LandmarkProvider,
    detector: TongueDetector | None = None,
    *,
    stride: int = 1,
) -> list[FrameRow]:
    rows = analyze_source(lambda: VideoFileSource(video_path, stride=stride), provider, detector)
    logger.info("Analyzed %d frames from %s", len(rows), video_path)
    return rows


def summarize_rows(rows: list[FrameRow]) -> dict[str, Any]:
    transitions = 0
    previous = False
    for row in rows:
        if row.tongue_out and not previous:
            transitions += 1
        previous = row.tongue_out

    total = len(rows)
    tongue_frames = sum(1 for row in rows if row.tongue_out)
    person_frames = sum(1 for row in rows if row.person)
    return {
        "frames": total,
        "person_frames": person_frames,
        "tongue_out_frames": tongue_frames,
        "tongue_out_ratio": (tongue_frames / total) if total else 0.0,
        "tongue_out_events": transitions,
        "max_score": max((row.score for row in rows), default=0.0),
    }


def write_results_csv(rows: list[FrameRow], output_path: str | Path) -> Path:
    out_path = Path(output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for row in rows:
            payload = asdict(row)
            payload["person"] = int(row.person)
            payload["tongue_out"] = int(row.tongue_out)
            payload["score"] = f"{row.score:.6f}"
            for key in ("mouth_open", "color_match"):
                value = payload[key]
                payload[key] = "" if value is None else f"{value:.6f}"
            writer.writerow(payload)
    return out_path
