from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import cv2
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from tonguecam.analysis.offline import analyze_video, summarize_rows, write_results_csv
from tonguecam.analysis.tongue import PredictionResult, TongueDetector
from tonguecam.config import LiveConfig
from tonguecam.errors import InitializationError, TongueCamError
from tonguecam.io.camera import CameraSource
from tonguecam.io.video_reader import Frame, probe_video
from tonguecam.landmarks.mediapipe_face_landmarker import (
    OFFICIAL_FACE_LANDMARKER_MODEL_URL,
    MediaPipeFaceLandmarker,
)
from tonguecam.runtime_paths import get_model_path
from tonguecam.session import DetectionSession, SessionStatus
from tonguecam.viz.overlay import draw_overlay

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="tonguecam: webcam tongue-out detector driven by face landmarks.",
)
console = Console()

PREVIEW_WINDOW = "tonguecam"
QUIT_KEYS = {ord("q"), 27}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _status_message(status: SessionStatus) -> str:
    return {
        SessionStatus.loading: "[cyan]Loading face landmarker...[/cyan]",
        SessionStatus.ready: "[green]Model ready, camera open.[/green]",
        SessionStatus.running: "[green]Detecting. Stick your tongue out! (q / Esc to quit)[/green]",
        SessionStatus.stopped: "[cyan]Stopped.[/cyan]",
        SessionStatus.error: "[bold red]Detection session failed.[/bold red]",
        SessionStatus.permission_denied: "[bold red]Camera access denied or unavailable.[/bold red]",
    }.get(status, status.value)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable debug logging.",
    ),
) -> None:
    _configure_logging(verbose)


@app.command("guide")
def guide() -> None:
    console.print("[bold]tonguecam quick start[/bold]")
    console.print("1) Download the MediaPipe Face Landmarker model:")
    console.print(f"   {OFFICIAL_FACE_LANDMARKER_MODEL_URL}", soft_wrap=True)
    console.print(f"   -> save it as {get_model_path()}", soft_wrap=True)
    console.print("2) Run the live detector:")
    console.print("   tonguecam live --camera 0")
    console.print("3) Score a recorded clip frame by frame:")
    console.print('   tonguecam analyze --video "clip.mp4" --output "scores.csv"')


@app.command("live")
def live(
    camera: int = typer.Option(
        0,
        "--camera",
        "-c",
        help="Camera device index.",
    ),
    model: Optional[Path] = typer.Option(
        None,
        "--model",
        help="MediaPipe Face Landmarker .task model path.",
    ),
    preview: bool = typer.Option(
        True,
        "--preview/--no-preview",
        help="Show the annotated preview window.",
    ),
    mirror: bool = typer.Option(
        True,
        "--mirror/--no-mirror",
        help="Mirror the camera for a selfie view.",
    ),
    max_frames: Optional[int] = typer.Option(
        None,
        "--max-frames",
        help="Stop after N frames.",
    ),
    use_gpu: bool = typer.Option(
        False,
        "--use-gpu/--no-use-gpu",
        help="Use GPU delegate when supported. Defaults to CPU.",
    ),
) -> None:
    try:
        config_kwargs = {
            "camera_index": camera,
            "mirror": mirror,
            "preview": preview,
            "max_frames": max_frames,
            "use_gpu_delegate": use_gpu,
        }
        if model is not None:
            config_kwargs["model_path"] = model
        config = LiveConfig(**config_kwargs)
    except ValidationError as exc:
        message = exc.errors()[0].get("msg", "Invalid input")
        raise typer.BadParameter(message) from exc

    provider = MediaPipeFaceLandmarker(config.model_path, use_gpu_delegate=config.use_gpu_delegate)
    session: DetectionSession
    window_open = False

    def on_result(frame: Frame | None, result: PredictionResult) -> None:
        nonlocal window_open
        if not config.preview:
            return
        if frame is not None:
            annotated = draw_overlay(frame.image_rgb, result)
            cv2.imshow(PREVIEW_WINDOW, cv2.cvtColor(annotated, cv2.COLOR_RGB2BGR))
            window_open = True
        if window_open and cv2.waitKey(1) & 0xFF in QUIT_KEYS:
            session.stop()

    def on_transition(is_tongue_out: bool) -> None:
        if is_tongue_out:
            console.print("[bold green]Tongue out![/bold green]")
        else:
            console.print("[dim]...and back in.[/dim]")

    session = DetectionSession(
        provider,
        lambda: CameraSource(config.camera_index, mirror=config.mirror),
        TongueDetector(),
        on_result=on_result,
        on_status=lambda status: console.print(_status_message(status)),
        on_transition=on_transition,
        max_frames=config.max_frames,
    )

    try:
        final_status = session.run()
    except KeyboardInterrupt:
        session.stop()
        final_status = session.status
    finally:
        if window_open:
            cv2.destroyWindow(PREVIEW_WINDOW)

    if final_status in (SessionStatus.error, SessionStatus.permission_denied):
        if session.error is not None:
            console.print(str(session.error), markup=False)
        raise typer.Exit(code=1)
    console.print(f"Processed {session.frames_processed} frames.")


@app.command("analyze")
def analyze(
    video: Path = typer.Option(
        ...,
        "--video",
        "-v",
        help="Input video path.",
    ),
    model: Optional[Path] = typer.Option(
        None,
        "--model",
        help="MediaPipe Face Landmarker .task model path.",
    ),
    stride: int = typer.Option(
        1,
        "--stride",
        min=1,
        help="Read one frame every N frames.",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write per-frame scores to this CSV file.",
    ),
) -> None:
    try:
        info = probe_video(video)
    except (FileNotFoundError, ValueError, RuntimeError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--video") from exc

    provider = MediaPipeFaceLandmarker(model)
    try:
        rows = analyze_video(info.path, provider, TongueDetector(), stride=stride)
    except InitializationError as exc:
        raise typer.BadParameter(str(exc), param_hint="--model") from exc
    except TongueCamError as exc:
        raise typer.BadParameter(str(exc), param_hint="--video") from exc

    summary = summarize_rows(rows)
    table = Table(title=f"Tongue detection: {info.path.name}")
    table.add_column("Metric")
    table.add_column("Value")
    table.add_row("Frames analyzed", str(summary["frames"]))
    table.add_row("Frames with a face", str(summary["person_frames"]))
    table.add_row("Tongue-out frames", str(summary["tongue_out_frames"]))
    table.add_row("Tongue-out ratio", f"{summary['tongue_out_ratio']:.1%}")
    table.add_row("Tongue-out events", str(summary["tongue_out_events"]))
    table.add_row("Max score", f"{summary['max_score']:.3f}")
    console.print(table)

    if output is not None:
        out_path = write_results_csv(rows, output)
        console.print(f"Saved per-frame scores to {out_path}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
