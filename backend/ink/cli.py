"""``ink`` command line.

    ink run extract                  poll drives, scan new discs, extract planned ones
    ink run transcode [disc-id]      transcode extracted tracks as they become ready
    ink run review [disc-id]         name extracted TV tracks interactively
    ink run copy [disc-id]           upload finished tracks to the SMB target
    ink plan list|show|pending       inspect plans and scanned discs
    ink plan delete <disc-id>        remove a plan
    ink metadata read [--dev DEV]    identify and scan the inserted disc
    ink metadata list|show|delete    inspect or remove scanned disc metadata
    ink daemon                       serve the HTTP status API

Exit codes: 0 success, 1 error, 130 interrupted.
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable

from ink import __version__
from ink.config import settings
from ink.core.copier import SmbCopier, SmbTarget
from ink.core.errors import DriveError, InkError
from ink.core.extractor import MakeMKVExtractor
from ink.core.identify import identify
from ink.core.logging import setup_logging
from ink.core.markers import FileMarkerStore
from ink.core.paths import InkPaths
from ink.core.sentinel import DriveMonitor, LinuxDriveMonitor
from ink.core.storage import Storage
from ink.core.transcoder import FFmpegTranscoder
from ink.display import (
    ConsoleReviewer,
    console,
    disc_name,
    metadata_detail,
    metadata_table,
    pending_table,
    plan_detail,
    plans_table,
    prompt_disc_name,
)
from ink.models.pipeline import TrackQueue
from ink.models.plan import PlanType
from ink.services.disc_processor import DiscProcessor
from ink.services.drive_poller import DrivePoller
from ink.services.pipeline import ReviewPipeline, StagePipeline
from ink.services.queue_rules import QueueEngine
from ink.services.runner import Shutdown, run_drive_loop, run_scheduled
from ink.services.stages import CopyExecutor, ReviewExecutor, StageExecutor, TranscodeExecutor
from ink.services.track_state import plan_progress

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def build_storage() -> tuple[Storage, QueueEngine]:
    paths = InkPaths.from_settings()
    return Storage(paths), QueueEngine(FileMarkerStore(paths))


def build_executor(stage: TrackQueue, storage: Storage, engine: QueueEngine) -> StageExecutor:
    if stage == TrackQueue.TRANSCODE:
        return TranscodeExecutor(
            engine.store,
            storage.paths,
            FFmpegTranscoder(settings.ffmpeg_path),
            metadata_loader=storage.read_metadata,
        )
    if stage == TrackQueue.COPY:
        copier = SmbCopier(
            SmbTarget.parse(settings.smb_target),
            settings.smb_user,
            settings.smb_password,
            settings.smbclient_path,
        )
        return CopyExecutor(engine.store, storage.paths, copier)
    raise ValueError(f"No scheduled executor for {stage.value}")


async def _until_shutdown(run: Callable[[Shutdown], Awaitable[object]]) -> bool:
    """Run ``run`` with signal handling installed. Returns True if interrupted."""
    shutdown = Shutdown()
    shutdown.install(asyncio.get_running_loop(), asyncio.current_task())
    await run(shutdown)
    return shutdown.interrupted


# --- run ---


def cmd_run_extract(args: argparse.Namespace) -> int:
    storage, engine = build_storage()
    monitor = LinuxDriveMonitor()
    processor = DiscProcessor(storage, engine, monitor, MakeMKVExtractor(settings.makemkv_path))
    poller = DrivePoller(monitor, processor, settings.drive_poll_interval)

    interrupted = asyncio.run(
        _until_shutdown(lambda shutdown: run_drive_loop(poller, processor, storage.paths.plans, shutdown))
    )
    return EXIT_INTERRUPTED if interrupted else EXIT_OK


def cmd_run_scheduled(args: argparse.Namespace) -> int:
    stage = TrackQueue(args.stage)
    storage, engine = build_storage()
    pipeline = StagePipeline(storage, engine, build_executor(stage, storage, engine), args.disc_id)

    interrupted = asyncio.run(
        _until_shutdown(
            lambda shutdown: run_scheduled(
                pipeline,
                [storage.paths.plans, storage.paths.staging],
                shutdown,
                settings.debounce_seconds,
                settings.fallback_interval,
            )
        )
    )
    return EXIT_INTERRUPTED if interrupted else EXIT_OK


def cmd_run_review(args: argparse.Namespace) -> int:
    storage, engine = build_storage()
    reviewer = ConsoleReviewer(settings.video_player)
    pipeline = ReviewPipeline(
        storage,
        engine,
        ReviewExecutor(engine.store, storage.paths, reviewer),
        args.disc_id,
    )
    try:
        report = asyncio.run(pipeline.run_cycle())
    finally:
        reviewer.close()

    if not report.processed_any:
        console.print("[yellow]No tracks are waiting for review.[/]")
    return EXIT_ERROR if report.failed else EXIT_OK


# --- plan ---


def cmd_plan_list(args: argparse.Namespace) -> int:
    storage, engine = build_storage()
    rows = []
    for disc_id in storage.list_plan_ids():
        try:
            plan = storage.read_plan(disc_id)
        except InkError as e:
            console.print(f"[red]{disc_id}: {e}[/]")
            continue
        if plan is None:
            continue
        if args.type and plan.type != PlanType(args.type):
            continue
        progress = plan_progress(engine, plan)
        if args.status and progress != args.status:
            continue
        rows.append((plan, progress))

    if not rows:
        console.print("No plans found.")
        return EXIT_OK
    rows.sort(key=lambda row: (row[0].title or row[0].disc_id).lower())
    console.print(plans_table(rows))
    return EXIT_OK


def cmd_plan_show(args: argparse.Namespace) -> int:
    storage, engine = build_storage()
    plan = storage.read_plan(args.disc_id)
    if plan is None:
        console.print(f"[red]Plan for disc ID '{args.disc_id}' not found.[/]")
        return EXIT_ERROR
    plan_detail(engine, plan, storage.paths.plan(plan.disc_id))
    return EXIT_OK


def cmd_plan_pending(args: argparse.Namespace) -> int:
    storage, _ = build_storage()
    pending = storage.pending_disc_ids()
    if not pending:
        console.print("No scanned disc needs a plan.")
        return EXIT_OK

    entries = []
    for disc_id in pending:
        try:
            entries.append((disc_id, storage.read_metadata(disc_id), None))
        except InkError as e:
            entries.append((disc_id, None, str(e)))
    console.print(pending_table(entries))
    return EXIT_OK


def cmd_plan_delete(args: argparse.Namespace) -> int:
    storage, _ = build_storage()
    if not storage.delete_plan(args.disc_id):
        console.print(f"[red]Plan for disc ID '{args.disc_id}' not found.[/]")
        return EXIT_ERROR
    console.print(f"[green]Plan for '{args.disc_id}' deleted.[/]")
    return EXIT_OK


# --- metadata ---


def first_drive(monitor: DriveMonitor) -> str:
    drives = monitor.list()
    if not drives:
        raise DriveError("No optical drives found on this system.")
    return drives[0]


def cmd_metadata_read(args: argparse.Namespace) -> int:
    storage, engine = build_storage()
    monitor = LinuxDriveMonitor()
    device = args.dev or first_drive(monitor)
    processor = DiscProcessor(
        storage, engine, monitor, MakeMKVExtractor(settings.makemkv_path), identify_disc=identify
    )

    console.print(f"Reading disc in {device} (a full scan may take a minute)...")
    metadata, cached = asyncio.run(processor.read_metadata(device, use_cache=not args.no_cache))
    if cached:
        console.print(f"[blue]Loaded cached metadata for {metadata.disc_id}[/]")
    else:
        metadata.user_provided_name = prompt_disc_name(metadata.volume_label)
        storage.save_metadata(metadata)
        console.print(f"[green]Saved metadata for {metadata.user_provided_name}[/]")
    metadata_detail(metadata)
    return EXIT_OK


def cmd_metadata_list(args: argparse.Namespace) -> int:
    storage, _ = build_storage()
    ids = storage.list_metadata_ids()
    if not ids:
        console.print("No metadata found.")
        return EXIT_OK

    planned = set(storage.list_plan_ids())
    rows = []
    for disc_id in ids:
        try:
            metadata = storage.read_metadata(disc_id)
        except InkError as e:
            console.print(f"[red]{disc_id}: {e}[/]")
            continue
        if metadata is None:
            continue
        status = "planned" if disc_id in planned else "unplanned"
        if args.status and status != args.status:
            continue
        rows.append((metadata, status))

    if not rows:
        console.print("No matching metadata found.")
        return EXIT_OK

    if args.order == "status":
        rows.sort(key=lambda row: (row[1], disc_name(row[0]).lower()))
    else:
        rows.sort(key=lambda row: disc_name(row[0]).lower())
    console.print(metadata_table(rows))
    return EXIT_OK


def cmd_metadata_show(args: argparse.Namespace) -> int:
    storage, _ = build_storage()
    metadata = storage.read_metadata(args.disc_id)
    if metadata is None:
        console.print(f"[red]Metadata for disc ID '{args.disc_id}' not found.[/]")
        return EXIT_ERROR
    metadata_detail(metadata)
    return EXIT_OK


def cmd_metadata_delete(args: argparse.Namespace) -> int:
    storage, _ = build_storage()
    if not storage.delete_metadata(args.disc_id):
        console.print(f"[red]Metadata for disc ID '{args.disc_id}' not found.[/]")
        return EXIT_ERROR
    console.print(f"[green]Metadata for '{args.disc_id}' deleted.[/]")
    return EXIT_OK


# --- daemon ---


def cmd_daemon(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("ink.main:app", host=args.host, port=args.port, log_config=None)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ink",
        description="Optical disc backup pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run a pipeline stage").add_subparsers(dest="stage", required=True)
    run.add_parser("extract", help="Poll drives and extract planned discs").set_defaults(func=cmd_run_extract)
    for stage, func, help_text in (
        ("transcode", cmd_run_scheduled, "Transcode extracted tracks"),
        ("review", cmd_run_review, "Review extracted TV tracks interactively"),
        ("copy", cmd_run_scheduled, "Copy finished tracks to the SMB target"),
    ):
        sub = run.add_parser(stage, help=help_text)
        sub.add_argument("disc_id", nargs="?", help="Only process this disc")
        sub.set_defaults(func=func)

    plan = commands.add_parser("plan", help="Inspect backup plans").add_subparsers(dest="plan_command", required=True)
    plan_list = plan.add_parser("list", help="List all backup plans")
    plan_list.add_argument(
        "--status",
        choices=["draft", "pending", "in_progress", "completed"],
        help="Only plans with this status",
    )
    plan_list.add_argument("--type", choices=[t.value for t in PlanType], help="Only plans of this type")
    plan_list.set_defaults(func=cmd_plan_list)
    plan_show = plan.add_parser("show", help="Show a plan and its track states")
    plan_show.add_argument("disc_id")
    plan_show.set_defaults(func=cmd_plan_show)
    plan.add_parser("pending", help="Scanned discs without a plan").set_defaults(func=cmd_plan_pending)
    plan_delete = plan.add_parser("delete", help="Delete a backup plan")
    plan_delete.add_argument("disc_id")
    plan_delete.set_defaults(func=cmd_plan_delete)

    metadata = commands.add_parser("metadata", help="Scan discs and inspect scanned metadata").add_subparsers(
        dest="metadata_command", required=True
    )
    metadata_read = metadata.add_parser("read", help="Read the metadata of the inserted disc")
    metadata_read.add_argument("--dev", help="Device to scan (default: first optical drive)")
    metadata_read.add_argument("--no-cache", action="store_true", help="Ignore cached metadata and re-scan")
    metadata_read.set_defaults(func=cmd_metadata_read)
    metadata_list = metadata.add_parser("list", help="List scanned discs")
    metadata_list.add_argument("--status", choices=["planned", "unplanned"], help="Only discs with this status")
    metadata_list.add_argument("--order", choices=["label", "status"], default="label", help="Sort order")
    metadata_list.set_defaults(func=cmd_metadata_list)
    for name, func, help_text in (
        ("show", cmd_metadata_show, "Show the metadata of one disc"),
        ("delete", cmd_metadata_delete, "Delete the metadata of one disc"),
    ):
        sub = metadata.add_parser(name, help=help_text)
        sub.add_argument("disc_id")
        sub.set_defaults(func=func)

    daemon = commands.add_parser("daemon", help="Serve the HTTP status API")
    daemon.add_argument("--host", default=settings.host)
    daemon.add_argument("--port", type=int, default=settings.port)
    daemon.set_defaults(func=cmd_daemon)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(debug=True if args.verbose else None)

    try:
        return args.func(args)
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]Interrupted.[/]")
        return EXIT_INTERRUPTED
    except InkError as e:
        logger.debug("Command failed", exc_info=True)
        console.print(f"[red]Error: {e}[/]")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
