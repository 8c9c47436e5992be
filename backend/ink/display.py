"""Rich console output for the CLI: plan tables and the review prompt."""

import subprocess
from pathlib import Path

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from ink.core.errors import InkError
from ink.core.markers import MarkerStore, marker_key
from ink.models.pipeline import MarkerKind, TrackQueue, TrackQueueStatus, TrackStatus
from ink.models.plan import BackupPlan, DiscMetadata, EpisodeCandidate, TrackPlan
from ink.services.queue_rules import QueueEngine
from ink.services.stages import ReviewDecision
from ink.services.track_state import track_state

console = Console()

QUEUE_STYLES = {
    TrackQueueStatus.INELIGIBLE: "dim",
    TrackQueueStatus.BLOCKED: "grey50",
    TrackQueueStatus.READY: "cyan",
    TrackQueueStatus.RUNNING: "yellow",
    TrackQueueStatus.ERROR: "bold red",
    TrackQueueStatus.DONE: "green",
}

TRACK_STYLES = {
    TrackStatus.COMPLETE: "bold green",
    TrackStatus.RUNNING: "bold yellow",
    TrackStatus.ERROR: "bold red",
    TrackStatus.IGNORED: "dim",
    TrackStatus.READY: "bold cyan",
}

PROGRESS_STYLES = {
    "draft": "dim",
    "pending": "cyan",
    "in_progress": "yellow",
    "completed": "green",
}


def styled(text: str, style: str) -> str:
    return f"[{style}]{text}[/]"


def reviewed_name(store: MarkerStore, plan: BackupPlan, track: TrackPlan) -> str | None:
    key = marker_key(plan.disc_id, track.track_number, TrackQueue.REVIEW, MarkerKind.DONE)
    if not store.present(key):
        return None
    try:
        return store.read_payload(key).get("finalName")
    except InkError:
        return None


def plans_table(rows: list[tuple[BackupPlan, str]]) -> Table:
    table = Table(title="Backup Plans", show_header=True, header_style="bold magenta")
    table.add_column("Disc ID", style="grey50")
    table.add_column("Title", style="cyan")
    table.add_column("Type")
    table.add_column("Tracks", justify="right")
    table.add_column("Status")
    for plan, progress in rows:
        table.add_row(
            plan.disc_id,
            plan.title or "-",
            plan.type.value,
            str(len(plan.tracks)),
            styled(progress, PROGRESS_STYLES.get(progress, "white")),
        )
    return table


def plan_table(engine: QueueEngine, plan: BackupPlan) -> Table:
    """Per-stage status of each track. Long output names wrap rather than truncate."""
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Output", overflow="fold")
    table.add_column("State")
    for queue in TrackQueue:
        table.add_column(queue.value.capitalize())
    table.add_column("Target Dir", style="grey50")

    for track in plan.tracks:
        state = track_state(engine, plan, track)
        name = track.output.filename
        final_name = reviewed_name(engine.store, plan, track)
        if final_name:
            name += f"\n[green]-> {final_name}[/]"
        table.add_row(
            str(track.track_number),
            name,
            styled(state.status.value.upper(), TRACK_STYLES[state.status]),
            *(styled(state.queues[q].value, QUEUE_STYLES[state.queues[q]]) for q in TrackQueue),
            track.output.directory or "-",
        )
    return table


def plan_detail(engine: QueueEngine, plan: BackupPlan, plan_file: Path) -> None:
    """Print a plan and the per-stage status of each of its tracks."""
    console.print(f"\n[bold]Plan: {plan.title or plan.disc_id}[/]")
    console.print(f"[grey50]File: {plan_file}[/]")
    console.print(f"[grey50]Disc ID: {plan.disc_id}[/]")
    console.print(f"[grey50]Status: {plan.status.value}  Type: {plan.type.value}[/]")
    console.print(plan_table(engine, plan))


def pending_table(entries: list[tuple[str, DiscMetadata | None, str | None]]) -> Table:
    """``entries`` are (disc_id, metadata, error message)."""
    table = Table(title="Scanned discs without a plan", show_header=True, header_style="bold magenta")
    table.add_column("Disc ID", style="grey50")
    table.add_column("Disc Name")
    table.add_column("Tracks", justify="right")
    for disc_id, metadata, error in entries:
        if metadata is None:
            table.add_row(styled(disc_id, "red"), styled(error or "unreadable", "red"), "-")
            continue
        table.add_row(disc_id, disc_name(metadata), str(len(metadata.tracks)))
    return table


def disc_name(metadata: DiscMetadata) -> str:
    return metadata.user_provided_name or metadata.volume_label or "Unknown"


def metadata_table(rows: list[tuple[DiscMetadata, str]]) -> Table:
    """``rows`` are (metadata, planned/unplanned)."""
    table = Table(title="Scanned discs", show_header=True, header_style="bold magenta")
    table.add_column("Disc Name", style="bold")
    table.add_column("Disc ID", style="grey50")
    table.add_column("Tracks", justify="right")
    table.add_column("Status")
    for metadata, status in rows:
        table.add_row(
            disc_name(metadata),
            metadata.disc_id,
            str(len(metadata.tracks)),
            styled(status, "green" if status == "planned" else "cyan"),
        )
    return table


def metadata_detail(metadata: DiscMetadata) -> None:
    """Print a scanned disc and its titles."""
    console.print(f"\n[bold]Title: {disc_name(metadata)}[/]")
    console.print(f"[grey50]ID: {metadata.disc_id}[/]")
    console.print(f"Tracks: {len(metadata.tracks)}")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Duration")
    table.add_column("Size", justify="right")
    table.add_column("Chapters", justify="right")
    for track in metadata.tracks:
        table.add_row(
            str(track.track_number),
            track.title or "-",
            track.duration,
            f"{track.size / 1024 / 1024:.0f} MB",
            str(track.chapters),
        )
    console.print(table)


def prompt_disc_name(default: str) -> str:
    default = default or "Unknown"
    answer = Prompt.ask("[yellow]Enter a name for this disc[/]", console=console, default=default)
    return answer.strip() or default


def episode_name(plan: BackupPlan, candidate: EpisodeCandidate) -> str:
    """``<title> - S01E02 - <episode name>``."""
    return f"{plan.title} - S{candidate.season:02d}E{candidate.number:02d} - {candidate.name}"


class ConsoleReviewer:
    """Interactive review prompt; plays each track in an external player.

    The prompt blocks the event loop on purpose: a review cycle runs nothing
    else, and Ctrl+C must interrupt the prompt directly.
    """

    def __init__(self, player: str = "vlc") -> None:
        self._player = player
        self._process: subprocess.Popen | None = None

    def play(self, video: Path) -> None:
        self.close()
        if not self._player:
            return
        try:
            self._process = subprocess.Popen(
                [self._player, str(video)],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            console.print(f"[red]Failed to launch {self._player}: {e}[/]")

    def close(self) -> None:
        if self._process is not None and self._process.poll() is None:
            self._process.terminate()
        self._process = None

    async def __call__(
        self,
        plan: BackupPlan,
        track: TrackPlan,
        video: Path,
        candidates: list[EpisodeCandidate],
    ) -> ReviewDecision:
        console.print(f"\n[bold cyan]Track {track.track_number}[/] {track.name} ({video})")
        self.play(video)

        for i, candidate in enumerate(candidates, start=1):
            console.print(f"  [bold]{i}[/]. {candidate.name} (S{candidate.season}E{candidate.number})")

        answer = Prompt.ask(
            "Episode number, a name, [b]s[/]kip or [b]i[/]gnore",
            console=console,
            default="s",
        ).strip()

        if answer.lower() in ("s", "skip", ""):
            console.print("[yellow]Skipped.[/]")
            return ReviewDecision()
        if answer.lower() in ("i", "ignore"):
            console.print("[grey50]Ignored.[/]")
            return ReviewDecision(ignore=True)
        if answer.isdigit() and 1 <= int(answer) <= len(candidates):
            candidate = candidates[int(answer) - 1]
            decision = ReviewDecision(final_name=episode_name(plan, candidate), episode_id=candidate.id)
        else:
            decision = ReviewDecision(final_name=answer)
        console.print(f"[green]  -> Marked as: {decision.final_name}[/]")
        return decision
