"""Parallel best-effort sync of remote prefixes to local directories.

Every task runs its own ``rclone copy`` process. All processes are started
before the orchestrator waits on any, every one is waited on exactly once,
and a failing task never cancels its siblings. The outcome of each task is
kept so the batch report can name the paths that failed.
"""

import os
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from tqdm import tqdm

from .logging import log_info, log_success, log_warn, log_error, format_elapsed
from .rclone import SyncFlags, build_copy_command

DOWNLOAD = "download"
UPLOAD = "upload"


@dataclass(frozen=True)
class SyncTask:
    """One directed copy between a remote prefix and a local directory."""
    label: str
    remote: str
    local: str
    direction: str = DOWNLOAD
    excludes: Tuple[str, ...] = ()

    @property
    def source(self) -> str:
        return self.remote if self.direction == DOWNLOAD else self.local

    @property
    def destination(self) -> str:
        return self.local if self.direction == DOWNLOAD else self.remote


@dataclass
class SyncResult:
    """Terminal state of a single task."""
    label: str
    ok: bool
    elapsed: float
    returncode: Optional[int] = None
    error: Optional[str] = None


@dataclass
class BatchReport:
    """Outcome of a drained batch, in task order."""
    results: List[SyncResult] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def failures(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def failed_labels(self) -> List[str]:
        return [r.label for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return self.failures == 0


class SyncOrchestrator:
    """Run a batch of sync tasks concurrently and collect their results.

    Args:
        flags: rclone performance flags shared by every task
        rclone_bin: Copy tool executable
        timeout: Per-task timeout in seconds; None blocks until rclone exits
        dry_run: Log the commands without creating directories or copying
        show_progress: Show a tqdm bar counting finished tasks
    """

    def __init__(
        self,
        flags: Optional[SyncFlags] = None,
        rclone_bin: str = "rclone",
        timeout: Optional[float] = None,
        dry_run: bool = False,
        show_progress: bool = True,
    ):
        self.flags = flags or SyncFlags()
        self.rclone_bin = rclone_bin
        self.timeout = timeout
        self.dry_run = dry_run
        self.show_progress = show_progress

    def command_for(self, task: SyncTask) -> List[str]:
        return build_copy_command(
            task.source, task.destination,
            flags=self.flags, excludes=task.excludes, rclone_bin=self.rclone_bin,
        )

    def run(self, tasks: Sequence[SyncTask]) -> BatchReport:
        """Launch every task, wait for all of them, return the report."""
        tasks = list(tasks)
        if not tasks:
            log_info("No sync tasks configured")
            return BatchReport()

        start = time.monotonic()
        results: List[Optional[SyncResult]] = [None] * len(tasks)

        # One worker per task so nothing queues behind a slow transfer
        with ThreadPoolExecutor(max_workers=len(tasks)) as executor:
            futures = {executor.submit(self._run_task, task): i for i, task in enumerate(tasks)}
            with tqdm(total=len(tasks), desc="Syncing", unit="task",
                      disable=not self.show_progress) as pbar:
                for future in as_completed(futures):
                    i = futures[future]
                    try:
                        result = future.result()
                    except Exception as e:
                        result = SyncResult(tasks[i].label, False, 0.0, error=str(e))
                    results[i] = result
                    pbar.update(1)

                    if result.ok:
                        log_success(f"{result.label}: done in {format_elapsed(result.elapsed)}")
                    else:
                        log_warn(f"{result.label}: failed - {result.error}")

        return BatchReport(results=list(results), elapsed=time.monotonic() - start)

    def _run_task(self, task: SyncTask) -> SyncResult:
        start = time.monotonic()
        cmd = self.command_for(task)
        log_info(f"{task.label}: {task.source} -> {task.destination}")

        if self.dry_run:
            log_info(f"[DRY RUN] {' '.join(cmd)}")
            return SyncResult(task.label, True, 0.0, returncode=0)

        try:
            _prepare_local(task)
        except OSError as e:
            return SyncResult(task.label, False, time.monotonic() - start,
                              error=f"cannot prepare {task.local}: {e}")

        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            return SyncResult(task.label, False, time.monotonic() - start,
                              error=f"timed out after {self.timeout}s")
        except OSError as e:
            return SyncResult(task.label, False, time.monotonic() - start, error=str(e))

        elapsed = time.monotonic() - start
        if proc.returncode == 0:
            return SyncResult(task.label, True, elapsed, returncode=0)
        return SyncResult(task.label, False, elapsed, returncode=proc.returncode,
                          error=_last_line(proc.stderr) or f"exit code {proc.returncode}")


def _prepare_local(task: SyncTask) -> None:
    if task.direction == DOWNLOAD:
        os.makedirs(task.local, exist_ok=True)
    elif not os.path.isdir(task.local):
        raise FileNotFoundError(f"no such directory: {task.local}")


def _last_line(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    return lines[-1] if lines else None


def log_report(report: BatchReport) -> None:
    """Print the batch summary line and any failed tasks."""
    if report.total == 0:
        log_info("Sync skipped: nothing to do")
        return
    succeeded = report.total - report.failures
    summary = (f"Sync finished in {format_elapsed(report.elapsed)}: "
               f"{succeeded}/{report.total} succeeded, {report.failures} failed")
    if report.ok:
        log_success(summary)
        return
    log_warn(summary)
    for result in report.results:
        if not result.ok:
            log_error(f"  {result.label}: {result.error}")
    log_info("Failed paths are not retried; re-run the sync to resume")


def run_sync_batch(tasks: Sequence[SyncTask], **kwargs) -> BatchReport:
    """Convenience wrapper: run ``tasks`` and log the summary."""
    report = SyncOrchestrator(**kwargs).run(tasks)
    log_report(report)
    return report
