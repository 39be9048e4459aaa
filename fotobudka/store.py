"""Durable registry of effect generation jobs.

The store owns every job's lifecycle independently of whoever started it:
each job runs as an asyncio task registered under its id, and observers get
the full ordered record list through a publish/subscribe queue. Only
terminal records (success, error) are written to the JSON index; a new job
that is still processing when the process exits is gone on the next start,
while a retried job keeps its last error entry until the retry ends.

On-disk layout under ``data_dir``::

    effect_generations.json          index, relative paths only
    EffectGenerations/{id}.jpg       photo result
    EffectGenerations/{id}.mp4       video result
    EffectGenerations/input_{id}.jpg input snapshot, kept until success

All mutations happen on the event loop thread, so the registry needs no
locking; file I/O only touches the job's own uniquely named files.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import os
import shutil
import time
import uuid
from pathlib import Path

from fotobudka.errors import FotobudkaError
from fotobudka.generation import GenerationClient, encode_jpeg
from fotobudka.models import GenerationJobRecord, JobKind, JobStatus

logger = logging.getLogger(__name__)

_DEFAULT_INDEX = "effect_generations.json"
_DEFAULT_ASSETS = "EffectGenerations"
_ORPHAN_MIN_AGE = 24 * 60 * 60


def _user_message(exc: Exception) -> str:
    if isinstance(exc, FotobudkaError):
        return exc.user_message
    return str(exc) or type(exc).__name__


class EffectJobStore:
    """Registry of photo/video effect jobs, newest first."""

    def __init__(
        self,
        client: GenerationClient,
        data_dir: str | Path,
        index_name: str = _DEFAULT_INDEX,
        assets_dir: str = _DEFAULT_ASSETS,
    ) -> None:
        self.client = client
        self.data_dir = Path(data_dir)
        self.index_path = self.data_dir / index_name
        self.assets_name = assets_dir
        self.assets_path = self.data_dir / assets_dir
        self._records: list[GenerationJobRecord] = []
        self._tasks: dict[str, asyncio.Task] = {}
        self._subscribers: list[asyncio.Queue] = []
        self._saved: dict[str, dict] = {}
        self._load()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def records(self) -> list[GenerationJobRecord]:
        """Snapshot of every record, newest first."""
        return [dataclasses.replace(r) for r in self._records]

    @property
    def photo_records(self) -> list[GenerationJobRecord]:
        return [r for r in self.records if not r.is_video]

    @property
    def video_records(self) -> list[GenerationJobRecord]:
        return [r for r in self.records if r.is_video]

    def get_job(self, job_id: str) -> GenerationJobRecord | None:
        record = self._find(job_id)
        return dataclasses.replace(record) if record else None

    def is_running(self, job_id: str) -> bool:
        return job_id in self._tasks

    def resolve_path(self, path: str) -> Path:
        """Absolute location of a stored path (legacy absolute paths pass through)."""
        p = Path(path)
        return p if p.is_absolute() else self.data_dir / p

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start_job(self, photo: bytes, template_id: int, kind: JobKind = JobKind.PHOTO_EFFECT) -> str:
        """Register a new job and start it in the background.

        Must be called from within the running event loop. Returns the job
        id immediately; no network I/O happens before returning.

        Raises:
            OSError: The input snapshot could not be written.
            RuntimeError: No event loop is running.
        """
        job_id = str(uuid.uuid4())
        input_path = self._write_asset(f"input_{job_id}.jpg", photo, strict=True)
        try:
            self._spawn(job_id, photo)
        except RuntimeError:
            self._delete_file(input_path)
            raise

        record = GenerationJobRecord(
            id=job_id,
            kind=kind,
            template_id=template_id,
            status=JobStatus.PROCESSING,
            input_source_path=input_path,
            created_at=time.time(),
        )
        self._records.insert(0, record)
        logger.info("Job %s started: %s template_id=%d", job_id, kind.value, template_id)
        self._publish()
        return job_id

    def retry_job(self, job_id: str) -> bool:
        """Restart a failed job from its saved input. Never raises.

        Returns:
            True if a new background task was started.
        """
        record = self._find(job_id)
        if record is None or record.status is not JobStatus.ERROR:
            logger.debug("Retry ignored for %s: not a failed job", job_id)
            return False
        if job_id in self._tasks:
            logger.warning("Retry ignored for %s: a task is already running", job_id)
            return False
        if not record.input_source_path:
            logger.warning("Retry ignored for %s: no saved input", job_id)
            return False

        try:
            photo = self.resolve_path(record.input_source_path).read_bytes()
        except OSError as exc:
            logger.warning("Retry ignored for %s: cannot read saved input: %s", job_id, exc)
            return False

        try:
            self._spawn(job_id, photo)
        except RuntimeError as exc:
            logger.warning("Retry ignored for %s: %s", job_id, exc)
            return False

        record.status = JobStatus.PROCESSING
        record.error_message = None
        record.remote_job_id = None
        logger.info("Job %s retried", job_id)
        self._publish()
        return True

    def remove_job(self, job_id: str) -> bool:
        """Delete a record and all of its files. Irreversible."""
        record = self._find(job_id)
        if record is None:
            return False

        task = self._tasks.pop(job_id, None)
        if task is not None:
            task.cancel()

        for path in (record.result_image_path, record.result_video_path, record.input_source_path):
            self._delete_file(path)
        self._records.remove(record)
        logger.info("Job %s removed", job_id)
        self._persist()
        self._publish()
        return True

    async def wait(self, job_id: str) -> GenerationJobRecord | None:
        """Wait for the job's current task to end and return its record.

        Cancelling the waiter does not cancel the job.
        """
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait([task])
        return self.get_job(job_id)

    async def shutdown(self) -> None:
        """Cancel every running job; their records are left untouched."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self) -> asyncio.Queue:
        """Queue receiving a full record snapshot now and after every mutation."""
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self.records)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _publish(self) -> None:
        snapshot = self.records
        for queue in self._subscribers:
            queue.put_nowait(snapshot)

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _spawn(self, job_id: str, photo: bytes) -> None:
        coro = self._run_job(job_id, photo)
        try:
            task = asyncio.create_task(coro, name=f"effect-job-{job_id}")
        except RuntimeError:
            coro.close()
            raise
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._forget_task(job_id, t))

    def _forget_task(self, job_id: str, task: asyncio.Task | None) -> None:
        if task is not None and self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    def _release_current_task(self, job_id: str) -> None:
        # A job whose terminal state is published no longer blocks a retry.
        self._forget_task(job_id, asyncio.current_task())

    async def _run_job(self, job_id: str, photo: bytes) -> None:
        record = self._find(job_id)
        if record is None:
            return
        try:
            if record.is_video:
                await self._run_video(job_id, record.template_id, photo)
            else:
                await self._run_photo(job_id, record.template_id, photo)
        except asyncio.CancelledError:
            logger.info("Job %s abandoned", job_id)
            raise
        except Exception as exc:
            logger.warning("Job %s failed: %s", job_id, exc)
            self._mark_error(job_id, _user_message(exc), photo)

    async def _run_photo(self, job_id: str, template_id: int, photo: bytes) -> None:
        remote_id = await self.client.start_effect(photo, template_id)
        self._set_remote_id(job_id, remote_id)
        result = await self.client.poll_until_finished(remote_id)
        data = await self.client.download_result(result)
        image = encode_jpeg(data)
        self._mark_success(job_id, image_path=self._write_asset(f"{job_id}.jpg", image, strict=True))

    async def _run_video(self, job_id: str, template_id: int, photo: bytes) -> None:
        remote_id = await self.client.start_video(photo, template_id)
        self._set_remote_id(job_id, remote_id)
        downloaded = await self.client.poll_download_video(remote_id)
        try:
            self.assets_path.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(downloaded, self.assets_path / f"{job_id}.mp4")
        finally:
            downloaded.unlink(missing_ok=True)
        self._mark_success(job_id, video_path=f"{self.assets_name}/{job_id}.mp4")

    # ------------------------------------------------------------------
    # Record transitions
    # ------------------------------------------------------------------

    def _find(self, job_id: str) -> GenerationJobRecord | None:
        for record in self._records:
            if record.id == job_id:
                return record
        return None

    def _set_remote_id(self, job_id: str, remote_id: str) -> None:
        record = self._find(job_id)
        if record is None:
            return
        record.remote_job_id = remote_id
        self._publish()

    def _mark_success(
        self,
        job_id: str,
        image_path: str | None = None,
        video_path: str | None = None,
    ) -> None:
        record = self._find(job_id)
        if record is None:
            self._delete_file(image_path or video_path)
            return
        self._release_current_task(job_id)
        input_path = record.input_source_path
        record.status = JobStatus.SUCCESS
        record.result_image_path = None if record.is_video else image_path
        record.result_video_path = video_path if record.is_video else None
        record.input_source_path = None
        record.error_message = None
        self._delete_file(input_path)
        logger.info("Job %s succeeded: %s", job_id, record.result_path)
        self._persist()
        self._publish()

    def _mark_error(self, job_id: str, message: str, photo: bytes | None = None) -> None:
        record = self._find(job_id)
        if record is None:
            return
        self._release_current_task(job_id)
        if photo is not None:
            self._ensure_input(record, photo)
        record.status = JobStatus.ERROR
        record.error_message = message
        record.result_image_path = None
        record.result_video_path = None
        self._persist()
        self._publish()

    # ------------------------------------------------------------------
    # Files and persistence
    # ------------------------------------------------------------------

    def _write_asset(self, filename: str, data: bytes, strict: bool = False) -> str | None:
        """Write an asset file and return its path relative to data_dir."""
        try:
            self.assets_path.mkdir(parents=True, exist_ok=True)
            (self.assets_path / filename).write_bytes(data)
        except OSError as exc:
            if strict:
                raise
            logger.error("Failed to write %s: %s", filename, exc)
            return None
        return f"{self.assets_name}/{filename}"

    def _delete_file(self, path: str | None) -> None:
        if not path:
            return
        try:
            self.resolve_path(path).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to delete %s: %s", path, exc)

    def _ensure_input(self, record: GenerationJobRecord, photo: bytes) -> None:
        if record.input_source_path and self.resolve_path(record.input_source_path).is_file():
            return
        logger.warning("Input snapshot of job %s is missing; rewriting it", record.id)
        record.input_source_path = self._write_asset(f"input_{record.id}.jpg", photo)

    def _persist(self) -> None:
        entries = []
        for record in self._records:
            if record.status is not JobStatus.PROCESSING:
                entries.append(record.to_dict())
            elif record.id in self._saved:
                # A retry in flight keeps its last terminal entry on disk.
                entries.append(self._saved[record.id])
        self._saved = {entry["id"]: entry for entry in entries}
        tmp = self.index_path.with_name(self.index_path.name + ".tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(entries, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self.index_path)
        except OSError as exc:
            logger.error("Failed to persist job index %s: %s", self.index_path, exc)

    def _load(self) -> None:
        if self.index_path.exists():
            try:
                with open(self.index_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Ignoring unreadable job index %s: %s", self.index_path, exc)
                return
            if not isinstance(data, list):
                logger.warning("Ignoring job index %s: expected a list", self.index_path)
                return

            for entry in data:
                try:
                    self._records.append(GenerationJobRecord.from_dict(entry))
                except ValueError as exc:
                    logger.warning("Skipping job index entry: %s", exc)
            self._records.sort(key=lambda r: r.created_at, reverse=True)
            self._saved = {r.id: r.to_dict() for r in self._records}
            logger.info("Loaded %d jobs from %s", len(self._records), self.index_path)

        self._sweep_orphans()

    def _sweep_orphans(self) -> None:
        """Delete stale asset files no record refers to (jobs that died mid-flight).

        Files younger than _ORPHAN_MIN_AGE may belong to a job still running
        in another process on the same data dir and are left alone.
        """
        if not self.assets_path.is_dir():
            return
        now = time.time()
        referenced = {
            self.resolve_path(p).resolve()
            for r in self._records
            for p in (r.result_image_path, r.result_video_path, r.input_source_path)
            if p
        }
        for path in self.assets_path.iterdir():
            if not path.is_file() or path.resolve() in referenced:
                continue
            try:
                age = now - path.stat().st_mtime
            except OSError:
                continue
            if age >= _ORPHAN_MIN_AGE:
                logger.debug("Removing orphaned asset %s", path)
                self._delete_file(str(path))
