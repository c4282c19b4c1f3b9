"""
Clone-and-collect orchestration.

Every repository row gets its own clone task. Finished clones are pushed onto
a completion queue that the calling thread drains sequentially through the
collector; the queue is closed only once every clone task has returned.
"""
from __future__ import annotations

import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from ..cloning import CloneError, CloneResult, CloneWorker
from ..collection import CollectionReport, Collector, Manifest
from ..ingestion import RepoDescriptor
from ..logger import get_logger
from ..settings import HarvestSettings
from .status import HarvestSummary, StatusBoard

log = get_logger(__name__)


class _Closed:
    """Completion queue sentinel."""


_CLOSED = _Closed()


@dataclass
class HarvestCallbacks:
    clone_started: Optional[Callable[[RepoDescriptor], None]] = None
    clone_finished: Optional[Callable[[RepoDescriptor, bool], None]] = None
    collected: Optional[Callable[[CollectionReport], None]] = None
    file_copied: Optional[Callable[[Path], None]] = None


class HarvestPipeline:
    """Runs clone workers concurrently and feeds their results to one collector."""

    def __init__(
        self,
        settings: HarvestSettings,
        worker: Optional[CloneWorker] = None,
    ) -> None:
        self.settings = settings
        self.worker = worker or CloneWorker(
            clone_root=settings.clone_root,
            username=settings.username,
            access_token=settings.access_token.get_secret_value(),
            cutoff=settings.cutoff,
        )
        self.status = StatusBoard()

    def _worker_count(self, descriptors: Sequence[RepoDescriptor]) -> int:
        if self.settings.max_workers:
            return max(1, min(self.settings.max_workers, len(descriptors)))
        return max(1, len(descriptors))

    def _clone_task(
        self,
        descriptor: RepoDescriptor,
        completed: "queue.Queue[Union[CloneResult, _Closed]]",
        callbacks: HarvestCallbacks,
    ) -> None:
        name = descriptor.destination_name
        self.status.mark_cloning(name)
        ok = False
        try:
            if callbacks.clone_started:
                callbacks.clone_started(descriptor)
            result = self.worker.run(descriptor)
        except CloneError as exc:
            log.error("clone_failed", url=descriptor.url, destination=name, stage=exc.stage, error=str(exc))
            self.status.mark_failed(name, str(exc), stage=exc.stage)
        except Exception as exc:
            log.exception("clone_crashed", url=descriptor.url, destination=name)
            self.status.mark_failed(name, str(exc) or type(exc).__name__)
        else:
            self.status.mark_cloned(name, revision=result.revision)
            completed.put(result)
            ok = True
        if callbacks.clone_finished:
            callbacks.clone_finished(descriptor, ok)

    @staticmethod
    def _close_when_done(
        futures: List["Future[None]"],
        completed: "queue.Queue[Union[CloneResult, _Closed]]",
    ) -> None:
        wait(futures)
        completed.put(_CLOSED)

    def _build_collector(self, manifest: Manifest, callbacks: HarvestCallbacks) -> Collector:
        return Collector(
            output_root=self.settings.output_root,
            package_filter=self.settings.package_filter,
            manifest=manifest,
            search_roots=self.settings.search_roots,
            copy_callback=callbacks.file_copied,
        )

    def _drain(
        self,
        collector: Collector,
        completed: "queue.Queue[Union[CloneResult, _Closed]]",
        callbacks: HarvestCallbacks,
    ) -> None:
        while True:
            item = completed.get()
            if isinstance(item, _Closed):
                return
            name = item.descriptor.destination_name
            try:
                report = collector.collect(item.local_directory)
            except Exception:
                log.exception("collection_crashed", clone=str(item.local_directory))
                self.status.mark_collected(name, None)
                continue
            self.status.mark_collected(name, report.manifest_entry)
            if callbacks.collected:
                callbacks.collected(report)

    def run(
        self,
        descriptors: Sequence[RepoDescriptor],
        callbacks: Optional[HarvestCallbacks] = None,
    ) -> HarvestSummary:
        """Clone every descriptor and collect from each successful clone."""
        cb = callbacks or HarvestCallbacks()
        for descriptor in descriptors:
            self.status.register(descriptor)

        self.settings.output_root.mkdir(parents=True, exist_ok=True)
        completed: "queue.Queue[Union[CloneResult, _Closed]]" = queue.Queue()
        workers = self._worker_count(descriptors)
        log.info("harvest_started", repositories=len(descriptors), workers=workers)

        with Manifest.create(self.settings.manifest_path) as manifest:
            collector = self._build_collector(manifest, cb)
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="clone") as executor:
                futures = [executor.submit(self._clone_task, d, completed, cb) for d in descriptors]
                closer = threading.Thread(
                    target=self._close_when_done,
                    args=(futures, completed),
                    name="clone-closer",
                    daemon=True,
                )
                closer.start()
                self._drain(collector, completed, cb)
                closer.join()
            packages = list(manifest.entries)

        summary = self.status.summary(packages, manifest_path=str(self.settings.manifest_path))
        log.info(
            "harvest_completed",
            repositories=summary.total,
            cloned=summary.cloned,
            failed=summary.failed,
            packages=len(summary.packages),
        )
        return summary
