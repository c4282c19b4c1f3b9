import threading
import time
from pathlib import Path

from repoharvest.cloning import CloneError, CloneResult
from repoharvest.ingestion import RepoDescriptor
from repoharvest.services import HarvestCallbacks, HarvestPipeline
from repoharvest.settings import HarvestSettings


def _settings(tmp_path: Path, **overrides) -> HarvestSettings:
    values = dict(
        username="octocat",
        access_token="token",
        package_filter="plugin",
        output_root=tmp_path / "collected",
        clone_root=tmp_path / "repo",
        manifest_path=tmp_path / "TestedPackages.txt",
        search_roots=["."],
    )
    values.update(overrides)
    return HarvestSettings(_env_file=None, **values)


class FakeWorker:
    """Creates a small clone directory instead of talking to git."""

    def __init__(self, clone_root: Path, failing=(), delays=None, barrier=None) -> None:
        self.clone_root = clone_root
        self.failing = set(failing)
        self.delays = delays or {}
        self.barrier = barrier
        self.calls = []
        self.finished = []
        self._lock = threading.Lock()

    def run(self, descriptor: RepoDescriptor) -> CloneResult:
        with self._lock:
            self.calls.append(descriptor.destination_name)
        if self.barrier is not None:
            self.barrier.wait(timeout=10)
        time.sleep(self.delays.get(descriptor.destination_name, 0))
        try:
            if descriptor.destination_name in self.failing:
                raise CloneError(descriptor, "clone", "remote hung up")
            target = self.clone_root / descriptor.destination_name
            package = target / f"plugin-{descriptor.destination_name}"
            package.mkdir(parents=True)
            (package / "Main.java").write_text(descriptor.url)
            return CloneResult(descriptor=descriptor, local_directory=target)
        finally:
            with self._lock:
                self.finished.append(descriptor.destination_name)


def _descriptors(*names):
    return [RepoDescriptor(url=f"https://example.com/{name}.git", destination_name=name) for name in names]


def test_every_row_gets_a_concurrent_worker(tmp_path: Path) -> None:
    names = [f"repo{i}" for i in range(6)]
    # the barrier only opens when all six workers run at the same time
    worker = FakeWorker(tmp_path / "repo", barrier=threading.Barrier(len(names)))
    pipeline = HarvestPipeline(_settings(tmp_path), worker=worker)

    summary = pipeline.run(_descriptors(*names))

    assert sorted(worker.calls) == sorted(names)
    assert summary.total == 6 and summary.cloned == 6 and summary.failed == 0
    assert sorted(summary.packages) == sorted(f"plugin-{name}" for name in names)


def test_collection_waits_for_slow_workers(tmp_path: Path) -> None:
    worker = FakeWorker(tmp_path / "repo", delays={"slow": 0.3})
    collected = []
    callbacks = HarvestCallbacks(collected=lambda report: collected.append(report.clone_directory.name))
    pipeline = HarvestPipeline(_settings(tmp_path), worker=worker)

    pipeline.run(_descriptors("fast", "slow"), callbacks=callbacks)

    assert sorted(worker.finished) == ["fast", "slow"]
    assert sorted(collected) == ["fast", "slow"]
    assert collected[-1] == "slow"


def test_failed_clone_never_reaches_collector(tmp_path: Path) -> None:
    worker = FakeWorker(tmp_path / "repo", failing={"broken"})
    finished = []
    callbacks = HarvestCallbacks(clone_finished=lambda d, ok: finished.append((d.destination_name, ok)))
    pipeline = HarvestPipeline(_settings(tmp_path), worker=worker)

    summary = pipeline.run(_descriptors("good", "broken"), callbacks=callbacks)

    manifest = (tmp_path / "TestedPackages.txt").read_text().splitlines()
    assert manifest == ["plugin-good"]
    assert not (tmp_path / "collected" / "plugin-broken").exists()
    assert summary.failed == 1 and summary.cloned == 1
    assert "remote hung up" in summary.failures["broken"]
    assert sorted(finished) == [("broken", False), ("good", True)]
    assert pipeline.status.get("broken").stage == "clone"


def test_unexpected_worker_error_is_contained(tmp_path: Path) -> None:
    class ExplodingWorker(FakeWorker):
        def run(self, descriptor):
            if descriptor.destination_name == "boom":
                raise RuntimeError("unexpected")
            return super().run(descriptor)

    pipeline = HarvestPipeline(_settings(tmp_path), worker=ExplodingWorker(tmp_path / "repo"))

    summary = pipeline.run(_descriptors("boom", "fine"))

    assert summary.failed == 1
    assert summary.packages == ["plugin-fine"]
    assert pipeline.status.get("boom").state == "failed"
    assert pipeline.status.get("fine").state == "collected"


def test_worker_cap_limits_concurrency(tmp_path: Path) -> None:
    active = []
    peak = []
    lock = threading.Lock()

    class CountingWorker(FakeWorker):
        def run(self, descriptor):
            with lock:
                active.append(descriptor)
                peak.append(len(active))
            time.sleep(0.05)
            with lock:
                active.remove(descriptor)
            return super().run(descriptor)

    pipeline = HarvestPipeline(_settings(tmp_path, max_workers=2), worker=CountingWorker(tmp_path / "repo"))

    summary = pipeline.run(_descriptors("a", "b", "c", "d", "e"))

    assert max(peak) <= 2
    assert summary.cloned == 5


def test_empty_input_finishes_with_empty_manifest(tmp_path: Path) -> None:
    pipeline = HarvestPipeline(_settings(tmp_path), worker=FakeWorker(tmp_path / "repo"))

    summary = pipeline.run([])

    assert summary.total == 0
    assert (tmp_path / "TestedPackages.txt").read_text() == ""


def test_default_worker_uses_settings(tmp_path: Path) -> None:
    settings = _settings(tmp_path, cutoff="2021-01-01 00:00:00")
    pipeline = HarvestPipeline(settings)
    assert pipeline.worker.clone_root == tmp_path / "repo"
    assert pipeline.worker.access_token == "token"
    assert pipeline.worker.cutoff == settings.cutoff
