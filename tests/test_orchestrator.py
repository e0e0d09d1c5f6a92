"""Tests for the sync orchestrator (download / upload / draft)."""

import json
import tempfile
from pathlib import Path

import pytest

from rbx_configs.config.models import Flag
from rbx_configs.config.store import ConfigStore
from rbx_configs.errors import (
    LocalFileError,
    MalformedConfig,
    NotFound,
    RateLimited,
    StageRejected,
)
from rbx_configs.remote.memory import InMemoryRemoteConfigClient
from rbx_configs.settings import SyncSettings
from rbx_configs.sync.diff import Operation
from rbx_configs.sync.orchestrator import SyncOrchestrator

UNIVERSE = 7


def _write(tmpdir: str, data: dict, name: str = "config.json") -> Path:
    path = Path(tmpdir) / name
    path.write_text(json.dumps(data))
    return path


def _orchestrator(published: dict, path: Path, **settings) -> tuple:
    remote = InMemoryRemoteConfigClient(published, universe_id=UNIVERSE)
    orch = SyncOrchestrator(remote, SyncSettings(universe_id=UNIVERSE, file=path, **settings))
    return remote, orch


# --- Download ---


def test_download_writes_remote_flags():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "config.json"
        remote, orch = _orchestrator(
            {"B": {"value": [1, 2]}, "A": {"description": "a", "value": "x"}}, path
        )
        store = orch.download()

        assert len(store) == 2
        assert json.loads(path.read_text()) == {
            "A": {"description": "a", "value": "x"},
            "B": {"value": [1, 2]},
        }
        assert remote.calls == ["fetch"]


def test_download_failure_leaves_file_untouched():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write(tmpdir, {"Old": {"value": 1}})
        remote, orch = _orchestrator({}, path)
        remote.fail_with["fetch"] = RateLimited("slow down")

        with pytest.raises(RateLimited):
            orch.download()
        assert json.loads(path.read_text()) == {"Old": {"value": 1}}


# --- Upload ---


def test_upload_identical_makes_no_stage_or_publish_calls():
    with tempfile.TemporaryDirectory() as tmpdir:
        data = {"A": {"value": 1}, "B": {"description": "b", "value": True}}
        path = _write(tmpdir, data)
        remote, orch = _orchestrator(data, path)

        result = orch.upload()
        assert result.plan.is_empty
        assert not result.changed
        assert remote.calls == ["fetch"]


def test_upload_stages_and_publishes_only_changes():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write(tmpdir, {"A": {"value": 2}, "B": {"value": 2}, "D": {"value": "new"}})
        remote, orch = _orchestrator(
            {"A": {"value": 1}, "B": {"value": 2}, "C": {"value": 3}}, path
        )
        result = orch.upload()

        assert result.published == ["A", "D"]
        assert result.drafts_published == 1
        assert remote.calls == ["fetch", "stage_batch", "publish_draft"]
        assert ConfigStore(remote.published) == ConfigStore.from_dict(
            {"A": {"value": 2}, "B": {"value": 2}, "C": {"value": 3}, "D": {"value": "new"}}
        )


def test_upload_dry_run_changes_nothing():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write(tmpdir, {"A": {"value": 2}})
        remote, orch = _orchestrator({"A": {"value": 1}}, path)
        result = orch.upload(dry_run=True)

        assert result.dry_run
        assert result.plan.operations == [Operation.update("A", Flag.of(2))]
        assert remote.calls == ["fetch"]
        assert remote.published["A"] == Flag.of(1)


def test_upload_batches_large_drafts():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write(tmpdir, {f"F{i:02d}": {"value": i} for i in range(5)})
        remote, orch = _orchestrator({}, path, max_draft_size=2)
        result = orch.upload()

        assert result.drafts_published == 3
        assert remote.count("stage_batch") == 3
        assert remote.count("publish_draft") == 3
        assert len(remote.published) == 5


def test_upload_failure_in_later_batch_reports_published_flags():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write(tmpdir, {f"F{i:02d}": {"value": i} for i in range(5)})
        remote, orch = _orchestrator({}, path, max_draft_size=2)
        remote.reject = {"F03": "InvalidKey"}

        with pytest.raises(StageRejected) as exc:
            orch.upload()

        assert exc.value.published == ("F00", "F01")
        assert set(remote.published) == {"F00", "F01"}


def test_upload_failure_in_first_batch_reports_nothing_published():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write(tmpdir, {f"F{i:02d}": {"value": i} for i in range(3)})
        remote, orch = _orchestrator({}, path, max_draft_size=2)
        remote.reject = {"F00": "InvalidKey"}

        with pytest.raises(StageRejected) as exc:
            orch.upload()
        assert exc.value.published == ()


def test_upload_discard_first():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write(tmpdir, {"A": {"value": 2}})
        remote, orch = _orchestrator({"A": {"value": 1}}, path, discard_before_upload=True)
        remote.draft = {"Stale": Flag.of(0)}
        orch.upload()

        assert remote.calls[0] == "discard_draft"
        assert "Stale" not in remote.published


def test_upload_malformed_file_never_touches_remote():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write(tmpdir, {"A": {"description": "no value"}})
        remote, orch = _orchestrator({}, path)

        with pytest.raises(MalformedConfig):
            orch.upload()
        assert remote.calls == []


def test_upload_missing_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        remote, orch = _orchestrator({}, Path(tmpdir) / "missing.json")
        with pytest.raises(LocalFileError):
            orch.upload()


def test_remote_errors_surface_unchanged():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write(tmpdir, {"A": {"value": 1}})
        remote = InMemoryRemoteConfigClient({}, universe_id=UNIVERSE)
        orch = SyncOrchestrator(remote, SyncSettings(universe_id=999, file=path))

        with pytest.raises(NotFound):
            orch.upload()


# --- Draft commands ---


def test_draft_discard_and_publish():
    with tempfile.TemporaryDirectory() as tmpdir:
        remote, orch = _orchestrator({}, Path(tmpdir) / "config.json")
        remote.draft = {"A": Flag.of(1)}

        orch.draft_publish()
        assert remote.published == {"A": Flag.of(1)}

        remote.draft = {"B": Flag.of(2)}
        assert orch.draft_discard() is True
        assert orch.draft_discard() is False
        assert "B" not in remote.published
