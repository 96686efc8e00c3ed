"""
Tests for durable deployment records.

Tests cover:
- Save/load of live and terminal deployments
- Backup fallback for a corrupt primary record
- Schema validation and version checks
"""

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from canaryctl.core.models import Phase, TrafficWeights
from canaryctl.state.schema import CURRENT_SCHEMA_VERSION, DeploymentRecord
from canaryctl.state.store import DeploymentRepository, record_from_deployment
from canaryctl.utils.errors import StateLoadError
from tests.helpers import rollout_request


@pytest.fixture
def repository(tmp_path):
    return DeploymentRepository(tmp_path / "state")


@pytest.fixture
def persisted_controller(make_controller, repository):
    return make_controller(repository=repository)


class TestSaveAndLoad:
    def test_start_writes_record(self, persisted_controller, repository):
        persisted_controller.start(rollout_request())
        path = repository.path_for("checkout")
        assert path.is_file()

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["schema_version"] == CURRENT_SCHEMA_VERSION
        assert data["phase"] == "staging"
        assert data["routing"] is None

    def test_load_restores_state_and_routing(self, persisted_controller, repository):
        persisted_controller.start(rollout_request())
        persisted_controller.tick("checkout")

        deployment, directive = repository.load("checkout")

        assert deployment.state.label == "monitoring(5)"
        assert deployment.epoch == 1
        assert len(deployment.stages) == 1
        assert deployment.thresholds.min_sample_count == 20
        assert directive is not None
        assert directive.weights == TrafficWeights(95, 5)
        assert directive.epoch == 1

    def test_abort_flag_is_persisted(self, persisted_controller, repository):
        persisted_controller.start(rollout_request())
        persisted_controller.request_abort("checkout", "bad build")
        deployment, _ = repository.load("checkout")
        assert deployment.abort_requested == "operator abort: bad build"

    def test_terminal_record(self, persisted_controller, repository):
        persisted_controller.start(rollout_request())
        persisted_controller.tick("checkout")
        persisted_controller.abort("checkout")

        deployment, directive = repository.load("checkout")
        assert deployment.phase is Phase.ABORTED
        assert deployment.finished_at is not None
        assert directive.weights == TrafficWeights(100, 0)

    def test_load_missing(self, repository):
        with pytest.raises(StateLoadError):
            repository.load("nope")


class TestCorruption:
    def test_falls_back_to_backup(self, persisted_controller, repository):
        persisted_controller.start(rollout_request())
        persisted_controller.tick("checkout")
        repository.path_for("checkout").write_text("{not json", encoding="utf-8")

        deployment, directive = repository.load("checkout")

        assert deployment.state.label == "staging(5)"
        assert directive is None

    def test_corrupt_without_backup(self, persisted_controller, repository):
        persisted_controller.start(rollout_request())
        repository.path_for("checkout").write_text("[]", encoding="utf-8")
        with pytest.raises(StateLoadError):
            repository.load("checkout")

    def test_newer_schema_refused(self, persisted_controller, repository):
        persisted_controller.start(rollout_request())
        path = repository.path_for("checkout")
        data = json.loads(path.read_text(encoding="utf-8"))
        data["schema_version"] = CURRENT_SCHEMA_VERSION + 1
        path.write_text(json.dumps(data), encoding="utf-8")

        with pytest.raises(StateLoadError, match="newer"):
            repository.load("checkout")

    def test_load_all_skips_unreadable(self, persisted_controller, repository):
        persisted_controller.start(rollout_request("checkout"))
        persisted_controller.start(rollout_request("search"))
        repository.path_for("broken").write_text("garbage", encoding="utf-8")

        loaded = repository.load_all()

        assert sorted(d.deployment_id for d, _ in loaded) == ["checkout", "search"]


class TestRecordSchema:
    def _record_dict(self, controller):
        controller.start(rollout_request())
        deployment = controller._get("checkout")
        return record_from_deployment(deployment).model_dump(mode="json")

    def test_rejects_descending_schedule(self, controller):
        data = self._record_dict(controller)
        data["schedule"] = [
            {"percentage": 50, "min_duration_seconds": 60},
            {"percentage": 100, "min_duration_seconds": 60},
            {"percentage": 25, "min_duration_seconds": 60},
        ]
        with pytest.raises(PydanticValidationError):
            DeploymentRecord.model_validate(data)

    def test_rejects_unbalanced_routing(self, controller):
        data = self._record_dict(controller)
        data["routing"] = {
            "stable_version_id": "v1",
            "canary_version_id": "v2",
            "stable_weight": 90,
            "canary_weight": 5,
            "epoch": 1,
        }
        with pytest.raises(PydanticValidationError):
            DeploymentRecord.model_validate(data)

    def test_rejects_unknown_fields(self, controller):
        data = self._record_dict(controller)
        data["surprise"] = True
        with pytest.raises(PydanticValidationError):
            DeploymentRecord.model_validate(data)

    def test_rejects_deadline_before_creation(self, controller):
        data = self._record_dict(controller)
        data["deadline"] = data["created_at"] - 1
        with pytest.raises(PydanticValidationError):
            DeploymentRecord.model_validate(data)
