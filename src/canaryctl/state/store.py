"""Durable deployment records.

Features:
- Schema validation on save and load
- Atomic writes with a ``.backup`` copy of the previous record
- Fallback to the backup when the primary file is corrupt
"""

from __future__ import annotations

import json
import logging
import shutil
import threading
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from canaryctl.core.models import (
    Deployment,
    HealthThresholds,
    RolloutStage,
    RolloutState,
    StageSpec,
    TrafficWeights,
)
from canaryctl.core.traffic_splitter import RoutingDirective
from canaryctl.utils.errors import StateLoadError, StateSaveError
from canaryctl.utils.fileio import write_file_atomic

from .schema import (
    CURRENT_SCHEMA_VERSION,
    DeploymentRecord,
    RoutingRecord,
    StageRecord,
    StageSpecRecord,
    ThresholdsRecord,
)

logger = logging.getLogger(__name__)


def record_from_deployment(
    deployment: Deployment, directive: RoutingDirective | None = None
) -> DeploymentRecord:
    routing = None
    if directive is not None:
        routing = RoutingRecord(
            stable_version_id=directive.stable_version_id,
            canary_version_id=directive.canary_version_id,
            stable_weight=directive.weights.stable,
            canary_weight=directive.weights.canary,
            epoch=directive.epoch,
        )
    return DeploymentRecord(
        schema_version=CURRENT_SCHEMA_VERSION,
        deployment_id=deployment.deployment_id,
        stable_version_id=deployment.stable_version_id,
        canary_version_id=deployment.canary_version_id,
        original_stable_version_id=deployment.original_stable_version_id,
        schedule=[
            StageSpecRecord(percentage=s.percentage, min_duration_seconds=s.min_duration_seconds)
            for s in deployment.schedule
        ],
        thresholds=ThresholdsRecord(**deployment.thresholds.to_dict()),
        phase=deployment.state.phase,
        stage_index=deployment.state.stage_index,
        reason=deployment.state.reason,
        stages=[
            StageRecord(
                index=s.index,
                target_percentage=s.target_percentage,
                min_duration=s.min_duration,
                started_at=s.started_at,
            )
            for s in deployment.stages
        ],
        created_at=deployment.created_at,
        deadline=deployment.deadline,
        finished_at=deployment.finished_at,
        epoch=deployment.epoch,
        last_verdict=deployment.last_verdict,
        abort_requested=deployment.abort_requested,
        apply_failing_since=deployment.apply_failing_since,
        routing=routing,
    )


def deployment_from_record(
    record: DeploymentRecord,
) -> tuple[Deployment, RoutingDirective | None]:
    schedule = tuple(
        StageSpec(s.percentage, s.min_duration_seconds) for s in record.schedule
    )
    deployment = Deployment(
        deployment_id=record.deployment_id,
        stable_version_id=record.stable_version_id,
        canary_version_id=record.canary_version_id,
        schedule=schedule,
        thresholds=HealthThresholds(**record.thresholds.model_dump()),
        state=RolloutState(
            phase=record.phase,
            percentages=tuple(s.percentage for s in schedule),
            stage_index=record.stage_index,
            reason=record.reason,
        ),
        created_at=record.created_at,
        deadline=record.deadline,
        original_stable_version_id=record.original_stable_version_id,
        stages=[
            RolloutStage(s.index, s.target_percentage, s.min_duration, s.started_at)
            for s in record.stages
        ],
        epoch=record.epoch,
        last_verdict=record.last_verdict,
        abort_requested=record.abort_requested,
        apply_failing_since=record.apply_failing_since,
        finished_at=record.finished_at,
    )
    directive = None
    if record.routing is not None:
        directive = RoutingDirective(
            deployment_id=record.deployment_id,
            stable_version_id=record.routing.stable_version_id,
            canary_version_id=record.routing.canary_version_id,
            weights=TrafficWeights(
                stable=record.routing.stable_weight, canary=record.routing.canary_weight
            ),
            epoch=record.routing.epoch,
        )
    return deployment, directive


class DeploymentRepository:
    """JSON record per deployment under ``<state_dir>/deployments``."""

    def __init__(self, state_dir: str | Path) -> None:
        self.state_dir = Path(state_dir)
        self.deployments_dir = self.state_dir / "deployments"
        self.deployments_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def path_for(self, deployment_id: str) -> Path:
        return self.deployments_dir / f"{deployment_id}.json"

    @staticmethod
    def _backup_path(path: Path) -> Path:
        return path.with_name(f"{path.name}.backup")

    def save(self, deployment: Deployment, directive: RoutingDirective | None = None) -> None:
        """Persist the deployment record.

        Raises:
            StateSaveError: Validation or write failed
        """
        path = self.path_for(deployment.deployment_id)
        try:
            record = record_from_deployment(deployment, directive)
            data = json.dumps(record.model_dump(mode="json"), indent=2).encode("utf-8")
            with self._lock:
                if path.exists():
                    try:
                        shutil.copy2(path, self._backup_path(path))
                    except OSError as e:
                        logger.warning("Failed to back up %s: %s", path, e)
                write_file_atomic(path, data)
        except (OSError, PydanticValidationError) as e:
            raise StateSaveError(
                f"Failed to save deployment {deployment.deployment_id} to {path}: {e}"
            ) from e
        logger.debug("Saved deployment %s (%s)", deployment.deployment_id, deployment.phase.value)

    @staticmethod
    def _read(path: Path) -> DeploymentRecord:
        with open(path, "rb") as f:
            data = json.loads(f.read().decode("utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{path} does not contain a JSON object")
        version = data.get("schema_version", 1)
        if version > CURRENT_SCHEMA_VERSION:
            raise StateLoadError(
                f"{path} has schema version {version}, newer than {CURRENT_SCHEMA_VERSION}"
            )
        return DeploymentRecord.model_validate(data)

    def load(self, deployment_id: str) -> tuple[Deployment, RoutingDirective | None]:
        """Load one record, falling back to its backup if the primary is corrupt.

        Raises:
            StateLoadError: Neither the record nor its backup is readable
        """
        path = self.path_for(deployment_id)
        if not path.exists():
            raise StateLoadError(f"State file not found: {path}")
        try:
            record = self._read(path)
        except (OSError, ValueError, PydanticValidationError) as e:
            backup = self._backup_path(path)
            if not backup.exists():
                raise StateLoadError(f"Failed to load {path}: {e}") from e
            logger.warning("Corrupt record %s (%s), recovering from backup", path, e)
            try:
                record = self._read(backup)
            except (OSError, ValueError, PydanticValidationError) as backup_error:
                raise StateLoadError(
                    f"Failed to load {path} and its backup: {backup_error}"
                ) from backup_error
        return deployment_from_record(record)

    def load_all(self) -> list[tuple[Deployment, RoutingDirective | None]]:
        """Every readable record; unreadable ones are logged and skipped."""
        loaded = []
        for path in sorted(self.deployments_dir.glob("*.json")):
            try:
                loaded.append(self.load(path.stem))
            except StateLoadError as e:
                logger.error("Skipping deployment record: %s", e)
        return loaded
