"""Reconciler — one invocation of the full pipeline against a workspace.

stream refresh -> active spec -> concurrent inspection -> layer config read
-> plan -> (optionally) execute.

Only the executor mutates repositories and the layer config; ``status`` is
read-only apart from fetches and the stream fast-forward.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from yb.config import EngineOptions
from yb.errors import SpecNotFound, StreamDirty, StreamUnavailable
from yb.spec.models import Spec
from yb.stream import Stream
from yb.sync.actions import ActionPlan
from yb.sync.executor import Executor, PlanResult
from yb.sync.inspector import WorkspaceState, inspect_workspace
from yb.sync.layers import LayerConfig, read_layer_config
from yb.sync.planner import compute_plan
from yb.workspace import Workspace, WorkspaceKind

logger = logging.getLogger(__name__)


@dataclass
class StatusReport:
    """Everything ``yb status`` shows."""

    kind: str
    spec: Spec | None = None
    stream_name: str = ""
    stream_revision: str | None = None
    stream_updated: bool = False
    spec_updated: bool = False
    state: WorkspaceState = field(default_factory=WorkspaceState)
    layer_config: LayerConfig | None = None
    plan: ActionPlan | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return self.plan is not None and self.plan.is_empty


@dataclass
class SyncReport:
    status: StatusReport
    result: PlanResult | None = None  # None when there was nothing to do

    @property
    def ok(self) -> bool:
        return self.result is None or self.result.ok


class Reconciler:
    """Drives inspection, planning and execution for one workspace."""

    def __init__(self, workspace: Workspace, options: EngineOptions | None = None):
        self.workspace = workspace
        self.options = options or EngineOptions.from_env()

    def status(self, spec_name: str | None = None, force: bool = False) -> StatusReport:
        """Inspect the workspace and plan against the active spec (or ``spec_name``)."""
        ws = self.workspace
        if spec_name is None and ws.kind == WorkspaceKind.BARE:
            report = StatusReport(kind=WorkspaceKind.BARE)
            report.state = self._inspect(None)
            report.warnings.extend(str(w) for w in report.state.warnings)
            return report

        report = StatusReport(kind=WorkspaceKind.MANAGED)
        if spec_name is None:
            stream = ws.active_stream()
            report.spec = self._refresh_and_load(stream, report, lambda s: ws.active_spec(s))
        else:
            stream, _ = ws.find_spec(spec_name)
            report.spec = self._refresh_and_load(stream, report, lambda s: s.load_spec(spec_name))

        report.state = self._inspect(report.spec)
        report.warnings.extend(str(w) for w in report.state.warnings)
        report.layer_config = read_layer_config(ws.layer_config_path)
        report.plan = compute_plan(
            report.spec,
            report.state,
            report.layer_config,
            ws.sources_dir,
            ws.layer_config_path,
            force=force,
        )
        return report

    def sync(self, apply: bool = False, force: bool = False, spec_name: str | None = None) -> SyncReport:
        """Plan, then validate (dry-run) or apply the plan.

        With ``spec_name`` and ``apply`` the spec is activated before the
        plan is executed; a dry-run never changes the active spec.
        """
        status = self.status(spec_name=spec_name, force=force)
        report = SyncReport(status=status)
        if status.plan is None:
            return report

        if apply and spec_name is not None and spec_name != self.workspace.active_spec_name():
            self.workspace.set_active(spec_name)

        if status.plan.is_empty:
            logger.info("workspace already matches spec '%s'", status.plan.spec_name)
            return report

        executor = Executor(network_timeout=self.options.network_timeout)
        report.result = executor.apply(status.plan, dry_run=not apply, force=force)
        return report

    # ------------------------------------------------------------------

    def _refresh_and_load(self, stream: Stream, report: StatusReport, load) -> Spec:
        report.stream_name = stream.name
        if self.options.refresh_stream:
            before = _try_load(load, stream)
            try:
                report.stream_updated = stream.refresh(timeout=self.options.network_timeout) is not None
            except (StreamDirty, StreamUnavailable) as e:
                # the checkout on disk is still usable
                report.warnings.append(str(e))
                logger.warning("%s", e)
            if report.stream_updated:
                spec = load(stream)
                report.spec_updated = before is not None and spec != before
                if report.spec_updated:
                    logger.info("active spec '%s' updated", spec.name)
        report.stream_revision = stream.revision
        return load(stream)

    def _inspect(self, spec: Spec | None) -> WorkspaceState:
        return inspect_workspace(
            spec,
            self.workspace.sources_dir,
            fetch=self.options.fetch,
            timeout=self.options.network_timeout,
            max_workers=self.options.inspect_workers,
        )


def _try_load(load, stream: Stream) -> Spec | None:
    try:
        return load(stream)
    except SpecNotFound:
        return None
