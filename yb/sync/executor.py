"""Executor — apply (or, in dry-run, validate) an ``ActionPlan``.

Repository action sequences run in plan order. A failure inside one
repository stops that repository's remaining actions and moves on to the
next. The layer configuration is written once, after every repository has
been attempted, and only with layers whose repository ended up available.

Dry-run re-checks every action's preconditions against the disk, so a clean
dry-run reports the same outcomes an immediate apply would produce.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from yb.errors import ExecutionFailure, LayerConfigError, PlanConflict
from yb.sync.actions import Action, ActionKind, ActionPlan, RepoPlan
from yb.sync.layers import read_layer_config, write_layer_config
from yb.utils import git_ops

logger = logging.getLogger(__name__)


class OutcomeStatus:
    APPLIED = "applied"
    WOULD_APPLY = "would apply"
    FAILED = "failed"
    SKIPPED = "skipped"
    REFUSED = "refused"  # Needed force that was not given


@dataclass
class ActionOutcome:
    action: Action
    status: str
    message: str = ""

    @property
    def performed(self) -> bool:
        return self.status in (OutcomeStatus.APPLIED, OutcomeStatus.WOULD_APPLY)


@dataclass
class RepoResult:
    """What happened to one repository."""

    name: str
    path: str
    outcomes: list[ActionOutcome] = field(default_factory=list)
    conflict: PlanConflict | None = None
    failure: ExecutionFailure | None = None
    available: bool = False  # Present and on the desired refspec afterwards

    @property
    def ok(self) -> bool:
        return self.conflict is None and self.failure is None


@dataclass
class PlanResult:
    """Outcome of ``Executor.apply`` — per repository, then for the layer config."""

    dry_run: bool
    force: bool
    repos: list[RepoResult] = field(default_factory=list)
    layer_outcomes: list[ActionOutcome] = field(default_factory=list)
    layer_failure: ExecutionFailure | None = None
    written_layers: list[str] | None = None  # None when the file was not (or would not be) written
    warnings: list[str] = field(default_factory=list)

    @property
    def outcomes(self) -> list[ActionOutcome]:
        found = [o for r in self.repos for o in r.outcomes]
        found.extend(self.layer_outcomes)
        return found

    @property
    def performed(self) -> list[Action]:
        """Actions applied (or, in dry-run, that would be applied), in order."""
        return [o.action for o in self.outcomes if o.performed]

    @property
    def conflicts(self) -> list[PlanConflict]:
        return [r.conflict for r in self.repos if r.conflict is not None]

    @property
    def failures(self) -> list[ExecutionFailure]:
        found = [r.failure for r in self.repos if r.failure is not None]
        if self.layer_failure is not None:
            found.append(self.layer_failure)
        return found

    @property
    def ok(self) -> bool:
        return not self.conflicts and not self.failures


class _PreconditionError(Exception):
    pass


class Executor:
    """Interprets plan actions against git repositories and the layer config."""

    def __init__(self, network_timeout: float | None = None):
        self.network_timeout = network_timeout

    def apply(self, plan: ActionPlan, dry_run: bool = True, force: bool = False) -> PlanResult:
        result = PlanResult(dry_run=dry_run, force=force)

        for repo_plan in plan.repos:
            result.repos.append(self._run_repo(repo_plan, dry_run, force))

        self._run_layers(plan, result, dry_run)
        return result

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def _run_repo(self, repo_plan: RepoPlan, dry_run: bool, force: bool) -> RepoResult:
        repo_result = RepoResult(name=repo_plan.name, path=repo_plan.path)

        if repo_plan.blocked:
            repo_result.conflict = PlanConflict(repo_plan.name, repo_plan.conflict)
            logger.warning(str(repo_result.conflict))
            return repo_result

        created: set[str] = set()
        was_reset = False
        pending = list(repo_plan.actions)
        while pending:
            action = pending.pop(0)

            if action.requires_force and not force:
                repo_result.conflict = PlanConflict(
                    repo_plan.name, f"refusing to {action.describe()} without force"
                )
                repo_result.outcomes.append(
                    ActionOutcome(action, OutcomeStatus.REFUSED, str(repo_result.conflict))
                )
                logger.warning(str(repo_result.conflict))
                break

            try:
                self._check(action, created, was_reset)
                if not dry_run:
                    self._perform(action)
                    logger.info("%s", action.describe())
            except (
                _PreconditionError,
                GitCommandError,
                InvalidGitRepositoryError,
                NoSuchPathError,
                OSError,
            ) as e:
                message = _error_text(e)
                repo_result.failure = ExecutionFailure(repo_plan.name, action.kind.value, message)
                repo_result.outcomes.append(ActionOutcome(action, OutcomeStatus.FAILED, message))
                logger.error(str(repo_result.failure))
                break

            if action.kind == ActionKind.CREATE_TRACKING_BRANCH:
                created.add(action.branch)
            elif action.kind == ActionKind.RESET_HARD:
                was_reset = True
            status = OutcomeStatus.WOULD_APPLY if dry_run else OutcomeStatus.APPLIED
            repo_result.outcomes.append(ActionOutcome(action, status))

        for action in pending:
            repo_result.outcomes.append(ActionOutcome(action, OutcomeStatus.SKIPPED))

        repo_result.available = repo_result.ok and (dry_run or Path(repo_plan.path).is_dir())
        return repo_result

    def _check(self, action: Action, created: set[str], was_reset: bool = False) -> None:
        """Raise ``_PreconditionError`` if ``action`` cannot be performed right now.

        ``created`` and ``was_reset`` carry the effects of earlier actions in the
        same sequence, which a dry-run has not actually performed.
        """
        kind = action.kind
        path = Path(action.path)

        if kind == ActionKind.CLONE_REPO:
            if path.exists() and any(path.iterdir()):
                raise _PreconditionError(f"{path} already exists and is not empty")
            if not action.url:
                raise _PreconditionError("no URL to clone from")
            return

        repo = git_ops.open_repo(path)
        try:
            if kind == ActionKind.CREATE_TRACKING_BRANCH:
                if action.remote not in git_ops.remote_names(repo):
                    raise _PreconditionError(f"remote '{action.remote}' does not exist")
                if not git_ops.remote_branch_exists(repo, action.remote, action.branch):
                    raise _PreconditionError(f"'{action.remote}/{action.branch}' does not exist")
                if git_ops.local_branch_exists(repo, action.branch):
                    raise _PreconditionError(f"branch '{action.branch}' already exists")
            elif kind == ActionKind.CHECKOUT:
                known = (
                    action.branch in created
                    or git_ops.local_branch_exists(repo, action.branch)
                    or git_ops.tag_commit(repo, action.branch) is not None
                )
                if not known:
                    raise _PreconditionError(f"'{action.branch}' is neither a local branch nor a tag")
            elif kind == ActionKind.FAST_FORWARD_PULL:
                if action.branch in created:
                    return
                upstream = git_ops.upstream_of(repo, action.branch)
                if upstream is None:
                    raise _PreconditionError(f"'{action.branch}' has no upstream")
                if not was_reset:
                    _check_pull_overwrites(repo, action.branch, upstream)
        finally:
            repo.close()

    def _perform(self, action: Action) -> None:
        kind = action.kind
        if kind == ActionKind.CLONE_REPO:
            git_ops.clone(action.url, action.path, action.branch, timeout=self.network_timeout).close()
            return

        repo = git_ops.open_repo(action.path)
        try:
            if kind == ActionKind.RESET_HARD:
                git_ops.reset_hard(repo)
            elif kind == ActionKind.CREATE_TRACKING_BRANCH:
                git_ops.create_tracking_branch(repo, action.remote, action.branch)
            elif kind == ActionKind.CHECKOUT:
                git_ops.checkout(repo, action.branch)
            elif kind == ActionKind.FAST_FORWARD_PULL:
                git_ops.fast_forward_pull(repo, timeout=self.network_timeout)
            else:
                raise ValueError(f"not a repository action: {kind}")
        finally:
            repo.close()

    # ------------------------------------------------------------------
    # Layer configuration
    # ------------------------------------------------------------------

    def _run_layers(self, plan: ActionPlan, result: PlanResult, dry_run: bool) -> None:
        if not plan.layer_actions:
            return

        available = {r.name for r in result.repos if r.available}
        config_path = Path(plan.layer_config_path)
        try:
            current = read_layer_config(config_path)
        except LayerConfigError as e:
            self._fail_layers(plan, result, str(e))
            return

        accepted: list[Action] = []
        added: set[str] = set()
        removed: set[str] = set()
        for action in plan.layer_actions:
            if action.kind == ActionKind.ADD_LAYER and action.repo and action.repo not in available:
                message = f"layer {action.path} skipped: repository '{action.repo}' is not available"
                result.warnings.append(message)
                result.layer_outcomes.append(ActionOutcome(action, OutcomeStatus.SKIPPED, message))
                logger.warning(message)
                continue
            if action.kind == ActionKind.ADD_LAYER:
                added.add(action.path)
            elif action.kind == ActionKind.REMOVE_LAYER:
                removed.add(action.path)
            accepted.append(action)

        if not accepted:
            return

        desired_paths = [path for _, path in plan.desired_layers]
        desired_set = set(desired_paths)
        keep = current.layer_set
        final = [p for p in desired_paths if p in added or p in keep]
        final.extend(p for p in current.layers if p not in desired_set and p not in removed)

        if not dry_run:
            try:
                write_layer_config(current.with_layers(final), config_path)
            except (OSError, LayerConfigError) as e:
                self._fail_layers(plan, result, _error_text(e), accepted)
                return
            logger.info("wrote %s with %d layers", config_path, len(final))

        status = OutcomeStatus.WOULD_APPLY if dry_run else OutcomeStatus.APPLIED
        result.layer_outcomes.extend(ActionOutcome(a, status) for a in accepted)
        result.written_layers = list(dict.fromkeys(final))

    def _fail_layers(self, plan: ActionPlan, result: PlanResult, message: str, actions=None) -> None:
        result.layer_failure = ExecutionFailure("layer config", "write", message)
        for action in actions if actions is not None else plan.layer_actions:
            result.layer_outcomes.append(ActionOutcome(action, OutcomeStatus.FAILED, message))
        logger.error(str(result.layer_failure))


def _check_pull_overwrites(repo, branch: str, upstream: tuple[str, str]) -> None:
    """Fail if incoming commits touch paths with local changes; git would abort the pull."""
    if not git_ops.is_dirty(repo):
        return
    remote, remote_branch = upstream
    incoming = git_ops.changed_between(repo, f"refs/heads/{branch}", f"refs/remotes/{remote}/{remote_branch}")
    overlap = sorted(incoming & git_ops.local_changes(repo))
    if overlap:
        raise _PreconditionError(
            f"local changes to {', '.join(overlap)} would be overwritten by the fast-forward"
        )


def _error_text(error: Exception) -> str:
    if isinstance(error, GitCommandError):
        text = (error.stderr or "").strip().strip("'").strip()
        if text:
            return text.splitlines()[-1].strip()
    return str(error)
