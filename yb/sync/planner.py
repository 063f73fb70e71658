"""Planner — diff desired state against actual state into an ordered plan.

Pure: takes a ``Spec``, inspection snapshots and the current layer config,
returns an ``ActionPlan``. Nothing here touches the filesystem or git.

Per repository, in spec declaration order:

1. Missing on disk -> ``CloneRepo`` (the clone lands on the refspec, nothing else needed).
2. Wrong branch -> ``Checkout`` of an existing local branch, or
   ``CreateTrackingBranch`` followed by ``Checkout``.
3. Resulting branch behind its upstream and not ahead -> ``FastForwardPull``.
4. A branch switch on a dirty or diverged repository needs ``ResetHard``
   first; without force the repository is blocked instead.

Layer actions come last: ``CreateLayerConfig`` if the file is absent, then
``AddLayer`` / ``RemoveLayer`` against the union of every repository's layers.
"""

from __future__ import annotations

from pathlib import Path

from yb.spec.models import Spec
from yb.sync import actions as act
from yb.sync.actions import ActionPlan, RepoPlan
from yb.sync.inspector import BranchState, RefspecKind, RepoActualState, WorkspaceState
from yb.sync.layers import LayerConfig, diff_layers
from yb.utils.file_io import normalize_path

FORCE_HINT = "pass --force to discard local changes"


def compute_plan(
    spec: Spec,
    state: WorkspaceState,
    layer_config: LayerConfig,
    sources_dir: str | Path,
    layer_config_path: str | Path,
    force: bool = False,
) -> ActionPlan:
    """Compute the ordered action plan reconciling ``state`` to ``spec``."""
    sources_dir = Path(sources_dir)
    plan = ActionPlan(spec_name=spec.name, layer_config_path=str(layer_config_path))

    for name, repo_spec in spec.repos.items():
        path = str(sources_dir / name)
        repo_state = state.repos.get(name) or RepoActualState(name=name, path=Path(path))
        plan.repos.append(_plan_repo(name, path, repo_spec.url, repo_spec.refspec, repo_state, force))

    plan.desired_layers = [(repo, normalize_path(p)) for repo, p in spec.layer_paths(sources_dir)]
    plan.layer_actions = _plan_layers(plan.desired_layers, layer_config, str(layer_config_path))
    plan.unreferenced = [str(s.path) for s in state.unreferenced]
    return plan


def _plan_repo(name: str, path: str, url: str, refspec: str, state: RepoActualState, force: bool) -> RepoPlan:
    repo_plan = RepoPlan(name=name, path=path)

    if not state.present:
        repo_plan.actions.append(act.clone_repo(name, path, url, refspec))
        return repo_plan

    if not state.is_repo:
        repo_plan.conflict = f"{path} exists but is not a git repository"
        return repo_plan

    if state.matching_remote is None:
        repo_plan.conflict = f"no remote matches {url}; refusing to modify an unrelated repository"
        return repo_plan

    remote = state.matching_remote
    switch: list[act.Action] = []
    final_branch: BranchState | None = None

    if state.refspec_kind == RefspecKind.TAG:
        if state.head != state.refspec_commit:
            switch.append(act.checkout(name, path, refspec))
    elif state.branch == refspec:
        final_branch = state.local_branches.get(refspec)
    elif refspec in state.local_branches:
        switch.append(act.checkout(name, path, refspec))
        final_branch = state.local_branches[refspec]
    elif state.refspec_kind == RefspecKind.BRANCH:
        # the new branch starts at the freshly fetched remote tip
        switch.append(act.create_tracking_branch(name, path, remote, refspec))
        switch.append(act.checkout(name, path, refspec))
    elif state.fetched:
        repo_plan.conflict = f"'{refspec}' is neither a branch on '{remote}' nor a tag"
        return repo_plan
    else:
        repo_plan.conflict = f"cannot locate '{refspec}': remote '{remote}' was not fetched"
        return repo_plan

    follow_up = _fast_forward(name, path, final_branch, repo_plan)

    if switch and (state.dirty or state.diverged):
        reason = _destructive_reason(state)
        if not force:
            repo_plan.conflict = f"{reason}; {FORCE_HINT}"
            repo_plan.notes.append("would: " + "; ".join(a.describe() for a in switch))
            return repo_plan
        repo_plan.actions.append(act.reset_hard(name, path))

    repo_plan.actions.extend(switch)
    repo_plan.actions.extend(follow_up)
    return repo_plan


def _fast_forward(name: str, path: str, branch: BranchState | None, repo_plan: RepoPlan) -> list[act.Action]:
    if branch is None or branch.upstream is None:
        return []
    remote, upstream = branch.upstream
    if branch.ahead is None or branch.behind is None:
        repo_plan.notes.append(f"'{branch.name}' vs '{remote}/{upstream}' unknown; not fast-forwarding")
        return []
    if branch.diverged:
        repo_plan.notes.append(
            f"'{branch.name}' has diverged from '{remote}/{upstream}' "
            f"({branch.ahead} ahead, {branch.behind} behind); left as is"
        )
        return []
    if branch.ahead:
        repo_plan.notes.append(f"'{branch.name}' is {branch.ahead} commits ahead of '{remote}/{upstream}'")
        return []
    if branch.behind:
        return [act.fast_forward_pull(name, path, branch.name)]
    return []


def _destructive_reason(state: RepoActualState) -> str:
    reasons = []
    if state.dirty:
        reasons.append("working tree has uncommitted changes")
    if state.diverged:
        reasons.append(
            f"'{state.branch}' has diverged from its upstream ({state.ahead} ahead, {state.behind} behind)"
        )
    return " and ".join(reasons)


def _plan_layers(desired: list[tuple[str, str]], layer_config: LayerConfig, config_path: str) -> list[act.Action]:
    layer_actions: list[act.Action] = []
    if not layer_config.exists:
        layer_actions.append(act.create_layer_config(config_path))

    owners = {path: repo for repo, path in desired}
    to_add, to_remove = diff_layers([path for _, path in desired], layer_config)
    layer_actions.extend(act.add_layer(path, repo=owners.get(path)) for path in to_add)
    layer_actions.extend(act.remove_layer(path) for path in to_remove)
    return layer_actions
