"""Actions — the closed set of mutations a plan can contain.

Actions are plain data. The planner produces them, the executor interprets
them; nothing happens until an ``Action`` reaches ``Executor.apply``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ActionKind(Enum):
    """Every mutation the engine knows how to perform."""

    CLONE_REPO = "clone_repo"
    CHECKOUT = "checkout"
    CREATE_TRACKING_BRANCH = "create_tracking_branch"
    FAST_FORWARD_PULL = "fast_forward_pull"
    RESET_HARD = "reset_hard"  # Destructive, requires force
    CREATE_LAYER_CONFIG = "create_layer_config"
    ADD_LAYER = "add_layer"
    REMOVE_LAYER = "remove_layer"


@dataclass(frozen=True)
class Action:
    """A single desired mutation against one repository or the layer config.

    ``repo`` names the spec repository the action belongs to (for layer
    actions: the repository that provides the layer, if any). ``path`` is the
    repository checkout for repository actions and the layer path (or config
    file) for layer actions.
    """

    kind: ActionKind
    repo: str | None = None
    path: str = ""
    url: str = ""
    branch: str = ""
    remote: str = ""

    @property
    def requires_force(self) -> bool:
        return self.kind == ActionKind.RESET_HARD

    def describe(self) -> str:
        """One-line human-readable description, identical in dry-run and apply output."""
        k = self.kind
        if k == ActionKind.CLONE_REPO:
            return f"clone {self.url} ({self.branch}) into {self.path}"
        if k == ActionKind.CHECKOUT:
            return f"check out '{self.branch}' in {self.repo}"
        if k == ActionKind.CREATE_TRACKING_BRANCH:
            return f"create branch '{self.branch}' tracking '{self.remote}/{self.branch}' in {self.repo}"
        if k == ActionKind.FAST_FORWARD_PULL:
            return f"fast-forward '{self.branch}' in {self.repo}"
        if k == ActionKind.RESET_HARD:
            return f"discard local changes in {self.repo} (requires --force)"
        if k == ActionKind.CREATE_LAYER_CONFIG:
            return f"create {self.path}"
        if k == ActionKind.ADD_LAYER:
            return f"add layer {self.path}"
        return f"remove layer {self.path}"

    def to_dict(self) -> dict:
        data = {"kind": self.kind.value}
        for key in ("repo", "path", "url", "branch", "remote"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data

    def __str__(self) -> str:
        return self.describe()


# --- Constructors ---


def clone_repo(repo: str, path: str, url: str, refspec: str) -> Action:
    return Action(ActionKind.CLONE_REPO, repo=repo, path=path, url=url, branch=refspec)


def checkout(repo: str, path: str, branch: str) -> Action:
    return Action(ActionKind.CHECKOUT, repo=repo, path=path, branch=branch)


def create_tracking_branch(repo: str, path: str, remote: str, branch: str) -> Action:
    return Action(ActionKind.CREATE_TRACKING_BRANCH, repo=repo, path=path, remote=remote, branch=branch)


def fast_forward_pull(repo: str, path: str, branch: str) -> Action:
    return Action(ActionKind.FAST_FORWARD_PULL, repo=repo, path=path, branch=branch)


def reset_hard(repo: str, path: str) -> Action:
    return Action(ActionKind.RESET_HARD, repo=repo, path=path)


def create_layer_config(path: str) -> Action:
    return Action(ActionKind.CREATE_LAYER_CONFIG, path=path)


def add_layer(path: str, repo: str | None = None) -> Action:
    return Action(ActionKind.ADD_LAYER, repo=repo, path=path)


def remove_layer(path: str, repo: str | None = None) -> Action:
    return Action(ActionKind.REMOVE_LAYER, repo=repo, path=path)


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


@dataclass
class RepoPlan:
    """Ordered actions for one repository, or the reason it is blocked."""

    name: str
    path: str
    actions: list[Action] = field(default_factory=list)
    conflict: str = ""  # Non-empty when the repository is blocked
    notes: list[str] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return bool(self.conflict)

    @property
    def requires_force(self) -> bool:
        return any(a.requires_force for a in self.actions)


@dataclass
class ActionPlan:
    """Everything needed to bring the workspace in line with the active spec.

    Repository groups come first, in spec declaration order; layer actions
    always follow every repository action.
    """

    spec_name: str
    repos: list[RepoPlan] = field(default_factory=list)
    layer_actions: list[Action] = field(default_factory=list)
    layer_config_path: str = ""
    desired_layers: list[tuple[str, str]] = field(default_factory=list)  # (repo, path)
    unreferenced: list[str] = field(default_factory=list)

    @property
    def actions(self) -> list[Action]:
        """Flattened action sequence in execution order."""
        flat = [a for repo_plan in self.repos for a in repo_plan.actions]
        flat.extend(self.layer_actions)
        return flat

    @property
    def conflicts(self) -> list[RepoPlan]:
        return [r for r in self.repos if r.blocked]

    @property
    def is_empty(self) -> bool:
        return not self.actions and not self.conflicts

    @property
    def requires_force(self) -> bool:
        return any(r.requires_force for r in self.repos)

    def repo_plan(self, name: str) -> RepoPlan | None:
        for repo_plan in self.repos:
            if repo_plan.name == name:
                return repo_plan
        return None

    def to_dict(self) -> dict:
        return {
            "spec": self.spec_name,
            "repos": [
                {
                    "name": r.name,
                    "path": r.path,
                    "actions": [a.to_dict() for a in r.actions],
                    "conflict": r.conflict,
                    "notes": list(r.notes),
                }
                for r in self.repos
            ],
            "layer_actions": [a.to_dict() for a in self.layer_actions],
            "unreferenced": list(self.unreferenced),
        }
