"""Repository state inspector — what each source directory actually looks like.

Inspection produces plain snapshots (``RepoActualState``); no repository
handle outlives the call that opened it. The only side effect is a fetch from
the remote matching the spec URL, which updates remote-tracking refs but
never the working tree. A failed fetch degrades the snapshot (ahead/behind
become unknown) and is recorded as a ``RepoInspectionWarning``.
"""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from pathlib import Path

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from yb.errors import RepoInspectionWarning
from yb.spec.models import RepoSpec, Spec
from yb.utils import git_ops
from yb.utils.file_io import list_subdirectories

logger = logging.getLogger(__name__)


class RefspecKind:
    BRANCH = "branch"  # exists as <remote>/<refspec>
    TAG = "tag"
    UNKNOWN = "unknown"  # not found (or remote not reachable)


@dataclass
class BranchState:
    """A local branch and how it compares with its upstream."""

    name: str
    upstream: tuple[str, str] | None = None  # (remote, branch)
    ahead: int | None = None
    behind: int | None = None

    @property
    def diverged(self) -> bool:
        return bool(self.ahead) and bool(self.behind)


@dataclass
class RepoActualState:
    """Snapshot of one source directory. Recomputed on every inspection."""

    name: str
    path: Path
    present: bool = False
    is_repo: bool = False
    head: str | None = None
    branch: str | None = None  # None when HEAD is detached
    tracking_branch: tuple[str, str] | None = None
    ahead: int | None = 0  # None means unknown
    behind: int | None = 0
    dirty: bool = False
    matching_remote: str | None = None
    local_branches: dict[str, BranchState] = field(default_factory=dict)
    refspec_kind: str = RefspecKind.UNKNOWN
    refspec_commit: str | None = None  # commit the remote branch / tag points at
    fetched: bool = False
    warnings: list[RepoInspectionWarning] = field(default_factory=list)

    @property
    def diverged(self) -> bool:
        return bool(self.ahead) and bool(self.behind)

    @property
    def counts_known(self) -> bool:
        return self.ahead is not None and self.behind is not None

    def warn(self, message: str) -> None:
        warning = RepoInspectionWarning(self.name, message)
        self.warnings.append(warning)
        logger.warning(str(warning))

    def summary(self) -> str:
        if not self.present:
            return f"{self.name}: missing"
        if not self.is_repo:
            return f"{self.name}: not a git repository"
        where = f"on '{self.branch}'" if self.branch else f"detached at {(self.head or '?')[:12]}"
        parts = [where]
        if self.tracking_branch:
            remote, branch = self.tracking_branch
            if not self.counts_known:
                parts.append(f"tracking '{remote}/{branch}' (ahead/behind unknown)")
            elif self.diverged:
                parts.append(f"diverged from '{remote}/{branch}' ({self.ahead} ahead, {self.behind} behind)")
            elif self.behind:
                parts.append(f"{self.behind} commits behind '{remote}/{branch}'")
            elif self.ahead:
                parts.append(f"{self.ahead} commits ahead of '{remote}/{branch}'")
            else:
                parts.append(f"up to date with '{remote}/{branch}'")
        if self.dirty:
            parts.append("dirty")
        return f"{self.name}: " + ", ".join(parts)


def inspect_repo(
    name: str,
    path: str | Path,
    expected: RepoSpec | None = None,
    fetch: bool = True,
    timeout: float | None = None,
) -> RepoActualState:
    """Determine the actual state of the directory at ``path``.

    Args:
        name: Repository name used in reports.
        path: Local checkout location.
        expected: The spec entry for this repository, if it is referenced.
            Used to find the matching remote and classify the refspec.
        fetch: Fetch from the matching remote before comparing branches.
        timeout: Seconds before a fetch is abandoned.
    """
    state = RepoActualState(name=name, path=Path(path))
    if not state.path.exists():
        return state
    state.present = True

    try:
        repo = git_ops.open_repo(state.path)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return state
    except OSError as e:
        state.warn(f"cannot open {state.path}: {e}")
        return state
    state.is_repo = True

    try:
        _inspect_open_repo(repo, state, expected, fetch, timeout)
    except (GitCommandError, ValueError, OSError) as e:
        state.ahead = state.behind = None
        state.warn(f"inspection incomplete: {e}")
    finally:
        repo.close()

    return state


def _inspect_open_repo(repo, state: RepoActualState, expected: RepoSpec | None, fetch: bool, timeout):
    state.head = git_ops.head_commit(repo)
    state.branch = git_ops.current_branch(repo)
    state.dirty = git_ops.is_dirty(repo)

    if expected is not None:
        state.matching_remote = git_ops.find_matching_remote(repo, expected.urls)
        if state.matching_remote is None:
            state.warn(
                f"no remote matches {expected.url} (remotes: {', '.join(git_ops.remote_names(repo)) or 'none'})"
            )

    counts_known = True
    if fetch and state.matching_remote:
        try:
            git_ops.fetch(repo, state.matching_remote, timeout=timeout)
            state.fetched = True
        except GitCommandError as e:
            counts_known = False
            state.warn(f"fetch from '{state.matching_remote}' failed: {_first_line(e)}")

    for head in repo.heads:
        branch = BranchState(name=head.name, upstream=git_ops.upstream_of(repo, head.name))
        if branch.upstream and counts_known:
            remote, upstream = branch.upstream
            try:
                branch.ahead, branch.behind = git_ops.ahead_behind(
                    repo, f"refs/heads/{head.name}", f"refs/remotes/{remote}/{upstream}"
                )
            except GitCommandError:
                logger.debug("%s: upstream %s/%s of %s not found", state.name, remote, upstream, head.name)
        state.local_branches[head.name] = branch

    current = state.local_branches.get(state.branch) if state.branch else None
    if current is not None and current.upstream:
        state.tracking_branch = current.upstream
        state.ahead, state.behind = current.ahead, current.behind

    if expected is not None and state.matching_remote:
        remote_ref = f"refs/remotes/{state.matching_remote}/{expected.refspec}"
        commit = git_ops.resolve_commit(repo, remote_ref)
        if commit is not None:
            state.refspec_kind = RefspecKind.BRANCH
            state.refspec_commit = commit
        else:
            commit = git_ops.tag_commit(repo, expected.refspec)
            if commit is not None:
                state.refspec_kind = RefspecKind.TAG
                state.refspec_commit = commit


def _first_line(error: GitCommandError) -> str:
    text = (error.stderr or str(error)).strip()
    for line in text.splitlines():
        line = line.strip().strip("'").strip()
        if line:
            return line
    return text


# ---------------------------------------------------------------------------
# Whole-workspace inspection
# ---------------------------------------------------------------------------


@dataclass
class WorkspaceState:
    """Snapshots of every spec repository plus unreferenced source directories."""

    repos: dict[str, RepoActualState] = field(default_factory=dict)  # spec order
    unreferenced: list[RepoActualState] = field(default_factory=list)

    @property
    def warnings(self) -> list[RepoInspectionWarning]:
        found = []
        for state in [*self.repos.values(), *self.unreferenced]:
            found.extend(state.warnings)
        return found


def inspect_workspace(
    spec: Spec | None,
    sources_dir: str | Path,
    fetch: bool = True,
    timeout: float | None = None,
    max_workers: int = 8,
) -> WorkspaceState:
    """Inspect every repository the spec references, concurrently.

    Directories under ``sources_dir`` that the spec does not name are
    inspected too (without fetching) and reported as unreferenced.
    """
    sources_dir = Path(sources_dir)
    referenced = dict(spec.repos) if spec is not None else {}
    extra_dirs = [d for d in list_subdirectories(sources_dir) if d.name not in referenced]

    results: dict[str, RepoActualState] = {}
    unreferenced: dict[str, RepoActualState] = {}

    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {
            executor.submit(
                inspect_repo, name, sources_dir / name, repo_spec, fetch, timeout
            ): (name, True)
            for name, repo_spec in referenced.items()
        }
        for directory in extra_dirs:
            futures[executor.submit(inspect_repo, directory.name, directory, None, False, timeout)] = (
                directory.name,
                False,
            )

        for future in concurrent.futures.as_completed(futures):
            name, is_referenced = futures[future]
            state = future.result()
            if is_referenced:
                results[name] = state
                logger.debug("inspected %s", state.summary())
            else:
                unreferenced[name] = state
                logger.info("%s is not referenced by the active spec", state.path)

    return WorkspaceState(
        repos={name: results[name] for name in referenced},
        unreferenced=[unreferenced[d.name] for d in extra_dirs],
    )
