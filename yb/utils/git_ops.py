"""Git operations — thin wrappers over GitPython used by the inspector and executor.

Every network-touching call takes a timeout; GitPython kills the child
``git`` process once it expires and raises ``GitCommandError``.
"""

from __future__ import annotations

from pathlib import Path

from git import Git, GitCommandError, Repo


def open_repo(path: str | Path) -> Repo:
    """Open the repository rooted at ``path`` (raises InvalidGitRepositoryError)."""
    return Repo(path, search_parent_directories=False)


def current_branch(repo: Repo) -> str | None:
    """Name of the checked-out branch, or None when HEAD is detached."""
    if repo.head.is_detached:
        return None
    return repo.head.ref.name


def head_commit(repo: Repo) -> str | None:
    """Hex SHA of HEAD, or None for an unborn branch."""
    try:
        return repo.head.commit.hexsha
    except ValueError:
        return None


def resolve_commit(repo: Repo, ref: str) -> str | None:
    """Resolve ``ref`` to a commit SHA, or None if it doesn't exist."""
    try:
        return repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}")
    except GitCommandError:
        return None


def local_branch_exists(repo: Repo, name: str) -> bool:
    return any(head.name == name for head in repo.heads)


def remote_branch_exists(repo: Repo, remote: str, branch: str) -> bool:
    return resolve_commit(repo, f"refs/remotes/{remote}/{branch}") is not None


def tag_commit(repo: Repo, tag: str) -> str | None:
    return resolve_commit(repo, f"refs/tags/{tag}")


def upstream_of(repo: Repo, branch: str) -> tuple[str, str] | None:
    """Return ``(remote, branch)`` the local ``branch`` tracks, if any."""
    for head in repo.heads:
        if head.name != branch:
            continue
        tracking = head.tracking_branch()
        if tracking is None:
            return None
        return tracking.remote_name, tracking.remote_head
    return None


def ahead_behind(repo: Repo, local_ref: str, upstream_ref: str) -> tuple[int, int]:
    """Count commits ``local_ref`` has that ``upstream_ref`` lacks, and vice versa."""
    output = repo.git.rev_list("--left-right", "--count", f"{local_ref}...{upstream_ref}")
    ahead, behind = output.split()
    return int(ahead), int(behind)


def is_dirty(repo: Repo) -> bool:
    """Staged, unstaged, or untracked-but-not-ignored changes count as dirty."""
    return repo.is_dirty(index=True, working_tree=True, untracked_files=True)


def local_changes(repo: Repo) -> set[str]:
    """Paths with staged, unstaged or untracked (non-ignored) changes."""
    paths = set(repo.untracked_files)
    for diff in [*repo.index.diff(None), *repo.index.diff("HEAD")]:
        paths.update(p for p in (diff.a_path, diff.b_path) if p)
    return paths


def changed_between(repo: Repo, old_ref: str, new_ref: str) -> set[str]:
    """Paths that differ between two commits."""
    output = repo.git.diff("--name-only", old_ref, new_ref)
    return {line for line in output.splitlines() if line}


def find_matching_remote(repo: Repo, urls: list[str]) -> str | None:
    """Name of the first remote whose URL is one of ``urls`` (primary URL wins)."""
    remote_urls = {}
    for remote in repo.remotes:
        try:
            remote_urls[remote.name] = list(remote.urls)
        except GitCommandError:
            continue
    for url in urls:
        for name, candidates in remote_urls.items():
            if url in candidates:
                return name
    return None


def remote_names(repo: Repo) -> list[str]:
    return [remote.name for remote in repo.remotes]


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


def fetch(repo: Repo, remote: str, timeout: float | None = None) -> None:
    """Update remote-tracking refs and tags; never touches the working tree."""
    repo.git.fetch("--tags", "--", remote, kill_after_timeout=timeout)


def clone(url: str, dest: str | Path, refspec: str | None, timeout: float | None = None) -> Repo:
    """Clone ``url`` into ``dest`` with ``refspec`` (branch or tag) checked out.

    Without a refspec the remote's default branch is checked out.
    """
    args = ["--branch", refspec] if refspec else []
    Git().clone(*args, "--", url, str(dest), kill_after_timeout=timeout)
    return open_repo(dest)


def fast_forward_pull(repo: Repo, timeout: float | None = None) -> None:
    repo.git.pull("--ff-only", kill_after_timeout=timeout)


# ---------------------------------------------------------------------------
# Local mutation
# ---------------------------------------------------------------------------


def checkout(repo: Repo, name: str) -> None:
    repo.git.checkout(name)


def create_tracking_branch(repo: Repo, remote: str, branch: str) -> None:
    """Create local ``branch`` from ``remote/branch`` with upstream set, without checking it out."""
    repo.git.branch("--track", branch, f"{remote}/{branch}")


def reset_hard(repo: Repo) -> None:
    """Discard staged, unstaged and untracked (non-ignored) changes."""
    repo.git.reset("--hard", "HEAD")
    repo.git.clean("-fd")
