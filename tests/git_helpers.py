"""Helpers for building throwaway git repositories and specs in temp dirs."""

from pathlib import Path

import yaml
from git import Actor, Repo

AUTHOR = Actor("yb tests", "yb-tests@example.com")


def init_repo(path, branch: str = "master") -> Repo:
    """Create a repository at ``path`` with one commit on ``branch``."""
    Path(path).mkdir(parents=True, exist_ok=True)
    repo = Repo.init(path)
    repo.git.symbolic_ref("HEAD", f"refs/heads/{branch}")
    commit_file(repo, "README", "initial\n")
    return repo


def commit_file(repo: Repo, name: str, content: str, message: str | None = None) -> str:
    """Write ``name`` in the working tree, commit it, and return the new SHA."""
    path = Path(repo.working_tree_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.index.add([name])
    commit = repo.index.commit(message or f"update {name}", author=AUTHOR, committer=AUTHOR)
    return commit.hexsha


def add_layers(repo: Repo, *layers: str) -> str:
    """Commit a minimal ``conf/layer.conf`` for each layer directory."""
    sha = ""
    for layer in layers:
        sha = commit_file(repo, f"{layer}/conf/layer.conf", f"# {layer}\n", f"add {layer}")
    return sha


def create_branch(repo: Repo, name: str, with_commit: bool = True) -> str:
    """Create ``name`` from the current HEAD, optionally add a commit, then switch back."""
    original = repo.active_branch.name
    repo.git.checkout("-b", name)
    sha = commit_file(repo, f"{name}.txt", f"{name}\n") if with_commit else repo.head.commit.hexsha
    repo.git.checkout(original)
    return sha


def clone(upstream: Repo, dest, branch: str | None = None) -> Repo:
    kwargs = {"branch": branch} if branch else {}
    return Repo.clone_from(upstream.working_tree_dir, str(dest), **kwargs)


def upstream_url(upstream: Repo) -> str:
    return str(upstream.working_tree_dir)


def spec_data(name: str, repos: dict) -> dict:
    return {"header": {"version": 1, "name": name}, "repos": repos}


def write_spec(path, name: str, repos: dict) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(spec_data(name, repos), f, sort_keys=False)
    return path
