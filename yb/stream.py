"""Stream accessor — a git checkout holding a team's spec documents.

Layout on disk::

    .yb/streams/<name>/
        stream.yaml      # {kind: Git, format_version: 1}
        contents/        # the git checkout; every *.yaml inside is a spec

Specs are indexed by ``header.name``, not by file name. A document that
fails to parse marks the stream as partially broken: the other specs stay
usable and the failure is kept on ``Stream.broken`` for reporting.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from yb.errors import SpecNotFound, SpecParseError, StreamDirty, StreamUnavailable, YbError
from yb.spec.models import Spec, load_spec
from yb.utils import git_ops
from yb.utils.file_io import atomic_write_yaml

logger = logging.getLogger(__name__)

STREAM_CONFIG_FILE = "stream.yaml"
STREAM_CONTENTS_DIR = "contents"
STREAM_FORMAT_VERSION = 1


class StreamKind:
    GIT = "Git"


@dataclass
class StreamConfig:
    """Contents of ``stream.yaml``."""

    kind: str = StreamKind.GIT
    format_version: int = STREAM_FORMAT_VERSION

    def to_dict(self) -> dict:
        return {"kind": self.kind, "format_version": self.format_version}

    @classmethod
    def from_dict(cls, data: dict) -> "StreamConfig":
        if not isinstance(data, dict):
            raise YbError("stream config must be a mapping")
        kind = data.get("kind", StreamKind.GIT)
        if kind != StreamKind.GIT:
            raise YbError(f"unsupported stream kind {kind!r}")
        version = data.get("format_version", STREAM_FORMAT_VERSION)
        if version != STREAM_FORMAT_VERSION:
            raise YbError(f"unsupported stream format_version {version!r}")
        return cls(kind=kind, format_version=version)


@dataclass
class Stream:
    """One stream checkout and the specs it currently contains."""

    path: Path
    name: str
    config: StreamConfig = field(default_factory=StreamConfig)
    specs: dict[str, Spec] = field(default_factory=dict)
    broken: dict[str, SpecParseError] = field(default_factory=dict)  # file path -> error

    @property
    def contents_dir(self) -> Path:
        return self.path / STREAM_CONTENTS_DIR

    @classmethod
    def load(cls, path: str | Path, name: str | None = None) -> "Stream":
        """Load the stream at ``path`` (the ``streams/<name>`` directory)."""
        path = Path(path)
        config_path = path / STREAM_CONFIG_FILE
        if not config_path.is_file():
            raise StreamUnavailable(f"{path} is not a stream (missing {STREAM_CONFIG_FILE})")
        with open(config_path) as f:
            config = StreamConfig.from_dict(yaml.safe_load(f) or {})

        stream = cls(path=path, name=name or path.name, config=config)
        if not stream.contents_dir.is_dir():
            raise StreamUnavailable(f"stream '{stream.name}' has no checkout at {stream.contents_dir}")
        stream._index_specs()
        return stream

    def _index_specs(self) -> None:
        self.specs.clear()
        self.broken.clear()
        for spec_file in sorted(self.contents_dir.rglob("*.yaml")):
            relative = spec_file.relative_to(self.contents_dir)
            if any(part.startswith(".") for part in relative.parts):
                continue
            try:
                spec = load_spec(spec_file)
            except SpecParseError as e:
                logger.warning("stream '%s': %s", self.name, e)
                self.broken[str(spec_file)] = e
                continue
            if spec.name in self.specs:
                other = self.specs[spec.name].source
                error = SpecParseError(f"spec name '{spec.name}' is also used by {other}", str(spec_file))
                logger.warning("stream '%s': %s", self.name, error)
                self.broken[str(spec_file)] = error
                continue
            self.specs[spec.name] = spec

    def list_specs(self) -> set[str]:
        return set(self.specs)

    def load_spec(self, name: str) -> Spec:
        """Return the spec called ``name``.

        Raises:
            SpecNotFound: no document in this stream declares that name.
        """
        try:
            return self.specs[name]
        except KeyError:
            raise SpecNotFound(f"no spec named '{name}' in stream '{self.name}'")

    @property
    def is_broken(self) -> bool:
        return bool(self.broken)

    @property
    def revision(self) -> str | None:
        """Commit currently checked out in the stream, or None if it cannot be read."""
        try:
            repo = git_ops.open_repo(self.contents_dir)
        except (InvalidGitRepositoryError, NoSuchPathError):
            return None
        try:
            return git_ops.head_commit(repo)
        finally:
            repo.close()

    def refresh(self, timeout: float | None = None) -> str | None:
        """Fast-forward the checkout to its upstream.

        Returns the new revision, or None when nothing changed.

        Raises:
            StreamDirty: local modifications or commits that upstream lacks.
            StreamUnavailable: not a git checkout, no upstream, or fetch failed.
        """
        try:
            repo = git_ops.open_repo(self.contents_dir)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise StreamUnavailable(f"stream '{self.name}' checkout is not a git repository")

        try:
            if git_ops.is_dirty(repo):
                raise StreamDirty(f"stream '{self.name}' has local modifications; not refreshing")

            branch = git_ops.current_branch(repo)
            upstream = git_ops.upstream_of(repo, branch) if branch else None
            if upstream is None:
                raise StreamUnavailable(f"stream '{self.name}' has no upstream branch to refresh from")
            remote, remote_branch = upstream

            try:
                git_ops.fetch(repo, remote, timeout=timeout)
                ahead, behind = git_ops.ahead_behind(
                    repo, f"refs/heads/{branch}", f"refs/remotes/{remote}/{remote_branch}"
                )
            except GitCommandError as e:
                raise StreamUnavailable(f"could not fetch stream '{self.name}': {e}")

            if ahead and behind:
                raise StreamDirty(
                    f"stream '{self.name}' has diverged from '{remote}/{remote_branch}' "
                    f"({ahead} ahead, {behind} behind)"
                )
            if ahead:
                raise StreamDirty(f"stream '{self.name}' has {ahead} local commits not on '{remote}/{remote_branch}'")
            if not behind:
                return None

            before = git_ops.head_commit(repo)
            try:
                git_ops.fast_forward_pull(repo, timeout=timeout)
            except GitCommandError as e:
                raise StreamUnavailable(f"could not update stream '{self.name}': {e}")
            after = git_ops.head_commit(repo)
        finally:
            repo.close()

        self._index_specs()
        if after == before:
            return None
        logger.info("stream '%s' updated to %s", self.name, (after or "")[:12])
        return after


def add_stream(streams_dir: str | Path, url: str, name: str | None = None, timeout: float | None = None) -> Stream:
    """Clone ``url`` as a new stream under ``streams_dir`` and load it.

    The stream name defaults to the last path component of the URL without
    a ``.git`` suffix.
    """
    name = name or stream_name_from_url(url)
    stream_dir = Path(streams_dir) / name
    if stream_dir.exists():
        raise YbError(f"a stream named '{name}' already exists")

    stream_dir.mkdir(parents=True)
    try:
        git_ops.clone(url, stream_dir / STREAM_CONTENTS_DIR, refspec=None, timeout=timeout).close()
    except GitCommandError as e:
        shutil.rmtree(stream_dir, ignore_errors=True)
        raise StreamUnavailable(f"could not clone stream from {url}: {e}")
    atomic_write_yaml(stream_dir / STREAM_CONFIG_FILE, StreamConfig().to_dict())
    logger.info("added stream '%s' from %s", name, url)
    return Stream.load(stream_dir, name)


def stream_name_from_url(url: str) -> str:
    tail = url.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]
    if tail.endswith(".git"):
        tail = tail[: -len(".git")]
    if not tail:
        raise YbError(f"cannot derive a stream name from {url!r}; pass one explicitly")
    return tail