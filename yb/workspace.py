"""Workspace — the ``.yb`` marker directory and the state persisted in it.

A workspace root looks like::

    <root>/
        .yb/
            yb.yaml             # WorkspaceConfig
            active_spec.yaml    # {name, from_stream}; absent in a bare workspace
            streams/<name>/     # see yb.stream
        build/conf/bblayers.conf
        sources/<repo>/

The active spec is only ever written by ``Workspace.set_active``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

from yb.config import WorkspaceConfig, load_workspace_config
from yb.errors import (
    NotManagedError,
    SpecNotFound,
    StreamUnavailable,
    WorkspaceNotFound,
    YbError,
)
from yb.spec.models import Spec
from yb.stream import Stream, add_stream
from yb.utils.file_io import atomic_write_yaml, find_dir_upwards, list_subdirectories

logger = logging.getLogger(__name__)

YB_DIR = ".yb"
WORKSPACE_CONFIG_FILE = "yb.yaml"
ACTIVE_SPEC_FILE = "active_spec.yaml"
STREAMS_DIR = "streams"
LAYER_CONFIG_RELATIVE = Path("conf") / "bblayers.conf"


class WorkspaceKind:
    BARE = "bare"  # no active spec: inspection only
    MANAGED = "managed"


class Workspace:
    """A managed (or bare) environment rooted at the parent of ``.yb``."""

    def __init__(self, yb_dir: str | Path, config: WorkspaceConfig):
        self.yb_dir = Path(yb_dir)
        self.config = config

    # --- Construction ---

    @classmethod
    def open(cls, yb_dir: str | Path) -> "Workspace":
        yb_dir = Path(yb_dir)
        config_path = yb_dir / WORKSPACE_CONFIG_FILE
        if not config_path.is_file():
            raise WorkspaceNotFound(f"{yb_dir} has no {WORKSPACE_CONFIG_FILE}")
        return cls(yb_dir, load_workspace_config(config_path))

    @classmethod
    def discover(cls, start: str | Path | None = None) -> "Workspace":
        """Find the workspace containing ``start`` (default: the current directory).

        Walks upward until a ``.yb`` directory is found, without crossing
        into another filesystem.
        """
        start = Path(start) if start is not None else Path.cwd()
        yb_dir = find_dir_upwards(start, YB_DIR)
        if yb_dir is None:
            raise WorkspaceNotFound(f"no {YB_DIR} directory found in {start} or any parent")
        logger.debug("found workspace at %s", yb_dir)
        return cls.open(yb_dir)

    @classmethod
    def initialize(
        cls,
        location: str | Path,
        build_dir: str | Path | None = None,
        sources_dir: str | Path | None = None,
        poky_dir: str | Path | None = None,
    ) -> "Workspace":
        """Create ``.yb`` under ``location`` and return the new (bare) workspace.

        Relative directory arguments are taken relative to ``location``.
        """
        location = Path(location).resolve()
        yb_dir = location / YB_DIR
        if yb_dir.exists():
            raise YbError(f"{location} is already a yb workspace")

        def relative(path, default):
            target = location / (path if path is not None else default)
            return Path(os.path.relpath(target, yb_dir))

        config = WorkspaceConfig(
            build_dir_relative=relative(build_dir, "build"),
            sources_dir_relative=relative(sources_dir, "sources"),
            poky_dir_relative=relative(poky_dir, None) if poky_dir is not None else None,
        )

        (yb_dir / STREAMS_DIR).mkdir(parents=True)
        atomic_write_yaml(yb_dir / WORKSPACE_CONFIG_FILE, config.to_dict())
        logger.info("initialized workspace at %s", location)
        return cls(yb_dir, config)

    # --- Paths ---

    @property
    def root(self) -> Path:
        return self.yb_dir.parent

    def _resolve(self, relative: Path) -> Path:
        return Path(os.path.normpath(self.yb_dir / relative))

    @property
    def build_dir(self) -> Path:
        return self._resolve(self.config.build_dir_relative)

    @property
    def sources_dir(self) -> Path:
        return self._resolve(self.config.sources_dir_relative)

    @property
    def poky_dir(self) -> Path | None:
        if self.config.poky_dir_relative is None:
            return None
        return self._resolve(self.config.poky_dir_relative)

    @property
    def layer_config_path(self) -> Path:
        return self.build_dir / LAYER_CONFIG_RELATIVE

    @property
    def streams_dir(self) -> Path:
        return self.yb_dir / STREAMS_DIR

    @property
    def active_spec_path(self) -> Path:
        return self.yb_dir / ACTIVE_SPEC_FILE

    @property
    def kind(self) -> str:
        return WorkspaceKind.MANAGED if self.active_spec_path.is_file() else WorkspaceKind.BARE

    # --- Streams ---

    def streams(self) -> list[Stream]:
        """Every stream that loads; unusable ones are logged and skipped."""
        loaded = []
        for stream_dir in list_subdirectories(self.streams_dir):
            try:
                loaded.append(Stream.load(stream_dir))
            except YbError as e:
                logger.warning("skipping stream %s: %s", stream_dir.name, e)
        return loaded

    def stream(self, name: str) -> Stream:
        stream_dir = self.streams_dir / name
        if not stream_dir.is_dir():
            raise StreamUnavailable(f"no stream named '{name}'")
        return Stream.load(stream_dir, name)

    def add_stream(self, url: str, name: str | None = None, timeout: float | None = None) -> Stream:
        return add_stream(self.streams_dir, url, name, timeout=timeout)

    def list_specs(self) -> set[str]:
        """Names of every spec available in any stream."""
        names: set[str] = set()
        for stream in self.streams():
            names |= stream.list_specs()
        return names

    def find_spec(self, name: str) -> tuple[Stream, Spec]:
        """Locate ``name`` across all streams.

        Raises:
            SpecNotFound: no stream has it.
            YbError: more than one stream has it.
        """
        matches = [(s, s.specs[name]) for s in self.streams() if name in s.specs]
        if not matches:
            raise SpecNotFound(f"no spec named '{name}' in any stream")
        if len(matches) > 1:
            owners = ", ".join(s.name for s, _ in matches)
            raise YbError(f"spec '{name}' is ambiguous: found in streams {owners}")
        return matches[0]

    # --- Active spec ---

    def _read_active(self) -> dict | None:
        if not self.active_spec_path.is_file():
            return None
        with open(self.active_spec_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict) or not data.get("name") or not data.get("from_stream"):
            raise YbError(f"{self.active_spec_path} is malformed")
        return data

    def active_spec_name(self) -> str | None:
        data = self._read_active()
        return data["name"] if data else None

    def active_stream(self) -> Stream:
        data = self._read_active()
        if data is None:
            raise NotManagedError("no active spec; run 'yb activate <spec>' first")
        return self.stream(data["from_stream"])

    def active_spec(self, stream: Stream | None = None) -> Spec:
        """Load the active spec from the stream it was activated from.

        Raises:
            NotManagedError: the workspace is bare.
            StreamUnavailable: the recorded stream is gone.
            SpecNotFound: the stream no longer contains the spec.
        """
        data = self._read_active()
        if data is None:
            raise NotManagedError("no active spec; run 'yb activate <spec>' first")
        if stream is None or stream.name != data["from_stream"]:
            stream = self.stream(data["from_stream"])
        return stream.load_spec(data["name"])

    def set_active(self, name: str) -> Spec:
        """Make ``name`` the active spec (fails if no stream provides it)."""
        stream, spec = self.find_spec(name)
        atomic_write_yaml(self.active_spec_path, {"name": spec.name, "from_stream": stream.name})
        logger.info("activated spec '%s' from stream '%s'", spec.name, stream.name)
        return spec
