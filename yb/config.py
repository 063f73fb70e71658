"""Configuration — the workspace ``yb.yaml`` file and engine tuning options."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from yb.errors import YbError

WORKSPACE_CONF_FORMAT_VERSION = 2

DEFAULT_NETWORK_TIMEOUT = 60.0
DEFAULT_INSPECT_WORKERS = 8


@dataclass
class WorkspaceConfig:
    """Contents of ``.yb/yb.yaml``. Paths are relative to the ``.yb`` directory."""

    build_dir_relative: Path
    sources_dir_relative: Path
    poky_dir_relative: Path | None = None
    format_version: int = WORKSPACE_CONF_FORMAT_VERSION

    def to_dict(self) -> dict:
        data = {
            "format_version": self.format_version,
            "build_dir_relative": str(self.build_dir_relative),
            "sources_dir_relative": str(self.sources_dir_relative),
        }
        if self.poky_dir_relative is not None:
            data["poky_dir_relative"] = str(self.poky_dir_relative)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "WorkspaceConfig":
        if not isinstance(data, dict):
            raise YbError("workspace config must be a mapping")

        version = data.get("format_version")
        if version != WORKSPACE_CONF_FORMAT_VERSION:
            raise YbError(
                f"unsupported workspace config format_version {version!r} "
                f"(expected {WORKSPACE_CONF_FORMAT_VERSION})"
            )

        # repos_dir_relative is the pre-rename spelling
        sources = data.get("sources_dir_relative", data.get("repos_dir_relative"))
        build = data.get("build_dir_relative")
        if sources is None or build is None:
            raise YbError("workspace config needs build_dir_relative and sources_dir_relative")

        poky = data.get("poky_dir_relative")
        return cls(
            build_dir_relative=Path(build),
            sources_dir_relative=Path(sources),
            poky_dir_relative=Path(poky) if poky else None,
            format_version=version,
        )


def load_workspace_config(path: str | Path) -> WorkspaceConfig:
    """Load a workspace config from a YAML file."""
    with open(path) as f:
        data = yaml.safe_load(f)
    return WorkspaceConfig.from_dict(data or {})


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        raise YbError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        raise YbError(f"{name} must be an integer, got {raw!r}")


@dataclass
class EngineOptions:
    """Knobs for inspection and execution.

    Parameters
    ----------
    network_timeout : float
        Upper bound (seconds) for any fetch, clone or stream pull.
    inspect_workers : int
        Size of the worker pool used to inspect repositories concurrently.
    fetch : bool
        Whether inspection fetches from the expected remote first.
    refresh_stream : bool
        Whether the active stream is pulled before the spec is read.
    """

    network_timeout: float = DEFAULT_NETWORK_TIMEOUT
    inspect_workers: int = DEFAULT_INSPECT_WORKERS
    fetch: bool = True
    refresh_stream: bool = True

    @classmethod
    def from_env(cls, **overrides) -> "EngineOptions":
        """Build options from ``YB_*`` environment variables, then apply overrides."""
        options = cls(
            network_timeout=_env_float("YB_NETWORK_TIMEOUT", DEFAULT_NETWORK_TIMEOUT),
            inspect_workers=_env_int("YB_INSPECT_WORKERS", DEFAULT_INSPECT_WORKERS),
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(options, key, value)
        if options.inspect_workers < 1:
            options.inspect_workers = 1
        return options
