"""Layer configuration model — structured access to ``bblayers.conf``.

The engine owns exactly one statement in the file: the first plain
assignment to ``BBLAYERS`` (``=``, ``?=``, ``??=`` or ``:=``). Everything
around it, including any trailing text on the statement's closing line, is
kept as opaque text and written back byte-for-byte.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from pathlib import Path

from yb.errors import LayerConfigError
from yb.utils.file_io import atomic_write_text, normalize_path

LAYER_VARIABLE = "BBLAYERS"

DEFAULT_PREAMBLE = """\
# POKY_BBLAYERS_CONF_VERSION is increased each time build/conf/bblayers.conf
# changes incompatibly
POKY_BBLAYERS_CONF_VERSION = "2"

BBPATH = "${TOPDIR}"
BBFILES ?= ""

"""

_ASSIGNMENT_RE = re.compile(
    rf'^[ \t]*{LAYER_VARIABLE}[ \t]*(\?\?=|\?=|:=|=)[ \t]*"', re.MULTILINE
)


@dataclass
class LayerConfig:
    """Registered layer paths plus the untouched text around them."""

    layers: list[str] = field(default_factory=list)
    exists: bool = False
    operator: str = "?="
    prefix: str = ""  # everything before the managed statement
    trailer: str = "\n"  # rest of the statement's closing line, newline included
    suffix: str = ""  # everything after the managed statement
    newline: str = "\n"  # line ending used by the file

    @property
    def layer_set(self) -> set[str]:
        return set(self.layers)

    def with_layers(self, layers: list[str]) -> "LayerConfig":
        """Copy with a new layer list; duplicates are dropped, first wins."""
        ordered = list(dict.fromkeys(normalize_path(p) for p in layers))
        return replace(self, layers=ordered)

    def render(self) -> str:
        """Full file text with the managed statement re-rendered."""
        prefix = self.prefix if self.exists else DEFAULT_PREAMBLE
        if prefix and not prefix.endswith("\n"):
            prefix += self.newline
        statement = _render_statement(self.operator, self.layers, self.newline)
        return prefix + statement + self.trailer + self.suffix


def _render_statement(operator: str, layers: list[str], newline: str = "\n") -> str:
    lines = [f'{LAYER_VARIABLE} {operator} " \\']
    lines.extend(f"  {layer} \\" for layer in layers)
    lines.append('  "')
    return newline.join(lines)


def parse_layer_config(text: str) -> LayerConfig:
    """Split ``bblayers.conf`` text into the managed layer list and opaque context.

    ``text`` must be read without newline translation; a file using CRLF
    line endings keeps them when re-rendered.
    """
    newline = "\r\n" if "\r\n" in text else "\n"
    match = _ASSIGNMENT_RE.search(text)
    if match is None:
        return LayerConfig(exists=True, prefix=text, trailer=newline, suffix="", newline=newline)

    close = text.find('"', match.end())
    if close < 0:
        line = text.count("\n", 0, match.start()) + 1
        raise LayerConfigError(f"unterminated {LAYER_VARIABLE} value starting on line {line}")

    line_end = text.find("\n", close)
    line_end = len(text) if line_end < 0 else line_end + 1

    raw_value = text[match.end():close]
    layers = [
        normalize_path(token)
        for token in raw_value.replace("\\\r\n", " ").replace("\\\n", " ").split()
        if token != "\\"
    ]
    return LayerConfig(
        layers=list(dict.fromkeys(layers)),
        exists=True,
        operator=match.group(1),
        prefix=text[: match.start()],
        trailer=text[close + 1: line_end] or newline,
        suffix=text[line_end:],
        newline=newline,
    )


def read_layer_config(path: str | Path) -> LayerConfig:
    """Read the layer configuration; an absent file yields an empty, non-existent config."""
    path = Path(path)
    if not path.is_file():
        return LayerConfig()
    try:
        with open(path, encoding="utf-8", newline="") as f:
            text = f.read()
    except OSError as e:
        raise LayerConfigError(f"failed to read {path}: {e}")
    except UnicodeDecodeError as e:
        raise LayerConfigError(f"{path} is not valid UTF-8: {e}")
    return parse_layer_config(text)


def write_layer_config(config: LayerConfig, path: str | Path) -> LayerConfig:
    """Atomically write ``config`` to ``path``, creating the file if needed.

    Returns the config as it now exists on disk.
    """
    atomic_write_text(path, config.render())
    return read_layer_config(path)


def diff_layers(desired: list[str], actual: LayerConfig) -> tuple[list[str], list[str]]:
    """Return ``(to_add, to_remove)``; membership is order-insensitive.

    ``to_add`` follows desired order, ``to_remove`` follows the file's order.
    """
    desired_norm = list(dict.fromkeys(normalize_path(p) for p in desired))
    current = actual.layer_set
    wanted = set(desired_norm)
    to_add = [p for p in desired_norm if p not in current]
    to_remove = [p for p in actual.layers if p not in wanted]
    return to_add, to_remove
