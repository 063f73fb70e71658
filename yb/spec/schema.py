"""JSON Schema for yb spec documents.

This is the structural gate: required sections, their types and shapes.
Cross-field rules (format version, URL overlap, layer path collisions) are
checked afterwards in ``yb.spec.models``.
"""

from yb.spec import SPEC_FORMAT_VERSION

_REMOTE_SCHEMA: dict = {
    "type": "object",
    "required": ["url"],
    "additionalProperties": False,
    "properties": {
        "url": {"type": "string", "minLength": 1},
    },
}

_REPO_SCHEMA: dict = {
    "type": "object",
    "required": ["url", "refspec"],
    "additionalProperties": False,
    "properties": {
        "url": {
            "type": "string",
            "minLength": 1,
            "description": "Clone URL of the repository.",
        },
        "refspec": {
            "type": "string",
            "minLength": 1,
            "description": "Branch or tag the repository should be on.",
        },
        "extra-remotes": {
            "type": ["object", "null"],
            "description": "Additional remotes that identify the same repository.",
            "additionalProperties": _REMOTE_SCHEMA,
        },
        "layers": {
            "type": ["object", "null"],
            "description": (
                "Layer name -> optional sub-path override. A null value means "
                "'<repo>/<layer-name>'; the name '.' means the repository root."
            ),
            "additionalProperties": {"type": ["string", "null"], "minLength": 1},
        },
    },
}

SPEC_SCHEMA: dict = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": f"https://yb.dev/schema/spec/v{SPEC_FORMAT_VERSION}",
    "title": "yb spec",
    "type": "object",
    "required": ["header", "repos"],
    "additionalProperties": False,
    "properties": {
        "header": {
            "type": "object",
            "required": ["name"],
            "additionalProperties": False,
            "properties": {
                "version": {"type": "integer", "minimum": 1},
                "format_version": {"type": "integer", "minimum": 1},
                "name": {"type": "string", "minLength": 1},
            },
        },
        "repos": {
            "type": ["object", "null"],
            "additionalProperties": _REPO_SCHEMA,
        },
    },
}


def get_schema() -> dict:
    """Return the canonical JSON Schema for spec documents."""
    return SPEC_SCHEMA
