"""Spec documents — the declarative desired state of a yb environment.

1. Schema — structural definition of a spec document
2. Validator — walks a parsed document against the schema
3. Models — typed ``Spec``/``RepoSpec`` plus the cross-field checks
"""

SPEC_FORMAT_VERSION = 1
