"""Reconciliation — bring a workspace in line with its active spec.

This package provides the primitives for:
- Inspection: pure snapshots of each source directory's git state
- Layer config: structured read/write of ``bblayers.conf``
- Planning: a pure diff of desired vs. actual state into ordered actions
- Execution: dry-run validation or application of a plan, per repository
"""
