"""Tests for plan execution: idempotence, dry-run fidelity, force gating."""

import tempfile
from pathlib import Path

from git import Repo
from git_helpers import add_layers, clone, commit_file, create_branch, init_repo, upstream_url

from yb.spec.models import RepoSpec, Spec
from yb.sync.actions import ActionKind
from yb.sync.executor import Executor, OutcomeStatus
from yb.sync.inspector import inspect_workspace
from yb.sync.layers import parse_layer_config, read_layer_config
from yb.sync.planner import compute_plan


def _make_upstream(tmpdir: str, name: str = "poky") -> Repo:
    upstream = init_repo(Path(tmpdir) / "upstream" / name)
    add_layers(upstream, "meta", "meta-poky")
    create_branch(upstream, "honister")
    return upstream


def _make_spec(upstream: Repo, refspec: str = "honister", **extra) -> Spec:
    repos = {"poky": RepoSpec(url=upstream_url(upstream), refspec=refspec, layers={"meta": None, "meta-poky": None})}
    repos.update(extra)
    return Spec(name="honister", repos=repos)


def _paths(tmpdir: str):
    return Path(tmpdir) / "sources", Path(tmpdir) / "build" / "conf" / "bblayers.conf"


def _plan(spec: Spec, tmpdir: str, force: bool = False):
    sources, config_path = _paths(tmpdir)
    state = inspect_workspace(spec, sources)
    return compute_plan(spec, state, read_layer_config(config_path), sources, config_path, force=force)


def _kinds(actions) -> list[ActionKind]:
    return [a.kind for a in actions]


# --- Whole-plan behaviour ---


def test_apply_from_scratch_then_replan_is_empty():
    with tempfile.TemporaryDirectory() as tmpdir:
        upstream = _make_upstream(tmpdir)
        spec = _make_spec(upstream)
        sources, config_path = _paths(tmpdir)

        plan = _plan(spec, tmpdir)
        assert _kinds(plan.actions) == [
            ActionKind.CLONE_REPO,
            ActionKind.CREATE_LAYER_CONFIG,
            ActionKind.ADD_LAYER,
            ActionKind.ADD_LAYER,
        ]

        result = Executor().apply(plan, dry_run=False)
        assert result.ok
        assert Repo(sources / "poky").active_branch.name == "honister"
        assert read_layer_config(config_path).layers == [
            str(sources / "poky" / "meta"),
            str(sources / "poky" / "meta-poky"),
        ]

        assert _plan(spec, tmpdir).is_empty


def test_dry_run_changes_nothing_and_matches_apply():
    with tempfile.TemporaryDirectory() as tmpdir:
        upstream = _make_upstream(tmpdir)
        spec = _make_spec(upstream)
        sources, config_path = _paths(tmpdir)

        plan = _plan(spec, tmpdir)
        dry = Executor().apply(plan, dry_run=True)
        assert dry.ok
        assert all(o.status == OutcomeStatus.WOULD_APPLY for o in dry.outcomes)
        assert not (sources / "poky").exists()
        assert not config_path.exists()

        applied = Executor().apply(_plan(spec, tmpdir), dry_run=False)
        assert [a.describe() for a in dry.performed] == [a.describe() for a in applied.performed]
        assert dry.written_layers == applied.written_layers


def test_dry_run_reports_precondition_failure():
    with tempfile.TemporaryDirectory() as tmpdir:
        upstream = _make_upstream(tmpdir)
        spec = _make_spec(upstream)
        sources, _ = _paths(tmpdir)

        plan = _plan(spec, tmpdir)
        # someone creates the directory between planning and execution
        (sources / "poky").mkdir(parents=True)
        (sources / "poky" / "file").write_text("x\n")

        result = Executor().apply(plan, dry_run=True)
        assert not result.ok
        assert result.failures[0].repo == "poky"
        assert result.repos[0].outcomes[0].status == OutcomeStatus.FAILED


# --- Branch handling ---


def test_switch_creates_tracking_branch():
    with tempfile.TemporaryDirectory() as tmpdir:
        upstream = _make_upstream(tmpdir)
        sources, _ = _paths(tmpdir)
        local = clone(upstream, sources / "poky")

        plan = _plan(_make_spec(upstream), tmpdir)
        assert _kinds(plan.repos[0].actions) == [ActionKind.CREATE_TRACKING_BRANCH, ActionKind.CHECKOUT]

        result = Executor().apply(plan, dry_run=False)
        assert result.ok
        assert local.active_branch.name == "honister"
        tracking = local.active_branch.tracking_branch()
        assert (tracking.remote_name, tracking.remote_head) == ("origin", "honister")
        assert _plan(_make_spec(upstream), tmpdir).is_empty


def test_fast_forward():
    with tempfile.TemporaryDirectory() as tmpdir:
        upstream = _make_upstream(tmpdir)
        sources, _ = _paths(tmpdir)
        Executor().apply(_plan(_make_spec(upstream, refspec="master"), tmpdir), dry_run=False)
        new_head = commit_file(upstream, "meta/recipe.bb", "SUMMARY = 'x'\n")

        plan = _plan(_make_spec(upstream, refspec="master"), tmpdir)
        assert _kinds(plan.actions) == [ActionKind.FAST_FORWARD_PULL]

        Executor().apply(plan, dry_run=False)
        assert Repo(sources / "poky").head.commit.hexsha == new_head


# --- Force gating ---


def test_dirty_conflict_leaves_repo_untouched():
    with tempfile.TemporaryDirectory() as tmpdir:
        upstream = _make_upstream(tmpdir)
        sources, _ = _paths(tmpdir)
        local = clone(upstream, sources / "poky")
        scratch = sources / "poky" / "scratch.txt"
        scratch.write_text("work in progress\n")
        head = local.head.commit.hexsha

        plan = _plan(_make_spec(upstream), tmpdir)
        assert plan.repos[0].blocked

        result = Executor().apply(plan, dry_run=False, force=False)
        assert len(result.conflicts) == 1
        assert result.conflicts[0].repo == "poky"
        assert local.active_branch.name == "master"
        assert local.head.commit.hexsha == head
        assert scratch.read_text() == "work in progress\n"


def test_reset_hard_refused_without_force():
    with tempfile.TemporaryDirectory() as tmpdir:
        upstream = _make_upstream(tmpdir)
        sources, _ = _paths(tmpdir)
        local = clone(upstream, sources / "poky")
        scratch = sources / "poky" / "scratch.txt"
        scratch.write_text("work in progress\n")

        # planned with force, applied without it
        plan = _plan(_make_spec(upstream), tmpdir, force=True)
        assert plan.actions[0].kind == ActionKind.RESET_HARD

        for dry_run in (True, False):
            result = Executor().apply(plan, dry_run=dry_run, force=False)
            outcomes = result.repos[0].outcomes
            assert outcomes[0].status == OutcomeStatus.REFUSED
            assert all(o.status == OutcomeStatus.SKIPPED for o in outcomes[1:])
            assert result.conflicts
            assert ActionKind.RESET_HARD not in _kinds(result.performed)

        assert scratch.exists()
        assert local.active_branch.name == "master"


def test_reset_hard_with_force():
    with tempfile.TemporaryDirectory() as tmpdir:
        upstream = _make_upstream(tmpdir)
        sources, _ = _paths(tmpdir)
        local = clone(upstream, sources / "poky")
        (sources / "poky" / "scratch.txt").write_text("work in progress\n")
        (sources / "poky" / "README").write_text("edited\n")

        plan = _plan(_make_spec(upstream), tmpdir, force=True)
        result = Executor().apply(plan, dry_run=False, force=True)

        assert result.ok
        assert not (sources / "poky" / "scratch.txt").exists()
        assert local.active_branch.name == "honister"
        assert not local.is_dirty(untracked_files=True)


# --- Failure scoping and layers ---


def test_failed_clone_does_not_stop_other_repos():
    with tempfile.TemporaryDirectory() as tmpdir:
        upstream = _make_upstream(tmpdir)
        broken = RepoSpec(url=str(Path(tmpdir) / "nowhere"), refspec="master", layers={"meta-broken": None})
        spec = _make_spec(upstream, broken=broken)
        sources, config_path = _paths(tmpdir)

        result = Executor().apply(_plan(spec, tmpdir), dry_run=False)

        by_name = {r.name: r for r in result.repos}
        assert by_name["broken"].failure is not None
        assert by_name["poky"].ok
        assert (sources / "poky" / "meta").is_dir()

        layers = read_layer_config(config_path).layers
        assert str(sources / "poky" / "meta") in layers
        assert str(sources / "broken" / "meta-broken") not in layers
        assert any("meta-broken" in w for w in result.warnings)


def test_stale_layer_removed_and_file_preserved():
    with tempfile.TemporaryDirectory() as tmpdir:
        upstream = _make_upstream(tmpdir)
        spec = _make_spec(upstream)
        sources, config_path = _paths(tmpdir)
        Executor().apply(_plan(spec, tmpdir), dry_run=False)

        stale = str(sources / "poky" / "meta-yocto-bsp")
        current = read_layer_config(config_path)
        text = current.with_layers(current.layers + [stale]).render() + "# keep me\n"
        config_path.write_text(text)

        plan = _plan(spec, tmpdir)
        assert _kinds(plan.actions) == [ActionKind.REMOVE_LAYER]
        assert plan.actions[0].path == stale

        Executor().apply(plan, dry_run=False)
        written = config_path.read_text()
        assert written.endswith("# keep me\n")
        assert stale not in parse_layer_config(written).layers
        assert _plan(spec, tmpdir).is_empty


def test_dry_run_reports_pull_blocked_by_local_edits():
    with tempfile.TemporaryDirectory() as tmpdir:
        upstream = _make_upstream(tmpdir)
        sources, config_path = _paths(tmpdir)
        spec = _make_spec(upstream, refspec="master")
        Executor().apply(_plan(spec, tmpdir), dry_run=False)
        config_path.unlink()

        commit_file(upstream, "README", "changed upstream\n")
        (sources / "poky" / "README").write_text("changed locally\n")

        plan = _plan(spec, tmpdir)
        assert _kinds(plan.actions) == [
            ActionKind.FAST_FORWARD_PULL,
            ActionKind.CREATE_LAYER_CONFIG,
            ActionKind.ADD_LAYER,
            ActionKind.ADD_LAYER,
        ]

        dry = Executor().apply(plan, dry_run=True)
        applied = Executor().apply(plan, dry_run=False)

        assert not dry.ok
        assert not applied.ok
        assert [(f.repo, f.action) for f in dry.failures] == [(f.repo, f.action) for f in applied.failures]
        assert "README" in dry.failures[0].message
        assert [a.describe() for a in dry.performed] == [a.describe() for a in applied.performed]
        assert dry.warnings == applied.warnings
        assert (sources / "poky" / "README").read_text() == "changed locally\n"


def test_pull_with_unrelated_local_edits():
    with tempfile.TemporaryDirectory() as tmpdir:
        upstream = _make_upstream(tmpdir)
        sources, _ = _paths(tmpdir)
        spec = _make_spec(upstream, refspec="master")
        Executor().apply(_plan(spec, tmpdir), dry_run=False)

        new_head = commit_file(upstream, "meta/recipe.bb", "SUMMARY = 'x'\n")
        (sources / "poky" / "README").write_text("changed locally\n")

        plan = _plan(spec, tmpdir)
        assert Executor().apply(plan, dry_run=True).ok
        assert Executor().apply(plan, dry_run=False).ok
        assert Repo(sources / "poky").head.commit.hexsha == new_head
        assert (sources / "poky" / "README").read_text() == "changed locally\n"
