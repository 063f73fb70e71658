"""Tests for the spec model, schema validation and layer path resolution."""

import tempfile
from pathlib import Path

import pytest
import yaml

from yb.errors import SpecParseError
from yb.spec.models import RepoSpec, load_spec, load_spec_text, parse_spec, resolve_layer_path
from yb.spec.schema import get_schema
from yb.spec.schema_validator import validate_schema


def _make_spec_data(**overrides) -> dict:
    data = {
        "header": {"version": 1, "name": "honister"},
        "repos": {
            "poky": {
                "url": "https://git.yoctoproject.org/poky",
                "refspec": "honister",
                "layers": {"meta": None, "meta-poky": None},
            },
            "meta-openembedded": {
                "url": "https://github.com/openembedded/meta-openembedded",
                "refspec": "honister",
                "layers": {"meta-oe": None, "meta-python": None},
            },
        },
    }
    data.update(overrides)
    return data


def _parse_error(data) -> str:
    with pytest.raises(SpecParseError) as excinfo:
        parse_spec(data)
    return str(excinfo.value)


# --- Parsing ---


def test_valid_spec_parses():
    spec = parse_spec(_make_spec_data())
    assert spec.name == "honister"
    assert spec.version == 1
    assert list(spec.repos) == ["poky", "meta-openembedded"]
    assert spec.repos["poky"].refspec == "honister"
    assert spec.repos["poky"].layers == {"meta": None, "meta-poky": None}


def test_format_version_alias():
    data = _make_spec_data(header={"format_version": 1, "name": "x"})
    assert parse_spec(data).version == 1


def test_version_defaults_to_current():
    data = _make_spec_data(header={"name": "x"})
    assert parse_spec(data).version == 1


def test_future_version_rejected():
    message = _parse_error(_make_spec_data(header={"version": 2, "name": "x"}))
    assert "unsupported spec format version 2" in message


def test_missing_refspec_rejected():
    data = _make_spec_data()
    del data["repos"]["poky"]["refspec"]
    assert "refspec" in _parse_error(data)


def test_missing_url_rejected():
    data = _make_spec_data()
    del data["repos"]["poky"]["url"]
    assert "url" in _parse_error(data)


def test_unknown_repo_field_rejected():
    data = _make_spec_data()
    data["repos"]["poky"]["branch"] = "master"
    assert "branch" in _parse_error(data)


def test_layer_entry_must_be_string_or_null():
    data = _make_spec_data()
    data["repos"]["poky"]["layers"]["meta"] = ["not", "a", "path"]
    _parse_error(data)


def test_absolute_layer_override_rejected():
    data = _make_spec_data()
    data["repos"]["poky"]["layers"]["meta"] = "/etc"
    assert "relative" in _parse_error(data)


def test_layer_escaping_repo_rejected():
    data = _make_spec_data()
    data["repos"]["poky"]["layers"]["meta"] = "../other"
    assert "escapes" in _parse_error(data)


def test_duplicate_repo_name_rejected():
    text = """\
header:
  version: 1
  name: dup
repos:
  poky:
    url: https://example.com/poky
    refspec: master
  poky:
    url: https://example.com/poky2
    refspec: master
"""
    with pytest.raises(SpecParseError) as excinfo:
        load_spec_text(text, "dup.yaml")
    assert "duplicate" in str(excinfo.value)
    assert "dup.yaml" in str(excinfo.value)


def test_url_shared_by_two_repos_rejected():
    data = _make_spec_data()
    data["repos"]["meta-openembedded"]["url"] = data["repos"]["poky"]["url"]
    assert "more than one repository" in _parse_error(data)


def test_extra_remote_url_overlap_rejected():
    data = _make_spec_data()
    data["repos"]["meta-openembedded"]["extra-remotes"] = {
        "mirror": {"url": "https://git.yoctoproject.org/poky"},
    }
    assert "more than one repository" in _parse_error(data)


def test_layer_collision_rejected():
    data = _make_spec_data()
    data["repos"]["poky"]["layers"]["core"] = "meta"
    assert "same path" in _parse_error(data)


def test_extra_remotes_parsed():
    data = _make_spec_data()
    data["repos"]["poky"]["extra-remotes"] = {"mirror": {"url": "https://mirror.example.com/poky"}}
    spec = parse_spec(data)
    assert spec.repos["poky"].extra_remotes == {"mirror": "https://mirror.example.com/poky"}
    assert spec.repos["poky"].urls == [
        "https://git.yoctoproject.org/poky",
        "https://mirror.example.com/poky",
    ]


def test_empty_repos_allowed():
    spec = parse_spec(_make_spec_data(repos=None))
    assert spec.repos == {}


def test_invalid_yaml_is_parse_error():
    with pytest.raises(SpecParseError):
        load_spec_text("header: [unclosed", "broken.yaml")


def test_load_spec_from_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "honister.yaml"
        with open(path, "w") as f:
            yaml.dump(_make_spec_data(), f)
        spec = load_spec(path)
        assert spec.name == "honister"
        assert spec.source == str(path)


def test_source_does_not_affect_equality():
    a = load_spec_text(yaml.dump(_make_spec_data()), "a.yaml")
    b = load_spec_text(yaml.dump(_make_spec_data()), "b.yaml")
    assert a == b


# --- Layer paths ---


def test_resolve_layer_without_override():
    repo = RepoSpec(url="u", refspec="r", layers={"meta-oe": None})
    assert resolve_layer_path("/src/meta-openembedded", repo, "meta-oe") == Path("/src/meta-openembedded/meta-oe")


def test_resolve_layer_with_override():
    repo = RepoSpec(url="u", refspec="r", layers={"bsp": "meta-bsp/arm"})
    assert resolve_layer_path("/src/bsp", repo, "bsp") == Path("/src/bsp/meta-bsp/arm")


def test_resolve_root_layer():
    repo = RepoSpec(url="u", refspec="r", layers={".": None})
    assert resolve_layer_path("/src/meta-custom", repo, ".") == Path("/src/meta-custom")


def test_layer_paths_in_declaration_order():
    spec = parse_spec(_make_spec_data())
    paths = spec.layer_paths("/work/sources")
    assert paths == [
        ("poky", Path("/work/sources/poky/meta")),
        ("poky", Path("/work/sources/poky/meta-poky")),
        ("meta-openembedded", Path("/work/sources/meta-openembedded/meta-oe")),
        ("meta-openembedded", Path("/work/sources/meta-openembedded/meta-python")),
    ]


# --- Schema ---


def test_schema_has_required_sections():
    schema = get_schema()
    assert schema["required"] == ["header", "repos"]


def test_schema_reports_wrong_types():
    issues = validate_schema({"header": {"name": 5}, "repos": {"poky": {"url": "u", "refspec": True}}})
    assert any("header.name" in i for i in issues)
    assert any("repos.poky.refspec" in i for i in issues)


def test_schema_rejects_bool_version():
    issues = validate_schema({"header": {"name": "x", "version": True}, "repos": {}})
    assert issues
