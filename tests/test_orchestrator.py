"""End-to-end mirror runs against local file:// resources."""

import asyncio
import json

import pytest

from brewmirror import MirrorOrchestrator, run_mirror
from brewmirror.download import FetchEngine
from brewmirror.exceptions import ConfigError, MirrorIntegrityError
from brewmirror.models import MirrorConfig, PackageKind, Resource

from conftest import FakeProvider, cask, formula, sha256_of


@pytest.fixture
def sources(tmp_path):
    path = tmp_path / "sources"
    path.mkdir()
    return path


def _artifact(sources, name, body=None, checksum=None):
    """Write a source file and return a resource pointing at it."""
    body = body if body is not None else f"{name} contents".encode()
    path = sources / name
    path.write_bytes(body)
    return Resource(path.as_uri(), checksum=checksum or sha256_of(body))


def _config(tmp_path, **kwargs):
    kwargs.setdefault("formulas", ["wget"])
    kwargs.setdefault("resolve_dependencies", True)
    kwargs.setdefault("retry_delay", 0)
    return MirrorConfig(mirror_dir=str(tmp_path / "mirror"), **kwargs)


def _run(config, provider, **kwargs):
    return asyncio.run(MirrorOrchestrator(config, provider=provider, **kwargs).run())


def _catalog(sources, wget_version="1.21.4"):
    return FakeProvider(
        [
            formula(
                "wget",
                wget_version,
                deps=["openssl@3"],
                resources=[_artifact(sources, f"wget-{wget_version}.tar.gz")],
            ),
            formula("openssl@3", "3.2.0", resources=[_artifact(sources, "openssl-3.2.0.tar.gz")]),
        ]
    )


class TestMirrorRun:
    """Full runs through resolve, fetch and commit."""

    def test_first_run_mirrors_closure(self, tmp_path, sources):
        config = _config(tmp_path)

        report = _run(config, _catalog(sources))

        assert report.resolved == ["openssl@3", "wget"]
        assert len(report.fetched) == 2
        assert report.committed is True
        manifest = json.loads((config.mirror_path / "manifest.json").read_text())
        assert [p["name"] for p in manifest["packages"]] == ["openssl@3", "wget"]
        assert manifest["catalog_pins"] == {"homebrew/cask": "rev-1", "homebrew/core": "rev-1"}
        urlmap = json.loads((config.mirror_path / "urlmap.json").read_text())
        for filename in urlmap.values():
            assert (config.mirror_path / "store" / filename).is_file()

    def test_second_run_is_incremental(self, tmp_path, sources):
        config = _config(tmp_path)
        _run(config, _catalog(sources))

        provider = _catalog(sources)
        report = _run(config, provider)

        assert report.fetched == []
        assert report.cache_hits == []
        assert report.unchanged == ["openssl@3", "wget"]

    def test_version_change_refetches_only_that_package(self, tmp_path, sources):
        config = _config(tmp_path)
        _run(config, _catalog(sources))

        report = _run(config, _catalog(sources, wget_version="1.22.0"))

        assert report.unchanged == ["openssl@3"]
        assert len(report.fetched) == 1
        assert report.manifest.get("wget").version == "1.22.0"

    def test_without_resolution_only_roots(self, tmp_path, sources):
        config = _config(tmp_path, resolve_dependencies=False)

        report = _run(config, _catalog(sources))

        assert report.resolved == ["wget"]
        assert len(report.fetched) == 1

    def test_casks_and_their_formula_dependencies(self, tmp_path, sources):
        provider = FakeProvider(
            [
                cask("tool", formulas=["helper"], resources=[_artifact(sources, "tool.dmg")]),
                formula("helper", resources=[_artifact(sources, "helper.tar.gz")]),
            ]
        )
        config = _config(tmp_path, formulas=[], casks=["tool"])

        report = _run(config, provider)

        assert report.casks == ["tool"]
        assert report.resolved == ["helper"]
        assert len(report.manifest.packages) == 2

    def test_unavailable_dependency_does_not_stop_run(self, tmp_path, sources):
        provider = FakeProvider(
            [formula("wget", deps=["ghost"], resources=[_artifact(sources, "wget.tar.gz")])]
        )

        report = _run(_config(tmp_path), provider)

        assert report.unavailable == ["ghost"]
        assert report.committed is True

    def test_checksum_mismatch_aborts_without_commit(self, tmp_path, sources):
        bad = _artifact(sources, "wget.tar.gz", checksum="0" * 64)
        provider = FakeProvider([formula("wget", resources=[bad])])
        config = _config(tmp_path)

        with pytest.raises(MirrorIntegrityError) as excinfo:
            _run(config, provider)

        assert excinfo.value.context["failures"][0]["url"] == bad.url
        assert not (config.mirror_path / "manifest.json").exists()
        assert list((config.mirror_path / "store").iterdir()) == []

    def test_failed_resource_excludes_package(self, tmp_path, sources):
        missing = Resource((sources / "missing.tar.gz").as_uri(), checksum="ab" * 32)
        provider = FakeProvider(
            [
                formula("wget", deps=["broken"], resources=[_artifact(sources, "wget.tar.gz")]),
                formula("broken", resources=[missing]),
            ]
        )

        report = _run(_config(tmp_path), provider)

        assert report.failed == [missing.url]
        assert report.incomplete == ["broken"]
        assert [e.name for e in report.manifest.packages] == ["wget"]

    def test_unsupported_resource_is_skipped(self, tmp_path, sources):
        svn = Resource("svn://example.com/repo", strategy="svn")
        provider = FakeProvider(
            [formula("wget", resources=[_artifact(sources, "wget.tar.gz"), svn])]
        )

        report = _run(_config(tmp_path), provider)

        assert report.unsupported == [svn.url]
        assert report.manifest.get("wget") is not None

    def test_duplicate_content_is_stored_once(self, tmp_path, sources):
        body = b"same bytes"
        first = _artifact(sources, "a.tar.gz", body=body)
        second = _artifact(sources, "b.tar.gz", body=body)
        provider = FakeProvider(
            [formula("wget", deps=["other"], resources=[first]), formula("other", resources=[second])]
        )
        config = _config(tmp_path)

        report = _run(config, provider)

        assert len(list((config.mirror_path / "store").iterdir())) == 1
        urlmap = json.loads((config.mirror_path / "urlmap.json").read_text())
        assert urlmap[first.url] == urlmap[second.url]
        assert report.manifest.get("other").resource_ids == report.manifest.get("wget").resource_ids


class TestConfigurationErrors:
    def test_invalid_combination_fails_before_lookups(self, tmp_path, sources):
        provider = _catalog(sources)
        config = _config(tmp_path, resolve_dependencies=False, include_build=True)

        with pytest.raises(ConfigError):
            _run(config, provider)

        assert provider.calls == []
        assert not config.mirror_path.exists()


class TestPins:
    def test_pins_are_kept_across_runs(self, tmp_path, sources):
        config = _config(tmp_path)
        _run(config, _catalog(sources))

        provider = _catalog(sources)
        provider.revisions = {"homebrew/core": "rev-2", "homebrew/cask": "rev-2"}
        report = _run(config, provider)

        assert report.manifest.catalog_pins["homebrew/core"] == "rev-1"
        assert provider.revision_calls == []

    def test_fresh_pins(self, tmp_path, sources):
        _run(_config(tmp_path), _catalog(sources))

        provider = _catalog(sources)
        provider.revisions = {"homebrew/core": "rev-2", "homebrew/cask": "rev-2"}
        report = _run(_config(tmp_path, fresh_pins=True), provider)

        assert report.manifest.catalog_pins["homebrew/core"] == "rev-2"


class TestCancellation:
    def test_cancelled_run_does_not_commit(self, tmp_path, sources):
        config = _config(tmp_path)
        orchestrator = MirrorOrchestrator(config, provider=_catalog(sources))
        orchestrator.cancel()

        report = asyncio.run(orchestrator.run())

        assert report.partial is True
        assert report.committed is False
        assert not (config.mirror_path / "manifest.json").exists()

    def test_commit_partial(self, tmp_path, sources):
        config = _config(tmp_path, commit_partial=True)
        engine = FetchEngine(retry_delay=0)
        engine.cancel()
        orchestrator = MirrorOrchestrator(config, provider=_catalog(sources), engine=engine)

        report = asyncio.run(orchestrator.run())

        assert report.partial is True
        assert report.committed is True
        assert report.manifest.packages == []
        assert sorted(report.incomplete) == ["openssl@3", "wget"]


class TestPrune:
    def test_stale_packages_kept_without_prune(self, tmp_path, sources):
        _run(_config(tmp_path), _catalog(sources))

        report = _run(_config(tmp_path, formulas=["openssl@3"]), _catalog(sources))

        assert report.stale == ["wget"]
        assert report.manifest.get("wget") is not None
        assert report.pruned == []

    def test_prune_removes_stale_packages(self, tmp_path, sources):
        config = _config(tmp_path)
        _run(config, _catalog(sources))

        report = _run(_config(tmp_path, formulas=["openssl@3"], prune=True), _catalog(sources))

        assert report.pruned == ["wget"]
        manifest = json.loads((config.mirror_path / "manifest.json").read_text())
        assert [p["name"] for p in manifest["packages"]] == ["openssl@3"]
        assert len(list((config.mirror_path / "store").iterdir())) == 1

    def test_prune_keeps_cask_sharing_a_formula_name(self, tmp_path, sources):
        provider = FakeProvider(
            [
                formula("docker", resources=[_artifact(sources, "docker.tar.gz")]),
                cask("docker", resources=[_artifact(sources, "Docker.dmg")]),
            ]
        )
        config = _config(tmp_path, formulas=["docker"], casks=["docker"])
        _run(config, provider)

        report = _run(_config(tmp_path, formulas=[], casks=["docker"], prune=True), provider)

        assert report.pruned == ["docker"]
        assert report.manifest.get("docker") is None
        assert report.manifest.get("docker", PackageKind.CASK) is not None
        assert [p.suffix for p in (config.mirror_path / "store").iterdir()] == [".dmg"]


class TestRunMirror:
    def test_run_from_config_file(self, tmp_path, sources):
        body = b"wget source"
        artifact = sources / "wget-1.21.4.tar.gz"
        artifact.write_bytes(body)
        catalog = tmp_path / "catalog"
        (catalog / "formula").mkdir(parents=True)
        (catalog / "formula" / "wget.json").write_text(
            json.dumps(
                {
                    "name": "wget",
                    "versions": {"stable": "1.21.4"},
                    "urls": {"stable": {"url": artifact.as_uri(), "checksum": sha256_of(body)}},
                }
            )
        )
        config_path = tmp_path / "mirror.json"
        config_path.write_text(
            json.dumps(
                {
                    "mirror_dir": str(tmp_path / "mirror"),
                    "formulas": ["wget"],
                    "catalog": {"source": "local", "path": str(catalog), "ids": ["core"]},
                }
            )
        )

        report = asyncio.run(run_mirror(config_path))

        assert report.committed is True
        assert report.manifest.get("wget").resource_ids == [sha256_of(body)]
        assert list(report.manifest.catalog_pins) == ["homebrew/core"]
        assert (tmp_path / "mirror" / "store" / f"{sha256_of(body)}.tar.gz").is_file()
