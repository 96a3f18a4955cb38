"""Tests for stable resource identifiers."""

import hashlib
import json

import pytest

from brewmirror.download import IdentifierAssigner, canonical_url
from brewmirror.exceptions import (
    GitError,
    IdentifierError,
    ManifestError,
    UnsupportedStrategyError,
)
from brewmirror.models import DownloadStrategy, Resource

COMMIT = "a" * 40
OTHER_COMMIT = "b" * 40
GIT = DownloadStrategy.GIT.value


def _never_resolve(url, ref):
    raise AssertionError("revision lookup should not happen")


class TestCanonicalUrl:
    def test_normalizes_case_suffix_and_prefix(self):
        assert canonical_url("git+HTTPS://GitHub.com/owner/repo.git/") == "https://github.com/owner/repo"

    def test_drops_fragment_keeps_query(self):
        assert canonical_url("https://host/x?y=1#frag") == "https://host/x?y=1"


class TestIdentifyHttp:
    """Identifiers for content-addressed HTTP resources."""

    def test_checksum_is_identifier(self):
        resource = Resource("https://example.com/a.tar.gz", checksum="ABC123")

        assert IdentifierAssigner().identify(resource) == "abc123"

    def test_same_checksum_same_identifier(self):
        """Different URLs with the same content share an identifier."""
        assigner = IdentifierAssigner()
        first = Resource("https://mirror-a.example/a.tar.gz", checksum="f" * 64)
        second = Resource("https://mirror-b.example/a.tar.gz", checksum="f" * 64)

        assert assigner.identify(first) == assigner.identify(second)

    def test_unchecked_resource_uses_url_digest(self):
        resource = Resource("https://example.com/App.dmg", checksum=":unchecked")
        expected = hashlib.sha256(b"https://example.com/App.dmg").hexdigest()

        assert IdentifierAssigner().identify(resource) == expected

    def test_unsupported_strategy_raises(self):
        resource = Resource("svn://example.com/repo", strategy="svn")

        with pytest.raises(UnsupportedStrategyError):
            IdentifierAssigner().identify(resource)


class TestIdentifyVcs:
    """Identifiers for version-control resources."""

    def test_pinned_commit_needs_no_lookup(self):
        assigner = IdentifierAssigner(revision_resolver=_never_resolve)
        resource = Resource("https://github.com/o/r.git", strategy=GIT, revision=COMMIT)

        identifier = assigner.identify(resource)

        expected = hashlib.sha256(f"https://github.com/o/r@{COMMIT}".encode()).hexdigest()
        assert identifier == expected

    def test_url_spelling_does_not_change_identifier(self):
        assigner = IdentifierAssigner(revision_resolver=_never_resolve)
        a = Resource("https://github.com/o/r.git", strategy=GIT, revision=COMMIT)
        b = Resource("git+https://GITHUB.com/o/r/", strategy=GIT, revision=COMMIT)

        assert assigner.identify(a) == assigner.identify(b)

    def test_different_commits_differ(self):
        assigner = IdentifierAssigner(revision_resolver=_never_resolve)
        a = Resource("https://github.com/o/r.git", strategy=GIT, revision=COMMIT)
        b = Resource("https://github.com/o/r.git", strategy=GIT, revision=OTHER_COMMIT)

        assert assigner.identify(a) != assigner.identify(b)

    def test_symbolic_ref_is_resolved(self):
        calls = []

        def resolver(url, ref):
            calls.append((url, ref))
            return COMMIT

        assigner = IdentifierAssigner(revision_resolver=resolver)
        by_tag = Resource("https://github.com/o/r.git", strategy=GIT, ref="v1.0")
        by_commit = Resource("https://github.com/o/r.git", strategy=GIT, revision=COMMIT)

        assert assigner.identify(by_tag) == assigner.identify(by_commit)
        assert calls == [("https://github.com/o/r.git", "v1.0")]

    def test_missing_revision_and_ref(self):
        resource = Resource("https://github.com/o/r.git", strategy=GIT)

        with pytest.raises(IdentifierError):
            IdentifierAssigner().identify(resource)

    def test_lookup_failure_becomes_identifier_error(self):
        def resolver(url, ref):
            raise GitError("no such ref")

        resource = Resource("https://github.com/o/r.git", strategy=GIT, ref="missing")

        with pytest.raises(IdentifierError) as excinfo:
            IdentifierAssigner(revision_resolver=resolver).identify(resource)
        assert excinfo.value.context["ref"] == "missing"

    def test_non_commit_lookup_result_rejected(self):
        resource = Resource("https://github.com/o/r.git", strategy=GIT, ref="main")

        with pytest.raises(IdentifierError):
            IdentifierAssigner(revision_resolver=lambda url, ref: "main").identify(resource)


class TestIdentifierCache:
    """Persistence of the identifier side table."""

    def test_identifier_survives_restart(self, tmp_path):
        cache = tmp_path / "identifiers.json"
        resource = Resource("https://github.com/o/r.git", strategy=GIT, revision=COMMIT)

        first = IdentifierAssigner(cache, revision_resolver=_never_resolve)
        identifier = first.identify(resource)
        first.save()

        second = IdentifierAssigner(cache, revision_resolver=_never_resolve)
        assert len(second) == 1
        assert second.identify(resource) == identifier

    def test_cached_value_wins(self, tmp_path):
        cache = tmp_path / "identifiers.json"
        cache.write_text(json.dumps({f"https://github.com/o/r@{COMMIT}": "cached-id"}))
        resource = Resource("https://github.com/o/r.git", strategy=GIT, revision=COMMIT)

        assert IdentifierAssigner(cache).identify(resource) == "cached-id"

    def test_corrupted_cache_raises(self, tmp_path):
        cache = tmp_path / "identifiers.json"
        cache.write_text("{not json")

        with pytest.raises(ManifestError):
            IdentifierAssigner(cache)

    def test_save_without_path_is_noop(self):
        IdentifierAssigner().save()


class TestFilenames:
    def test_http_filename_keeps_extension(self):
        resource = Resource("https://example.com/pkg-1.0.tar.gz?raw=1", checksum="abc")

        assert IdentifierAssigner.filename_for(resource, "abc") == "abc.tar.gz"

    def test_vcs_filename_is_tarball(self):
        resource = Resource("https://github.com/o/r.git", strategy=GIT, revision=COMMIT)

        assert IdentifierAssigner.filename_for(resource, "xyz") == "xyz.tar.gz"

    def test_unknown_extension(self):
        resource = Resource("https://example.com/download", checksum="abc")

        assert IdentifierAssigner.filename_for(resource, "abc") == "abc"
