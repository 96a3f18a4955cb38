"""Tests for the remote URL to local filename map."""

import pytest

from brewmirror.exceptions import ManifestError, URLMapConflictError
from brewmirror.mirror import URLMap, equivalent, url_variants


class TestVariants:
    def test_query_and_fragment_variants(self):
        variants = url_variants("https://host/a.tar.gz?token=1#x")

        assert variants[0] == "https://host/a.tar.gz?token=1#x"
        assert "https://host/a.tar.gz?token=1" in variants
        assert "https://host/a.tar.gz" in variants

    def test_trailing_slash_variants(self):
        assert "https://host/dir" in url_variants("https://host/dir/")
        assert "https://host/dir/" in url_variants("https://host/dir")

    def test_no_duplicates(self):
        variants = url_variants("https://host/a%20b")

        assert len(variants) == len(set(variants))
        assert "https://host/a b" in variants

    def test_equivalent(self):
        assert equivalent("https://host/a?x=1", "https://host/a#frag")
        assert not equivalent("https://host/a", "https://host/b")


class TestLookup:
    """Lookups tolerate query, fragment, slash and encoding differences."""

    def test_exact_match(self):
        urlmap = URLMap({"https://host/a.tar.gz": "abc.tar.gz"})

        assert urlmap.lookup("https://host/a.tar.gz") == "abc.tar.gz"

    def test_query_string_is_ignored(self):
        urlmap = URLMap({"https://host/a.tar.gz": "abc.tar.gz"})

        assert urlmap.lookup("https://host/a.tar.gz?raw=true") == "abc.tar.gz"

    def test_fragment_is_ignored(self):
        urlmap = URLMap({"https://host/a.tar.gz": "abc.tar.gz"})

        assert urlmap.lookup("https://host/a.tar.gz#sha256=xyz") == "abc.tar.gz"

    def test_percent_encoding(self):
        urlmap = URLMap({"https://host/my file.zip": "abc.zip"})

        assert urlmap.lookup("https://host/my%20file.zip") == "abc.zip"

    def test_unknown_url(self):
        assert URLMap().lookup("https://host/missing") is None


class TestAdd:
    def test_conflict_within_a_run(self):
        urlmap = URLMap()
        urlmap.add("https://host/a", "one.tar.gz")

        with pytest.raises(URLMapConflictError):
            urlmap.add("https://host/a", "two.tar.gz")

    def test_same_mapping_twice_is_fine(self):
        urlmap = URLMap()
        urlmap.add("https://host/a", "one.tar.gz")
        urlmap.add("https://host/a", "one.tar.gz")

        assert len(urlmap) == 1

    def test_prior_entry_is_replaced(self):
        urlmap = URLMap({"https://host/latest.dmg": "old.dmg"})

        urlmap.add("https://host/latest.dmg", "new.dmg")

        assert urlmap["https://host/latest.dmg"] == "new.dmg"

    def test_merge(self):
        urlmap = URLMap()

        urlmap.merge([("https://host/a", "a.zip"), ("https://host/b", "b.zip")])

        assert urlmap.filenames() == {"a.zip", "b.zip"}

    def test_remove_filenames(self):
        urlmap = URLMap({"https://host/a": "a.zip", "https://mirror/a": "a.zip", "https://host/b": "b.zip"})

        removed = urlmap.remove_filenames(["a.zip"])

        assert removed == ["https://host/a", "https://mirror/a"]
        assert "https://host/b" in urlmap
        assert len(urlmap) == 1


class TestSerialization:
    def test_to_dict_is_sorted(self):
        urlmap = URLMap({"https://b": "b", "https://a": "a"})

        assert list(urlmap.to_dict()) == ["https://a", "https://b"]

    def test_from_dict_rejects_non_object(self):
        with pytest.raises(ManifestError):
            URLMap.from_dict(["not", "a", "dict"])

    def test_from_dict_rejects_empty_filename(self):
        with pytest.raises(ManifestError):
            URLMap.from_dict({"https://a": ""})
