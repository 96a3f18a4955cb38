"""Shared fixtures and fakes for BrewMirror tests."""

import hashlib
import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from brewmirror.models import (
    DependencyEdge,
    DependencyKind,
    Found,
    Package,
    PackageKind,
    Resource,
    Unavailable,
)
from brewmirror.services.provider import PackageMetadataProvider


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def formula(
    name: str,
    version: str = "1.0",
    deps: Iterable[str] = (),
    build: Iterable[str] = (),
    optional: Iterable[str] = (),
    recommended: Iterable[str] = (),
    resources: Iterable[Resource] = (),
) -> Package:
    edges = [DependencyEdge(d, DependencyKind.RUNTIME) for d in deps]
    edges += [DependencyEdge(d, DependencyKind.BUILD) for d in build]
    edges += [DependencyEdge(d, DependencyKind.OPTIONAL) for d in optional]
    edges += [DependencyEdge(d, DependencyKind.RECOMMENDED) for d in recommended]
    resources = tuple(resources) or (
        Resource(url=f"https://example.com/{name}-{version}.tar.gz", checksum=sha256_of(name.encode())),
    )
    return Package(name, version, PackageKind.FORMULA, tuple(edges), resources)


def cask(
    token: str,
    version: str = "1.0",
    formulas: Iterable[str] = (),
    casks: Iterable[str] = (),
    resources: Iterable[Resource] = (),
) -> Package:
    edges = [DependencyEdge(d, DependencyKind.RUNTIME, PackageKind.FORMULA) for d in formulas]
    edges += [DependencyEdge(d, DependencyKind.RUNTIME, PackageKind.CASK) for d in casks]
    resources = tuple(resources) or (
        Resource(url=f"https://example.com/{token}-{version}.dmg", name="cask"),
    )
    return Package(token, version, PackageKind.CASK, tuple(edges), resources)


class FakeProvider(PackageMetadataProvider):
    """In-memory metadata provider that records every lookup."""

    def __init__(
        self,
        packages: Iterable[Package] = (),
        revisions: Optional[Dict[str, str]] = None,
    ):
        self.packages: Dict[Tuple[PackageKind, str], Package] = {
            (p.kind, p.name): p for p in packages
        }
        self.revisions = dict(revisions or {})
        self.calls: List[Tuple[PackageKind, str]] = []
        self.revision_calls: List[str] = []
        self.closed = False

    async def get_package(self, name, kind=PackageKind.FORMULA):
        self.calls.append((kind, name))
        package = self.packages.get((kind, name))
        if package is None:
            return Unavailable(name, f"{kind.value} not found")
        return Found(package)

    async def get_catalog_revision(self, catalog_id):
        self.revision_calls.append(catalog_id)
        return self.revisions.get(catalog_id, "rev-1")

    async def close(self):
        self.closed = True


class DummyContent:
    """Streamed body for a dummy aiohttp response."""

    def __init__(self, body: bytes):
        self._body = body

    async def iter_chunked(self, size: int):
        for start in range(0, len(self._body), size):
            yield self._body[start:start + size]


class DummyResponse:
    """Minimal aiohttp response stub usable as an async context manager."""

    def __init__(self, status: int = 200, body: bytes = b"", headers=None, payload=None):
        self.status = status
        self.headers = headers or {}
        self.content = DummyContent(body)
        self._body = body
        self._payload = payload

    async def json(self, content_type=None):
        if self._payload is None and self._body:
            return json.loads(self._body.decode("utf-8"))
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class DummySession:
    """
    Routes GET/HEAD requests to canned responses.

    Each route holds a list of responses; the last one repeats once the
    others are used up.
    """

    def __init__(self, routes: Optional[Dict[str, List]] = None):
        self.routes = {url: list(responses) for url, responses in (routes or {}).items()}
        self.calls: List[str] = []
        self.closed = False

    def _next(self, url: str):
        self.calls.append(url)
        responses = self.routes.get(url)
        if not responses:
            return DummyResponse(status=404)
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._next(url)

    def head(self, url, **kwargs):
        return self._next(url)

    async def close(self):
        self.closed = True


@pytest.fixture
def store(tmp_path: Path) -> Path:
    path = tmp_path / "store"
    path.mkdir()
    return path
