import hashlib
import threading
from pathlib import Path

import pytest
import tomli_w

from rustup_sync.errors import HTTPStatusError

UPSTREAM = "https://static.rust-lang.org/"
MIRROR_URL = "http://mirror.test"
LINUX = "x86_64-unknown-linux-gnu"
DARWIN = "aarch64-apple-darwin"
WINDOWS = "x86_64-pc-windows-msvc"


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeFetcher:
    """
    Serves files from an in-memory upstream.

    A value may be a list of payloads, served one per request until the last
    one is left.
    """

    def __init__(self, files):
        self.files = files
        self.calls = []
        self.lock = threading.Lock()

    def download(self, path, dest_dir):
        with self.lock:
            self.calls.append(path)
            if path not in self.files:
                raise HTTPStatusError(UPSTREAM + path, 404)
            data = self.files[path]
            if isinstance(data, list):
                data = data.pop(0) if len(data) > 1 else data[0]
        dst = Path(dest_dir) / path
        dst.parent.mkdir(parents=True, exist_ok=True)
        dst.write_bytes(data)
        return dst

    def artifact_calls(self):
        return [c for c in self.calls if not c.startswith("dist/channel-rust-")]


class Upstream:
    def __init__(self):
        self.files = {}

    def artifact(self, date, name, content=None, declared=None):
        """Publish an artifact, return its URL and declared hash."""
        if content is None:
            content = f"contents of {name}".encode()
        path = f"dist/{date}/{name}"
        self.files[path] = content
        return UPSTREAM + path, declared or sha256(content)

    def target(self, date, stem, available=True):
        if not available:
            return {"available": False}
        url, digest = self.artifact(date, f"{stem}.tar.gz")
        xz_url, xz_digest = self.artifact(date, f"{stem}.tar.xz")
        return {"available": True, "url": url, "hash": digest,
                "xz_url": xz_url, "xz_hash": xz_digest}

    def channel(self, channel, date, pkgs, version="2", signature=None):
        body = tomli_w.dumps({"manifest-version": version, "date": date,
                              "pkg": pkgs}).encode()
        name = f"channel-rust-{channel}.toml"
        self.files[f"dist/{name}"] = body
        self.files[f"dist/{name}.sha256"] = \
            f"{signature or sha256(body)}  {name}\n".encode()
        return body

    def rustup(self, version="1.27.1", schema="1", targets=()):
        self.files["rustup/release-stable.toml"] = tomli_w.dumps(
            {"schema-version": schema, "version": version}).encode()
        for target in targets:
            ext = ".exe" if "windows" in target else ""
            self.files[f"rustup/dist/{target}/rustup-init{ext}"] = b"latest " + target.encode()
            self.files[f"rustup/archive/{version}/{target}/rustup-init{ext}"] = \
                b"pinned " + target.encode()


def standard_pkgs(upstream, date, channel="stable", version="1.78.0"):
    """A small but representative channel: one in-scope, one out-of-scope,
    one wildcard and one unavailable target."""
    tag = version if channel == "stable" else channel
    return {
        "rustc": {
            "version": f"{version} (9b00956e5 2024-04-29)",
            "target": {
                LINUX: upstream.target(date, f"rustc-{tag}-{LINUX}"),
                DARWIN: upstream.target(date, f"rustc-{tag}-{DARWIN}"),
            },
        },
        "rust-src": {
            "version": version,
            "target": {"*": upstream.target(date, f"rust-src-{tag}")},
        },
        "rust-analysis": {
            "version": version,
            "target": {LINUX: upstream.target(date, "", available=False)},
        },
    }


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def fetcher(upstream):
    return FakeFetcher(upstream.files)


@pytest.fixture
def dirs(tmp_path):
    orig = tmp_path / "orig"
    mirror = tmp_path / "mirror"
    return orig, mirror
