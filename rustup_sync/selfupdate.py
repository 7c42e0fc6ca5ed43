import shutil
from pathlib import Path
from typing import Iterable, List

from . import config
from .errors import FetchError, IntegrityError
from .manifest import load_toml, require

SCHEMA_VERSION = "1"
SELF_UPDATE_MANIFEST = "rustup/release-stable.toml"


def exe_suffix(target: str) -> str:
    return ".exe" if "windows" in target else ""


def rustup_init_paths(target: str, version: str) -> List[str]:
    """The "latest" alias and the version-pinned archive path of rustup-init."""
    ext = exe_suffix(target)
    return [
        f"rustup/dist/{target}/rustup-init{ext}",
        f"rustup/archive/{version}/{target}/rustup-init{ext}",
    ]


class SelfUpdateSync:
    """Mirrors the rustup self-update manifest and rustup-init binaries."""

    def __init__(self, fetcher, orig_dir: Path, mirror_dir: Path):
        self.fetcher = fetcher
        self.orig_dir = Path(orig_dir)
        self.mirror_dir = Path(mirror_dir)
        self.fetched = 0
        self.failed = 0

    def sync(self, targets: Iterable[str]) -> Path:
        print("Downloading rustup self update manifest...", flush=True)
        manifest_path = self.fetcher.download(SELF_UPDATE_MANIFEST, self.orig_dir)
        manifest = load_toml(manifest_path, "self update manifest")
        schema = require(manifest, "schema-version", str, str(manifest_path))
        if schema != SCHEMA_VERSION:
            raise IntegrityError(
                f"Unexpected schema-version {schema!r} in {manifest_path}, "
                f"expected {SCHEMA_VERSION!r}")
        version = require(manifest, "version", str, str(manifest_path))

        print(f"Downloading rustup {version} binaries...", flush=True)
        for target in sorted(targets):
            if target == config.WILDCARD_TARGET:
                continue
            for path in rustup_init_paths(target, version):
                self.fetch_best_effort(path, target)

        dst = self.mirror_dir / SELF_UPDATE_MANIFEST
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(manifest_path, dst)
        print(f"Producing /{SELF_UPDATE_MANIFEST}", flush=True)
        return dst

    def fetch_best_effort(self, path: str, target: str) -> bool:
        # not every target ships rustup-init
        try:
            self.fetcher.download(path, self.mirror_dir)
        except FetchError as e:
            print(f"Failed to fetch {path} for target {target}, ignored: {e}", flush=True)
            (self.mirror_dir / path).unlink(missing_ok=True)
            self.failed += 1
            return False
        self.fetched += 1
        return True
