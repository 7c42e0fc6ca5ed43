import concurrent.futures
import shutil
import tomllib
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set
from urllib.parse import urlsplit

import tomli_w

from . import config
from .errors import ChecksumError, IntegrityError, StructuralError
from .hashing import (file_sha256, read_sidecar, sidecar_path, signature_line,
                      write_sidecar)
from .paths import is_within, normalize_path, url_path_to_relative

MANIFEST_VERSION = "2"
# plain and xz-compressed variant of every artifact
ENCODING_PREFIXES = ("", "xz_")


def manifest_name(channel: str) -> str:
    return f"channel-rust-{channel}.toml"


def load_toml(path: Path, what: str) -> dict:
    try:
        with Path(path).open('rb') as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        raise StructuralError(f"Failed to parse {what} {path}: {e}") from e


def require(table: dict, key: str, kind: type, where: str):
    """Fetch a mandatory field of a parsed TOML table."""
    try:
        value = table[key]
    except KeyError:
        raise StructuralError(f"Missing field '{key}' in {where}") from None
    if not isinstance(value, kind):
        raise StructuralError(
            f"Field '{key}' in {where} should be {kind.__name__}, got {type(value).__name__}")
    return value


def check_date(date: str, where: str) -> str:
    try:
        datetime.strptime(date, "%Y-%m-%d")
    except ValueError:
        raise StructuralError(f"Invalid date {date!r} in {where}") from None
    return date


class ArtifactTask:
    def __init__(self, rel_path: str, dest: Path, expected_hash: str):
        self.rel_path = rel_path
        self.dest = dest
        self.expected_hash = expected_hash


class ManifestSync:
    """
    Mirrors the manifest of one release channel at a time.

    ``referenced`` and ``seen_targets`` are shared across channels: the
    former collects the normalised path of every artifact a produced
    manifest points to, the latter every in-scope target that had at least
    one available package.
    """

    def __init__(self, fetcher, orig_dir: Path, mirror_dir: Path, mirror_url: str,
                 targets: Iterable[str], referenced: Optional[Set] = None,
                 seen_targets: Optional[Set[str]] = None, workers: int = 1,
                 max_attempts: Optional[int] = None):
        self.fetcher = fetcher
        self.orig_dir = Path(orig_dir)
        self.mirror_dir = Path(mirror_dir)
        self.mirror_url = mirror_url.rstrip('/')
        self.targets = set(targets)
        self.referenced = referenced if referenced is not None else set()
        self.seen_targets = seen_targets if seen_targets is not None else set()
        self.workers = max(1, workers)
        self.max_attempts = max(1, max_attempts if max_attempts is not None else config.MAX_RETRY)
        self.downloaded = 0
        self.skipped = 0

    def sync(self, channel: str) -> Path:
        """Mirror one channel and return the path of the rewritten manifest."""
        name = f"dist/{manifest_name(channel)}"
        file_path = self.fetcher.download(name, self.orig_dir)
        sha256_path = self.fetcher.download(name + ".sha256", self.orig_dir)
        self.verify_signature(channel, file_path, sha256_path)

        manifest = load_toml(file_path, f"manifest of channel {channel}")
        version = require(manifest, "manifest-version", str, f"channel {channel}")
        if version != MANIFEST_VERSION:
            raise IntegrityError(
                f"Unexpected manifest-version {version!r} for channel {channel}, "
                f"expected {MANIFEST_VERSION!r}")
        date = check_date(require(manifest, "date", str, f"channel {channel}"),
                          f"channel {channel}")
        print(f"Channel {channel} date {date}", flush=True)

        tasks = self.plan(channel, manifest)
        print(f"Channel {channel}: {len(tasks)} artifacts need download", flush=True)
        self.run_tasks(channel, tasks)
        return self.write_manifest(channel, manifest, date)

    def verify_signature(self, channel: str, file_path: Path, sha256_path: Path):
        expected = Path(sha256_path).read_text(encoding="utf-8", errors="replace")[:64]
        actual = file_sha256(file_path)
        if actual != expected:
            raise IntegrityError(
                f"Signature mismatch for {file_path} (channel {channel}): "
                f"expected {expected}, got {actual}")

    def plan(self, channel: str, manifest: dict) -> List[ArtifactTask]:
        """
        Walk every package target of the manifest: disable out-of-scope
        targets, record references, rewrite URLs to the mirror and collect
        the artifacts that have to be fetched.
        """
        tasks: Dict[str, ArtifactTask] = {}
        pkgs = require(manifest, "pkg", dict, f"channel {channel}")
        for pkg_name, pkg in pkgs.items():
            where = f"pkg.{pkg_name} (channel {channel})"
            if not isinstance(pkg, dict):
                raise StructuralError(f"{where} is not a table")
            pkg_targets = require(pkg, "target", dict, where)
            for target, entry in pkg_targets.items():
                where = f"pkg.{pkg_name}.target.{target} (channel {channel})"
                if not isinstance(entry, dict):
                    raise StructuralError(f"{where} is not a table")

                # keep the table, newer rustup versions expect it to exist
                if target not in self.targets and target != config.WILDCARD_TARGET:
                    entry["available"] = False
                    continue

                if not require(entry, "available", bool, where):
                    continue
                self.seen_targets.add(target)

                for prefix in ENCODING_PREFIXES:
                    task = self.plan_artifact(entry, prefix, where)
                    if task is not None and task.rel_path not in tasks:
                        tasks[task.rel_path] = task
        return list(tasks.values())

    def plan_artifact(self, entry: dict, prefix: str, where: str) -> Optional[ArtifactTask]:
        url = require(entry, f"{prefix}url", str, where)
        expected_hash = require(entry, f"{prefix}hash", str, where)
        rel_path = url_path_to_relative(urlsplit(url).path)
        if not rel_path:
            raise StructuralError(f"Artifact URL {url!r} in {where} has no path")
        dest = self.mirror_dir / rel_path
        if not is_within(dest, self.mirror_dir):
            raise StructuralError(f"Artifact URL {url!r} in {where} points outside the mirror")

        self.referenced.add(normalize_path(dest))

        digest = read_sidecar(dest) if dest.is_file() else None
        sidecar_missing = digest is None
        if digest is None:
            digest = file_sha256(dest)

        entry[f"{prefix}url"] = f"{self.mirror_url}/{rel_path}"

        if digest != expected_hash:
            return ArtifactTask(rel_path, dest, expected_hash)

        print(f"File /{rel_path} already downloaded, skipping", flush=True)
        self.skipped += 1
        if sidecar_missing:
            write_sidecar(dest, digest)
            print(f"Writing checksum for file /{rel_path}", flush=True)
        return None

    def fetch_artifact(self, channel: str, task: ArtifactTask) -> str:
        # a stale sidecar must not outlive the bytes it described
        sidecar_path(task.dest).unlink(missing_ok=True)
        for attempt in range(1, self.max_attempts + 1):
            self.fetcher.download(task.rel_path, self.mirror_dir)
            digest = file_sha256(task.dest)
            if digest == task.expected_hash:
                write_sidecar(task.dest, digest)
                print(f"Writing checksum for file /{task.rel_path}", flush=True)
                return digest
            print(f"Checksum attempt {attempt}/{self.max_attempts} failed for "
                  f"/{task.rel_path}: expected {task.expected_hash}, got {digest}", flush=True)
        raise ChecksumError(
            f"Failed to pass checksum for /{task.rel_path} (channel {channel}) "
            f"after {self.max_attempts} attempts")

    def run_tasks(self, channel: str, tasks: List[ArtifactTask]):
        if not tasks:
            return
        if self.workers == 1 or len(tasks) == 1:
            for task in tasks:
                self.fetch_artifact(channel, task)
                self.downloaded += 1
            return

        max_workers = min(self.workers, len(tasks))
        print(f"Starting parallel download of {len(tasks)} files with {max_workers} workers",
              flush=True)
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(self.fetch_artifact, channel, task) for task in tasks]
            try:
                for future in concurrent.futures.as_completed(futures):
                    future.result()
                    self.downloaded += 1
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

    def write_manifest(self, channel: str, manifest: dict, date: str) -> Path:
        name = f"dist/{manifest_name(channel)}"
        path = self.mirror_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        print(f"Producing /{name}", flush=True)
        path.write_text(tomli_w.dumps(manifest), encoding="utf-8")

        sha256_path = self.mirror_dir / f"{name}.sha256"
        print(f"Producing /{name}.sha256", flush=True)
        sha256_path.write_text(
            signature_line(file_sha256(path), manifest_name(channel)), encoding="utf-8")

        alt_name = f"dist/{date}/{manifest_name(channel)}"
        alt_path = self.mirror_dir / alt_name
        alt_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(path, alt_path)
        print(f"Producing /{alt_name}", flush=True)
        shutil.copyfile(sha256_path, self.mirror_dir / f"{alt_name}.sha256")
        print(f"Producing /{alt_name}.sha256", flush=True)
        return path
