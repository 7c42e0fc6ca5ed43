import shutil
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional, Set

from .errors import StructuralError
from .hashing import SIDECAR_SUFFIX, sidecar_path
from .paths import normalize_path

NIGHTLY_MARKER = "nightly"


def retention_cutoff(days: Optional[int], today: Optional[date] = None) -> Optional[date]:
    """Date before which nightly content expires, None to keep it forever."""
    if days is None:
        return None
    if today is None:
        today = date.today()
    return today - timedelta(days=days)


def parse_date_dir(path: Path) -> date:
    try:
        return datetime.strptime(path.name, "%Y-%m-%d").date()
    except ValueError:
        raise StructuralError(f"Unexpected non-date directory {path}") from None


class GCStats:
    def __init__(self):
        self.deleted_files = 0
        self.removed_dirs = 0
        self.freed_bytes = 0

    def __repr__(self):
        return (f"GCStats(deleted_files={self.deleted_files}, "
                f"removed_dirs={self.removed_dirs}, freed_bytes={self.freed_bytes})")


class GarbageCollector:
    """
    Deletes artifacts under ``dist/<date>/`` that no produced manifest
    references.

    Unreferenced nightly files are only removed once their directory's date
    is before the cutoff; other unreferenced files are removed right away.
    A date directory left without any artifact is removed as a whole.
    """

    def __init__(self, mirror_dir: Path, referenced: Set, cutoff: Optional[date] = None,
                 dry_run: bool = False):
        self.mirror_dir = Path(mirror_dir)
        self.referenced = referenced
        self.cutoff = cutoff
        self.dry_run = dry_run

    def collect(self) -> GCStats:
        stats = GCStats()
        dist_dir = self.mirror_dir / "dist"
        if not dist_dir.is_dir():
            print(f"Nothing to collect, {dist_dir} does not exist", flush=True)
            return stats
        if self.cutoff is not None:
            print(f"Nightly before {self.cutoff} will be deleted", flush=True)

        for date_dir in sorted(dist_dir.iterdir()):
            if not date_dir.is_dir():
                # channel manifests at the top level
                continue
            self.collect_dir(date_dir, stats)

        print(f"Garbage collection {'(dry run) ' if self.dry_run else ''}finished: {stats}",
              flush=True)
        return stats

    def collect_dir(self, date_dir: Path, stats: GCStats):
        dir_date = parse_date_dir(date_dir)
        clear_expired = self.cutoff is not None and dir_date < self.cutoff

        preserve_dir = False
        for file in sorted(date_dir.iterdir()):
            if file.name.endswith(SIDECAR_SUFFIX):
                # removed together with the file it describes
                continue
            if not file.is_file():
                preserve_dir = True
                continue

            if self.should_delete(file, clear_expired):
                self.delete_file(file, stats)
            else:
                preserve_dir = True

        if not preserve_dir:
            print(f"No useful file left in dir {date_dir}, removing the entire directory.",
                  flush=True)
            if not self.dry_run:
                shutil.rmtree(date_dir)
            stats.removed_dirs += 1

    def should_delete(self, file: Path, clear_expired: bool) -> bool:
        if normalize_path(file) in self.referenced:
            return False
        if NIGHTLY_MARKER in file.name:
            return clear_expired
        # stable/beta content is referenced for as long as it is current
        return True

    def delete_file(self, file: Path, stats: GCStats):
        canonicalized = file.resolve()
        size = file.stat().st_size
        if self.dry_run:
            print(f"Dry run: Would delete file {canonicalized}[.sha256]", flush=True)
        else:
            print(f"Deleting file {canonicalized}[.sha256]", flush=True)
            file.unlink()
            sidecar_path(file).unlink(missing_ok=True)
        stats.deleted_files += 1
        stats.freed_bytes += size
