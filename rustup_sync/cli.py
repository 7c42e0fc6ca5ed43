import argparse
import sys
import time
import traceback
from pathlib import Path
from typing import List, Optional

from . import __version__, config
from .errors import SyncError
from .fetcher import ContentFetcher, RetryPolicy, apply_bind_address
from .garbage import GarbageCollector, retention_cutoff
from .manifest import ManifestSync
from .progress import default_progress_factory
from .selfupdate import SelfUpdateSync


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rustup-sync", description="Make a mirror for rustup.")
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-o", "--orig", type=Path, default=Path("./orig"),
                        help="Where to store original manifests")
    parser.add_argument("-m", "--mirror", type=Path, default=Path("./mirror"),
                        help="Where to store mirror files")
    parser.add_argument("-u", "--url", default=config.DEFAULT_MIRROR_URL,
                        help="Where the mirror is served")
    parser.add_argument("-g", "--gc", type=int, default=None, metavar="DAYS",
                        help="Keep how many days of nightly toolchains, e.g. 365")
    parser.add_argument("-c", "--channels", default=",".join(config.DEFAULT_CHANNELS),
                        help="Which release channel(s) to mirror, e.g. stable,nightly")
    parser.add_argument("-t", "--targets", default=None,
                        help="Which targets to mirror, e.g. "
                             "x86_64-unknown-linux-gnu,x86_64-apple-darwin")
    parser.add_argument("--targets-file", type=Path, default=None,
                        help="Read the targets to mirror from a file, one per line")
    parser.add_argument("-U", "--upstream-url", default=config.DEFAULT_UPSTREAM_URL,
                        help="Upstream url to sync from")
    parser.add_argument("-j", "--jobs", type=int, default=config.PARALLEL_DOWNLOADS,
                        help="Number of parallel artifact downloads")
    parser.add_argument("--no-gc", action="store_true",
                        help="Do not delete unreferenced files")
    parser.add_argument("--gc-dry-run", action="store_true",
                        help="Print files that would be deleted only")
    parser.add_argument("--no-progress", action="store_true",
                        help="Do not draw download progress bars")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        args.channels = config.split_list(args.channels)
        config.check_args("channels", args.channels)
        args.targets = config.resolve_targets(args.targets, args.targets_file)
    except (ValueError, OSError) as e:
        parser.error(str(e))
    if args.gc is not None and args.gc < 0:
        parser.error("--gc must not be negative")
    return args


def mirror_size(mirror_dir: Path) -> int:
    return sum(p.stat().st_size for p in mirror_dir.rglob('*') if p.is_file())


def report_size(mirror_dir: Path, size_file: str):
    total_size = mirror_size(mirror_dir)
    print(f"Total size of mirror: {total_size / (1024*1024):.2f} MB", flush=True)
    with open(size_file, "a") as fd:
        fd.write(f"\n{time.strftime('%Y-%m-%d %H:%M:%S')} {mirror_dir} size: +{total_size}")


def run_sync(args: argparse.Namespace, fetcher: Optional[ContentFetcher] = None):
    """Mirror every channel, then rustup itself, then collect garbage."""
    print(f"Mirroring channels: {args.channels}, {len(args.targets)} targets", flush=True)
    print(f"Upstream URL: {args.upstream_url}", flush=True)
    print(f"Mirror: {args.mirror} served at {args.url}", flush=True)

    args.orig.mkdir(parents=True, exist_ok=True)
    args.mirror.mkdir(parents=True, exist_ok=True)
    if fetcher is None:
        if config.BIND_ADDRESS:
            apply_bind_address(config.BIND_ADDRESS)
        fetcher = ContentFetcher(
            args.upstream_url, RetryPolicy(),
            progress_factory=default_progress_factory(not args.no_progress))

    start_time = time.time()
    referenced = set()
    seen_targets = set()
    manifest_sync = ManifestSync(fetcher, args.orig, args.mirror, args.url, args.targets,
                                 referenced=referenced, seen_targets=seen_targets,
                                 workers=args.jobs)
    for i, channel in enumerate(args.channels, 1):
        print(f"\n--- [{i}/{len(args.channels)}] Syncing channel {channel} ---", flush=True)
        manifest_sync.sync(channel)
    print(f"Artifacts downloaded: {manifest_sync.downloaded}, "
          f"already present: {manifest_sync.skipped}", flush=True)

    print("\n--- Syncing rustup ---", flush=True)
    self_update = SelfUpdateSync(fetcher, args.orig, args.mirror)
    self_update.sync(seen_targets)
    print(f"rustup-init binaries fetched: {self_update.fetched}, "
          f"unavailable: {self_update.failed}", flush=True)

    if args.no_gc:
        print("\nGarbage collection skipped (--no-gc specified).", flush=True)
    else:
        print(f"\n--- Garbage collection{' (dry run)' if args.gc_dry_run else ''} ---",
              flush=True)
        GarbageCollector(args.mirror, referenced, retention_cutoff(args.gc),
                         dry_run=args.gc_dry_run).collect()

    print(f"\nTotal sync time: {time.time() - start_time:.2f} seconds.", flush=True)
    if len(config.REPO_SIZE_FILE) > 0:
        report_size(args.mirror, config.REPO_SIZE_FILE)


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    try:
        run_sync(args)
    except SyncError as e:
        print(f"ERROR: {e}", flush=True)
        if config.DEBUG:
            traceback.print_exc()
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
