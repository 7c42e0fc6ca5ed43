import os
import re
from importlib import resources
from pathlib import Path
from typing import List, Optional

from . import __version__

MAX_RETRY = int(os.getenv('MAX_RETRY', '3'))
DOWNLOAD_TIMEOUT = int(os.getenv('DOWNLOAD_TIMEOUT', '120'))
CONNECT_TIMEOUT = 10
PARALLEL_DOWNLOADS = int(os.getenv('PARALLEL_DOWNLOADS', '1'))
REPO_SIZE_FILE = os.getenv('REPO_SIZE_FILE', '')
USER_AGENT = os.getenv('RUSTUP_SYNC_USER_AGENT', f"rustup-sync/{__version__}")
BIND_ADDRESS = os.getenv("BIND_ADDRESS", "")
DEBUG = os.getenv('RUSTUP_SYNC_DEBUG', '').lower() in ('true', '1', 'yes', 'y')

DEFAULT_UPSTREAM_URL = "https://static.rust-lang.org/"
DEFAULT_MIRROR_URL = "http://127.0.0.1:8000"
DEFAULT_CHANNELS = ["stable", "beta", "nightly"]
WILDCARD_TARGET = "*"

pattern_comment = re.compile(r"#.*$")


def check_args(prop: str, lst: List[str]):
    for s in lst:
        if len(s) == 0 or ' ' in s:
            raise ValueError(f"Invalid item in {prop}: {repr(s)}")


def split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',')]


def parse_list_text(text: str) -> List[str]:
    """Parse a list file: one item per line, "#" starts a comment."""
    ret = []
    for line in text.splitlines():
        item = pattern_comment.sub("", line).strip()
        if item:
            ret.append(item)
    return ret


def load_list_file(path: Path) -> List[str]:
    return parse_list_text(Path(path).read_text(encoding="utf-8"))


def default_targets() -> List[str]:
    text = resources.files(__package__).joinpath("targets.txt").read_text(encoding="utf-8")
    return parse_list_text(text)


def normalize_base_url(url: str) -> str:
    # relative paths are appended verbatim to the upstream base
    return url if url.endswith('/') else url + '/'


def resolve_targets(targets: Optional[str], targets_file: Optional[Path]) -> List[str]:
    if targets_file is not None:
        lst = load_list_file(targets_file)
    elif targets:
        lst = split_list(targets)
    else:
        lst = default_targets()
    check_args("targets", lst)
    return lst
