import hashlib
from pathlib import Path
from typing import Optional

SIDECAR_SUFFIX = ".sha256"


def file_sha256(path: Path) -> Optional[str]:
    """Return the lowercase hex SHA-256 of a file, or None if it does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    h = hashlib.sha256()
    with path.open("rb") as f:
        for block in iter(lambda: f.read(1024**2), b""):
            h.update(block)
    return h.hexdigest()


def sidecar_path(path: Path) -> Path:
    path = Path(path)
    return path.with_name(path.name + SIDECAR_SUFFIX)


def read_sidecar(path: Path) -> Optional[str]:
    """Read the digest stored next to an artifact, None if there is no sidecar."""
    try:
        return sidecar_path(path).read_text(encoding="utf-8").strip()
    except (FileNotFoundError, NotADirectoryError):
        return None


def write_sidecar(path: Path, digest: str) -> Path:
    dst = sidecar_path(path)
    dst.write_text(digest, encoding="utf-8")
    return dst


def signature_line(digest: str, filename: str) -> str:
    # same layout as sha256sum output, which is what upstream publishes
    return f"{digest}  {filename}"
