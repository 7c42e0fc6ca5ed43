import time
from pathlib import Path
from typing import Callable, Optional

import requests

from . import config
from .errors import HTTPStatusError, LengthUnknownError, NetworkError
from .progress import NullProgress

CHUNK_SIZE = 64 * 1024


class _TransientResponse(Exception):
    """Response that is worth retrying: a 5xx status or a truncated body."""


TRANSIENT_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
    _TransientResponse,
)


def apply_bind_address(address: str):
    """Make every outgoing connection use the given local source address."""
    # https://stackoverflow.com/a/70772914
    import urllib3
    real_create_conn = urllib3.util.connection.create_connection

    def set_src_addr(addr, timeout, *args, **kw):
        kw['source_address'] = (address, 0)
        return real_create_conn(addr, timeout, *args, **kw)

    urllib3.util.connection.create_connection = set_src_addr


def new_session(user_agent: str = config.USER_AGENT) -> requests.Session:
    session = requests.Session()
    session.headers['User-Agent'] = user_agent
    # content-length must describe the bytes that end up on disk
    session.headers['Accept-Encoding'] = 'identity'
    return session


class RetryPolicy:
    """How often and how patiently a failed operation is retried."""

    def __init__(self, max_attempts: Optional[int] = None, backoff: float = 1.0,
                 sleep: Callable[[float], None] = time.sleep):
        if max_attempts is None:
            max_attempts = config.MAX_RETRY
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.sleep = sleep

    def delay(self, attempt: int) -> float:
        return self.backoff * 2 ** (attempt - 1)

    def wait(self, attempt: int):
        delay = self.delay(attempt)
        if delay > 0:
            self.sleep(delay)


class ContentFetcher:
    """
    Downloads upstream files to disk, byte-exact or not at all.

    A failed attempt (connection error, 5xx, broken or short body) restarts
    the whole request with the destination rewound to offset zero, up to
    the retry policy's attempt budget.
    """

    def __init__(self, upstream_url: str, retry_policy: Optional[RetryPolicy] = None,
                 session: Optional[requests.Session] = None,
                 progress_factory=None, timeout=None):
        self.upstream_url = config.normalize_base_url(upstream_url)
        self.retry = retry_policy or RetryPolicy()
        self.session = session or new_session()
        self.progress_factory = progress_factory or NullProgress
        self.timeout = timeout or (config.CONNECT_TIMEOUT, config.DOWNLOAD_TIMEOUT)

    def url_for(self, path: str) -> str:
        return self.upstream_url + path

    def download(self, path: str, dest_dir: Path) -> Path:
        """Fetch ``upstream_url + path`` into ``dest_dir / path``."""
        url = self.url_for(path)
        dst_file = Path(dest_dir) / path
        dst_file.parent.mkdir(parents=True, exist_ok=True)

        with dst_file.open('wb') as f:
            attempt = 0
            while True:
                attempt += 1
                try:
                    self._fetch_once(url, path, f, attempt)
                    break
                except TRANSIENT_ERRORS as e:
                    if attempt >= self.retry.max_attempts:
                        raise NetworkError(
                            url, f"Failed to download after {attempt} attempts: {e}",
                            attempt) from e
                    print(f"Attempt {attempt} failed: {e}. Retrying...", flush=True)
                    f.seek(0)
                    f.truncate()
                    self.retry.wait(attempt)

        return dst_file

    def _fetch_once(self, url: str, path: str, f, attempt: int):
        with self.session.get(url, stream=True, timeout=self.timeout) as r:
            if r.status_code >= 500:
                raise _TransientResponse(f"HTTP {r.status_code} for {url}")
            if r.status_code >= 400:
                raise HTTPStatusError(url, r.status_code, attempt)

            try:
                total = int(r.headers['content-length'])
            except (KeyError, ValueError):
                raise LengthUnknownError(url, "Not found: no content length", attempt)

            print(f"File /{path} downloading", flush=True)
            progress = self.progress_factory(path, total)
            read = 0
            try:
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    f.write(chunk)
                    read += len(chunk)
                    progress.on_progress(read, total)
            finally:
                progress.close()

            if read != total:
                raise _TransientResponse(
                    f"Read {read} bytes of {total} for {url}")
            print(f"File /{path} downloaded", flush=True)
