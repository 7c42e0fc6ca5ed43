import sys

from tqdm import tqdm


class NullProgress:
    """Observer that ignores progress updates."""

    def __init__(self, name: str = "", total: int = 0):
        self.name = name
        self.total = total

    def on_progress(self, read: int, total: int):
        pass

    def close(self):
        pass


class TqdmProgress:
    """Byte progress bar for a single download."""

    def __init__(self, name: str, total: int):
        self.bar = tqdm(total=total, desc=name, unit='B', unit_scale=True,
                        unit_divisor=1024, leave=False, dynamic_ncols=True)

    def on_progress(self, read: int, total: int):
        if self.bar.total != total:
            self.bar.total = total
        self.bar.update(read - self.bar.n)

    def close(self):
        self.bar.close()


def default_progress_factory(enabled: bool = True):
    """Pick the progress observer: a bar on a terminal, nothing otherwise."""
    if enabled and sys.stdout.isatty():
        return TqdmProgress
    return NullProgress
