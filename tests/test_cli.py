from pathlib import Path

import pytest

from conftest import LINUX, MIRROR_URL, WINDOWS, standard_pkgs
from rustup_sync import cli, config
from rustup_sync.errors import IntegrityError


def test_parse_args_defaults():
    args = cli.parse_args([])
    assert args.orig == Path("./orig")
    assert args.mirror == Path("./mirror")
    assert args.url == config.DEFAULT_MIRROR_URL
    assert args.upstream_url == config.DEFAULT_UPSTREAM_URL
    assert args.channels == ["stable", "beta", "nightly"]
    assert args.targets == config.default_targets()
    assert args.gc is None
    assert not args.no_gc


def test_parse_args_lists():
    args = cli.parse_args(["-c", "stable,nightly", "-t", f"{LINUX},{WINDOWS}", "-g", "30"])
    assert args.channels == ["stable", "nightly"]
    assert args.targets == [LINUX, WINDOWS]
    assert args.gc == 30


@pytest.mark.parametrize("argv", [["-c", "stable,,nightly"], ["-g", "-1"],
                                  ["--targets-file", "/nonexistent/targets.txt"]])
def test_parse_args_rejects(argv):
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(argv)
    assert exc_info.value.code == 2


def run(tmp_path, fetcher, *extra):
    args = cli.parse_args(["-o", str(tmp_path / "orig"), "-m", str(tmp_path / "mirror"),
                           "-u", MIRROR_URL, "-t", f"{LINUX},{WINDOWS}", "--no-progress",
                           *extra])
    cli.run_sync(args, fetcher=fetcher)
    return tmp_path / "mirror"


def test_run_sync_end_to_end(tmp_path, upstream, fetcher):
    upstream.channel("stable", "2024-05-02", standard_pkgs(upstream, "2024-05-02"))
    upstream.channel("nightly", "2024-05-30",
                     standard_pkgs(upstream, "2024-05-30", channel="nightly"))
    upstream.rustup(targets=[LINUX])

    mirror = tmp_path / "mirror"
    # a stable release that fell out of the manifest
    stale = mirror / "dist" / "2024-03-21" / f"rustc-1.77.0-{LINUX}.tar.gz"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"old")

    run(tmp_path, fetcher, "-c", "stable,nightly")

    assert (mirror / "dist" / "channel-rust-stable.toml").is_file()
    assert (mirror / "dist" / "channel-rust-nightly.toml.sha256").is_file()
    assert (mirror / "dist" / "2024-05-02" / f"rustc-1.78.0-{LINUX}.tar.xz").is_file()
    assert (mirror / "dist" / "2024-05-30" / f"rustc-nightly-{LINUX}.tar.gz").is_file()
    assert (mirror / "rustup" / "release-stable.toml").is_file()
    assert (mirror / "rustup" / "dist" / LINUX / "rustup-init").is_file()
    assert not stale.parent.exists()


def test_run_sync_without_gc(tmp_path, upstream, fetcher):
    upstream.channel("stable", "2024-05-02", standard_pkgs(upstream, "2024-05-02"))
    upstream.rustup(targets=[LINUX])
    stale = tmp_path / "mirror" / "dist" / "2024-03-21" / f"rustc-1.77.0-{LINUX}.tar.gz"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"old")

    run(tmp_path, fetcher, "-c", "stable", "--no-gc")
    assert stale.is_file()


def test_main_exits_non_zero_on_fatal_error(monkeypatch, capsys):
    def fail(args):
        raise IntegrityError("Signature mismatch for channel stable")

    monkeypatch.setattr(cli, "run_sync", fail)
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["-c", "stable"])
    assert exc_info.value.code == 1
    assert "ERROR: Signature mismatch" in capsys.readouterr().out


def test_main_exits_zero_on_success(monkeypatch):
    monkeypatch.setattr(cli, "run_sync", lambda args: None)
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["-c", "stable"])
    assert exc_info.value.code == 0


def test_report_size(tmp_path):
    mirror = tmp_path / "mirror"
    (mirror / "dist").mkdir(parents=True)
    (mirror / "dist" / "a").write_bytes(b"12345")
    size_file = tmp_path / "size.log"

    cli.report_size(mirror, str(size_file))
    assert size_file.read_text().endswith(f"{mirror} size: +5")
