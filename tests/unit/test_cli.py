from __future__ import annotations

import pytest

from relaygraph.cli import build_parser, main


def test_cli_help_includes_subcommands(capsys: pytest.CaptureFixture[str]) -> None:
    rc = main([])
    assert rc == 2
    out = capsys.readouterr().out
    for cmd in ("profile", "follows", "thread", "zaps", "relay"):
        assert cmd in out


def test_cli_version(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--version"]) == 0
    assert "relaygraph v" in capsys.readouterr().out


def test_parser_thread_depth() -> None:
    args = build_parser().parse_args(["thread", "abc", "--depth", "2"])
    assert args.command == "thread"
    assert args.depth == 2


def test_missing_config_is_reported(tmp_path, capsys: pytest.CaptureFixture[str]) -> None:
    rc = main(["--config", str(tmp_path / "missing.yaml"), "relay"])
    assert rc == 2
    assert "config error" in capsys.readouterr().err


def test_relay_show_and_switch(tmp_path, capsys: pytest.CaptureFixture[str]) -> None:
    cfg = tmp_path / "c.yaml"
    cfg.write_text(f"data_dir: {tmp_path / 'data'}\nrelays:\n  urls: [wss://relay-a.test]\n")

    assert main(["--config", str(cfg), "relay"]) == 0
    assert capsys.readouterr().out.strip() == "wss://relay-a.test"

    assert main(["--config", str(cfg), "relay", "relay-b.test"]) == 0
    assert capsys.readouterr().out.strip() == "wss://relay-b.test"
    assert (tmp_path / "data" / "local_state.json").exists()

    assert main(["--config", str(cfg), "relay", "https://bad.test"]) == 2
