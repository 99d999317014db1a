import json

import pytest

from src import requeue_failed as cli


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda component: None)


def _report_from_stdout(out: str) -> dict:
    return json.loads(out[out.index("{\n"):])


def test_cli_defaults_to_dry_run(make_store, capsys):
    store = make_store(3)

    exit_code = cli.main([], store=store)

    out = capsys.readouterr().out
    assert exit_code == 0
    assert out.startswith("NOTICE: running in dry-run mode")
    assert store.move_calls == []
    payload = _report_from_stdout(out)
    assert payload["report"]["dry_run"] is True
    assert payload["report"]["total_matched"] == 3
    assert payload["failed_log_snapshot"]["total"] == 3


def test_cli_moves_records_when_dry_run_disabled(make_store, capsys):
    store = make_store(5)

    exit_code = cli.main(["--dryrun=0", "--batch=2", "--errortype=401"], store=store)

    out = capsys.readouterr().out
    assert exit_code == 0
    assert sorted(store.primary) == [1, 3, 5]
    assert "Applied scope for error_type [401] ..." in out
    assert "Total of 3 events successfully sent for reprocessing." in out


def test_cli_exits_with_distinct_code_for_inverted_dates(make_store, capsys):
    store = make_store(5)

    exit_code = cli.main(["--datefrom=1000", "--dateto=500", "--dryrun=0"], store=store)

    out = capsys.readouterr().out
    assert exit_code == 3
    assert store.fetch_calls == []
    payload = _report_from_stdout(out)
    assert payload["report"]["status"] == "invalid_scope"
    assert "failed_log_snapshot" not in payload


def test_cli_rejects_non_numeric_error_types(make_store, capsys):
    store = make_store(1)

    exit_code = cli.main(["--errortype=401,unauthorized"], store=store)

    assert exit_code == 2
    assert store.fetch_calls == []
    assert "Invalid parameters" in capsys.readouterr().err


def test_cli_rejects_unknown_options(make_store):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--bogus=1"], store=make_store(1))

    assert excinfo.value.code == 2


def test_cli_writes_json_report(make_store, tmp_path, capsys):
    output = tmp_path / "report.json"

    exit_code = cli.main(["--dryrun=0", f"--output-json={output}"], store=make_store(2))

    capsys.readouterr()
    assert exit_code == 0
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["report"]["total_succeeded"] == 2
    assert payload["report"]["trigger"] == "cli"


def test_cli_exits_with_store_error_when_database_is_unconfigured(unconfigured_store, monkeypatch):
    monkeypatch.setattr(cli, "close_pool", lambda: None)

    exit_code = cli.main(["--dryrun=0"], store=unconfigured_store)

    assert exit_code == 1
