"""Tests for the JSONL event log."""

from posture_audit.eventlog import EventLog, new_run_id


def test_events_are_appended_in_order(event_log):
    event_log.log("AUDIT_STARTED", {"domain": "nsg"})
    event_log.state = "REPORTING"
    event_log.log("AUDIT_COMPLETED")

    entries = event_log.read()
    assert [e["event_type"] for e in entries] == ["AUDIT_STARTED", "AUDIT_COMPLETED"]
    assert entries[0]["state"] == "INITIALIZED"
    assert entries[1]["state"] == "REPORTING"
    assert entries[1]["data"] == {}
    assert all(e["run_id"] == "test" for e in entries)
    assert event_log.path.name == "run_test.jsonl"


def test_unserializable_values_are_stringified(event_log):
    event_log.log("SNAPSHOT", {"path": event_log.path})
    assert event_log.read()[0]["data"]["path"].endswith("run_test.jsonl")


def test_write_failure_is_reported_not_raised(tmp_path, capsys):
    blocker = tmp_path / "logs"
    blocker.write_text("x", encoding="utf-8")
    log = EventLog(logs_dir=blocker, run_id="r1")

    log.log("AUDIT_STARTED")

    assert "⚠ Failed to write log entry" in capsys.readouterr().out


def test_read_before_any_event(tmp_path):
    assert EventLog(logs_dir=tmp_path, run_id="empty").read() == []


def test_run_id_format():
    run_id = new_run_id()
    assert len(run_id) == 15
    assert run_id[8] == "_"
