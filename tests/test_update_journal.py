import json
import logging

import pytest

import update_journal
from errors import IntegrityError
from update_journal import COMMITTED, FAILED, UpdateJournal


@pytest.fixture
def journal_path(tmp_path):
    return str(tmp_path / "journal.json")


def test_records_persist_across_instances(journal_path):
    journal = UpdateJournal(journal_path)
    journal.record(COMMITTED, target="core.py", backup="core.py.backup.1")
    try:
        raise IntegrityError("missing markers", missing=["main_entry"])
    except IntegrityError as e:
        journal.record(FAILED, e, target="core.py")

    reloaded = UpdateJournal(journal_path)
    assert [e["outcome"] for e in reloaded.entries] == [COMMITTED, FAILED]
    failed = reloaded.entries[-1]
    assert failed["kind"] == "integrity"
    assert failed["message"] == "missing markers"
    assert "Traceback" in failed["trace"]
    assert reloaded.entries[0]["backup"] == "core.py.backup.1"


def test_failures_newest_first(journal_path):
    journal = UpdateJournal(journal_path)
    journal.record(FAILED, RuntimeError("first"))
    journal.record(COMMITTED)
    journal.record(FAILED, RuntimeError("second"))
    assert [e["message"] for e in journal.failures()] == ["second", "first"]
    assert len(journal.recent(limit=2)) == 2


def test_corrupted_journal_is_moved_aside(journal_path):
    with open(journal_path, "w", encoding="utf-8") as f:
        f.write("{not json")

    journal = UpdateJournal(journal_path)
    assert journal.entries == []
    with open(journal_path + ".bak", encoding="utf-8") as f:
        assert f.read() == "{not json"
    with open(journal_path, encoding="utf-8") as f:
        assert json.load(f) == []



def test_non_utf8_journal_is_moved_aside(journal_path):
    with open(journal_path, "wb") as f:
        f.write(b"\xff\xfe\x00garbage")

    journal = UpdateJournal(journal_path)
    assert journal.entries == []
    with open(journal_path + ".bak", "rb") as f:
        assert f.read() == b"\xff\xfe\x00garbage"

    journal.record(COMMITTED)
    assert len(UpdateJournal(journal_path).entries) == 1


def test_corrupted_journal_that_cannot_be_moved_starts_empty(journal_path, monkeypatch):
    with open(journal_path, "w", encoding="utf-8") as f:
        f.write("{not json")

    def refuse(src, dst):
        raise PermissionError("read-only directory")

    monkeypatch.setattr(update_journal.os, "replace", refuse)
    journal = UpdateJournal(journal_path)
    assert journal.entries == []
    with open(journal_path, encoding="utf-8") as f:
        assert f.read() == "{not json"


def test_log_messages_carry_no_color_codes(journal_path, caplog):
    journal = UpdateJournal(journal_path)
    with caplog.at_level(logging.INFO, logger="update_journal"):
        journal.record(COMMITTED)
        journal.record(FAILED, RuntimeError("boom"))
    assert caplog.messages == ["[JOURNAL] Update committed", "[JOURNAL] failed: RuntimeError"]
    assert all("\x1b[" not in m for m in caplog.messages)
