"""
Tests for JSON state files and JSONL logs.
"""

from agent_stability.persistence import JsonlLog, ensure_dir, load_json, save_json


def test_load_json_defaults(tmp_path):
    """Missing or corrupt files return a fresh copy of the default."""
    default = {"items": []}
    loaded = load_json(tmp_path / "missing.json", default=default)
    loaded["items"].append(1)
    assert default == {"items": []}

    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{nope")
    assert load_json(corrupt, default=[]) == []
    print("  PASS: load_json_defaults")


def test_save_json(tmp_path):
    """Writes create parent directories; failures return False."""
    path = tmp_path / "nested" / "state.json"
    assert save_json(path, {"a": 1})
    assert load_json(path) == {"a": 1}

    blocker = tmp_path / "file"
    blocker.write_text("x")
    assert not save_json(blocker / "state.json", {"a": 1})
    print("  PASS: save_json")


def test_jsonl_append_and_read(tmp_path):
    """Records round-trip; malformed lines are skipped; limit keeps the tail."""
    log = JsonlLog(tmp_path / "log.jsonl", capacity=100)
    for i in range(4):
        assert log.append({"i": i})
    with open(log.path, "a", encoding="utf-8") as f:
        f.write("not json\n")

    assert [r["i"] for r in log.read()] == [0, 1, 2, 3]
    assert [r["i"] for r in log.read(limit=3)] == [2, 3]
    assert log.count() == 5
    assert JsonlLog(tmp_path / "none.jsonl").read() == []
    print("  PASS: jsonl_append_and_read")


def test_jsonl_prune(tmp_path):
    """Over capacity the log keeps its newest half."""
    log = JsonlLog(tmp_path / "log.jsonl", capacity=4)
    for i in range(4):
        log.append({"i": i})
    assert log.count() == 4

    log.append({"i": 4})
    assert [r["i"] for r in log.read()] == [3, 4]
    print("  PASS: jsonl_prune")


def test_ensure_dir(tmp_path):
    path = ensure_dir(tmp_path / "a" / "b")
    assert path.is_dir()
    print("  PASS: ensure_dir")
