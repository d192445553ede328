"""
Tests for Loop Detection

Verifies:
1. consecutive_tool after five calls to the same tool
2. file_reread on the third read of a path
3. output_repetition on three identical non-empty outputs
4. Exempt tools are recorded but never flagged
"""

from agent_stability.config import LoopDetectionConfig
from agent_stability.loop_detection import (
    LoopDetector,
    LoopType,
    djb2_hash,
    normalize_output,
)


def test_consecutive_tool_and_window():
    """Five 'search' calls trigger; a different tool right after does not."""
    detector = LoopDetector()
    for i in range(4):
        assert not detector.record_and_check("search", f"result {i}").loop_detected

    check = detector.record_and_check("search", "result 4")
    assert check.loop_detected
    assert check.type == LoopType.CONSECUTIVE_TOOL
    assert check.message == "You've called search 5 consecutive times. Step back and reassess your approach."

    assert not detector.record_and_check("write", "saved").loop_detected
    print("  PASS: consecutive_tool_and_window")


def test_file_reread_on_third_read():
    """The same path read three times is flagged."""
    detector = LoopDetector()
    assert not detector.record_and_check("read_file", "v1", {"file_path": "/a.txt"}).loop_detected
    assert not detector.record_and_check("read_file", "v2", {"path": "/a.txt"}).loop_detected

    check = detector.record_and_check("read_file", "v3", {"filePath": "/a.txt"})
    assert check.type == LoopType.FILE_REREAD
    assert "/a.txt 3 times" in check.message
    print("  PASS: file_reread_on_third_read")


def test_non_read_tool_does_not_count_reads():
    """Only recognized read tools increment the per-path counter."""
    detector = LoopDetector()
    for i in range(3):
        detector.record_and_check(f"edit{i}", f"ok {i}", {"file_path": "/a.txt"})
    assert detector.file_read_counts == {}
    print("  PASS: non_read_tool_does_not_count_reads")


def test_output_repetition():
    """Three different tools returning the same output."""
    detector = LoopDetector()
    detector.record_and_check("a", "same")
    detector.record_and_check("b", "same")
    check = detector.record_and_check("c", "same")
    assert check.type == LoopType.OUTPUT_REPETITION
    assert check.message.startswith("The last 3 tool calls produced identical output")
    print("  PASS: output_repetition")


def test_empty_output_is_not_a_signal():
    """Empty outputs never count as repetition."""
    detector = LoopDetector()
    for tool in ("a", "b", "c", "d"):
        assert not detector.record_and_check(tool, "").loop_detected
    assert all(r.output_hash == 0 for r in detector.tool_history)
    print("  PASS: empty_output_is_not_a_signal")


def test_exempt_tool_never_triggers():
    """Exempt tools skip checks but are still recorded."""
    detector = LoopDetector(LoopDetectionConfig(exempt_tools=["search", "read_file"]))
    for _ in range(10):
        assert not detector.record_and_check("search", "same").loop_detected
    for _ in range(4):
        assert not detector.record_and_check("read_file", "same", {"path": "/a"}).loop_detected

    assert len(detector.tool_history) == 14
    assert detector.file_read_counts["/a"] == 4
    print("  PASS: exempt_tool_never_triggers")


def test_history_is_bounded_and_resettable():
    """At most twenty calls are kept; reset clears everything."""
    detector = LoopDetector()
    for i in range(25):
        detector.record_and_check(f"tool{i % 2}", f"out {i}", {"path": "/x"} if i % 2 else None)
    assert len(detector.tool_history) == 20

    detector.reset()
    assert len(detector.tool_history) == 0
    assert detector.file_read_counts == {}
    print("  PASS: history_is_bounded_and_resettable")


def test_structured_output_is_normalized():
    """Dict outputs hash the same regardless of key order."""
    assert normalize_output({"b": 1, "a": 2}) == normalize_output({"a": 2, "b": 1})
    assert normalize_output(None) == ""

    detector = LoopDetector()
    detector.record_and_check("a", {"b": 1, "a": 2})
    detector.record_and_check("b", {"a": 2, "b": 1})
    assert detector.record_and_check("c", {"a": 2, "b": 1}).type == LoopType.OUTPUT_REPETITION
    print("  PASS: structured_output_is_normalized")


def test_djb2_hash():
    """Classic DJB2 values, signed 32-bit."""
    assert djb2_hash("") == 5381
    assert djb2_hash("a") == 177670
    long_hash = djb2_hash("x" * 100)
    assert -2**31 <= long_hash < 2**31
    print("  PASS: djb2_hash")


def test_loop_check_to_dict():
    """LoopCheck serializes the loop type by value."""
    detector = LoopDetector(LoopDetectionConfig(consecutive_tool_threshold=2))
    detector.record_and_check("grep", "1")
    check = detector.record_and_check("grep", "2")
    assert check.to_dict() == {
        "loop_detected": True,
        "type": "consecutive_tool",
        "message": "You've called grep 2 consecutive times. Step back and reassess your approach.",
    }
    print("  PASS: loop_check_to_dict")
