"""
Tests for Agent Stability

Organized by module:
- test_detectors.py, test_entropy.py: scoring signals and sustained tracking
- test_loop_detection.py: tool-call loops
- test_vectors.py, test_feedback.py: growth vector ranking and feedback
- test_governance.py, test_investigation.py: background-work budgets
- test_identity.py, test_heartbeat.py, test_memory.py: principles, tensions, decisions
- test_monitor.py, test_context.py: host hooks end to end
- test_config.py, test_persistence.py, test_cli.py: ambient stack
"""
