#!/usr/bin/env python3
"""
Agent Stability CLI

Inspect the stability monitor's persisted state.

Commands:
    agent-stability status                     Entropy, sustained state, principles
    agent-stability observations [-n 20]       Recent scored turns with sparkline
    agent-stability vectors                    Growth vectors and candidates
    agent-stability feedback [--id gv-001]     Feedback summary (or one vector)
    agent-stability validate <id> [--note ..]  Promote/validate a growth vector
    agent-stability lifecycle                  Prune candidates, cap vectors
    agent-stability score <user> <response>    Score one exchange (no state written)

Global options:
    --config PATH      JSON config (default: $AGENT_STABILITY_CONFIG)
    --data-dir PATH    Override data directory
    --workspace PATH   Override agent workspace
    --agent ID         Agent to inspect (default: main)
    --json             Print raw JSON instead of tables
    -v                 Debug logging
"""

import argparse
import json
import logging
import sys

from rich.console import Console

from agent_stability.config import ConfigError, load_config
from agent_stability.detectors import TextSignalDetectors
from agent_stability.entropy import EntropyScorer, shannon_entropy
from agent_stability.monitor import StabilityPlugin
from agent_stability import report

console = Console()


def get_plugin(args) -> StabilityPlugin:
    config = load_config(args.config)
    if args.workspace:
        config.workspace = args.workspace
    return StabilityPlugin(config, data_dir=args.data_dir)


def emit(args, payload, renderable=None):
    if args.json or renderable is None:
        print(json.dumps(payload, indent=2, default=str))
    else:
        console.print(renderable)


# =============================================================================
# Commands
# =============================================================================

def cmd_status(args):
    plugin = get_plugin(args)
    state = plugin.get_state(args.agent)
    emit(args, state, report.render_status(state))
    return 0


def cmd_observations(args):
    plugin = get_plugin(args)
    records = plugin.agent(args.agent).scorer.read_observations(args.limit)
    emit(args, records, report.render_observations(records))
    return 0


def cmd_vectors(args):
    plugin = get_plugin(args)
    data = plugin.get_growth_vectors(args.agent)
    emit(args, data, report.render_vectors(data))
    return 0


def cmd_feedback(args):
    plugin = get_plugin(args)
    result = plugin.get_vector_feedback(args.id, args.agent)
    if args.id:
        emit(args, result)
        return 0 if result["success"] else 1
    emit(args, result, report.render_feedback(result["vectors"]))
    return 0


def cmd_validate(args):
    plugin = get_plugin(args)
    result = plugin.validate_vector(args.id, args.note, args.agent)
    if args.json:
        emit(args, result)
    elif result["success"]:
        console.print(f"[green]✓[/] {result['action']} {result['id']}")
    else:
        console.print(f"[red]✗[/] {result['error']}")
    return 0 if result["success"] else 1


def cmd_lifecycle(args):
    plugin = get_plugin(args)
    result = plugin.agent(args.agent).vector_store.run_lifecycle()
    if args.json:
        emit(args, result)
    else:
        console.print(f"Pruned {result['pruned']} candidates, archived {result['archived']} vectors")
    return 0


def cmd_score(args):
    config = load_config(args.config)
    detectors = TextSignalDetectors(config.detectors)
    scorer = EntropyScorer(config.entropy)
    result = detectors.run_all(args.user, args.response)
    score = scorer.calculate_entropy_score(args.user, args.response, result)
    shannon = shannon_entropy(args.response)
    payload = {"score": score, "detectors": result.to_dict(), "shannon_entropy": shannon}
    emit(args, payload, report.render_score(score, result.to_dict(), shannon))
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="agent-stability",
        description="Agent stability monitor: entropy, loops, growth vectors",
    )
    parser.add_argument("--config", "-c", help="JSON config file")
    parser.add_argument("--data-dir", help="Data directory override")
    parser.add_argument("--workspace", help="Agent workspace override")
    parser.add_argument("--agent", "-a", default="main", help="Agent id (default: main)")
    parser.add_argument("--json", action="store_true", help="Print JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_status = subparsers.add_parser("status", help="Show current stability state")
    p_status.set_defaults(func=cmd_status)

    p_obs = subparsers.add_parser("observations", help="Show recent observations")
    p_obs.add_argument("--limit", "-n", type=int, default=20, help="Number of records")
    p_obs.set_defaults(func=cmd_observations)

    p_vectors = subparsers.add_parser("vectors", help="List growth vectors and candidates")
    p_vectors.set_defaults(func=cmd_vectors)

    p_feedback = subparsers.add_parser("feedback", help="Show growth vector feedback")
    p_feedback.add_argument("--id", help="Single vector id")
    p_feedback.set_defaults(func=cmd_feedback)

    p_validate = subparsers.add_parser("validate", help="Promote or validate a growth vector")
    p_validate.add_argument("id", help="Vector or candidate id")
    p_validate.add_argument("--note", default="", help="Validation note")
    p_validate.set_defaults(func=cmd_validate)

    p_lifecycle = subparsers.add_parser("lifecycle", help="Prune old candidates and cap vectors")
    p_lifecycle.set_defaults(func=cmd_lifecycle)

    p_score = subparsers.add_parser("score", help="Score a single exchange")
    p_score.add_argument("user", help="User message")
    p_score.add_argument("response", help="Response text")
    p_score.set_defaults(func=cmd_score)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except ConfigError as e:
        console.print(f"[red]Config error:[/] {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
