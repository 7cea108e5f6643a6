"""devicetrust CLI — inspect scoring and decay behaviour from the shell.

Usage:
    python -m devicetrust.cli score --vpn --bot suspicious --uptime 120
    python -m devicetrust.cli evaluate --score 100 --elapsed 10 --role secondary
    python -m devicetrust.cli --profile accelerated decay-table --max 6
    python -m devicetrust.cli profiles

Environment (also read from a .env file):
    DEVICETRUST_CONFIG_DIR     config directory (default: config/)
    DEVICETRUST_DECAY_PROFILE  decay profile name (default: from config)
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from dotenv import load_dotenv

from devicetrust.models.decay import verdict_to_dict
from devicetrust.models.trust import BotClassification, DeviceRole, TrustSignals
from devicetrust.policy.resolver import PolicyResolver
from devicetrust.trust.decay import DecayEngine
from devicetrust.trust.scorer import TrustScorer


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"


def _resolver(args: argparse.Namespace) -> PolicyResolver:
    return PolicyResolver.from_config_dir(args.config)


def _decay_engine(args: argparse.Namespace) -> DecayEngine:
    return DecayEngine(_resolver(args), args.profile)


def cmd_score(args: argparse.Namespace) -> int:
    resolver = _resolver(args)
    scorer = TrustScorer(resolver)
    signals = TrustSignals.from_raw(
        jailbreak_detected=args.jailbreak,
        vpn_active=args.vpn,
        bot_classification=args.bot,
        inside_trusted_zone=args.trusted_zone,
        uptime_seconds=args.uptime,
        recent_restart_seconds=resolver.recent_restart_seconds(),
    )
    breakdown = scorer.explain(signals)
    print(json.dumps({
        "score": breakdown.score,
        "raw_score": breakdown.raw_score,
        "status": scorer.classify(breakdown.score).value,
        "deductions": {d.factor: d.points for d in breakdown.deductions},
    }, indent=2))
    return 0


def cmd_evaluate(args: argparse.Namespace) -> int:
    if not 0 <= args.score <= 100:
        print("Failed: --score must be in [0, 100]", file=sys.stderr)
        return 1
    if args.consecutive < 0:
        print("Failed: --consecutive must be >= 0", file=sys.stderr)
        return 1

    engine = _decay_engine(args)
    now = datetime.now(timezone.utc)
    last_activity = now - timedelta(seconds=args.elapsed * engine.profile.period_seconds)
    result = engine.evaluate(
        device_id=args.device_id,
        previous_score=args.score,
        last_activity_utc=last_activity,
        consecutive_active_periods=args.consecutive,
        device_role=DeviceRole(args.role),
        now=now,
    )
    print(json.dumps(verdict_to_dict(result), indent=2))
    return 0


def cmd_decay_table(args: argparse.Namespace) -> int:
    engine = _decay_engine(args)
    unit = engine.profile.period_name
    for periods, total in engine.schedule(args.max):
        print(f"{periods:>4} {unit}(s)  decay {total:>4}")
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    resolver = _resolver(args)
    summary = {}
    for name in resolver.decay_profile_names():
        profile = resolver.decay_profile(name)
        summary[name] = {
            "period_seconds": profile.period_seconds,
            "critical_threshold": profile.critical_threshold,
            "warning_threshold": profile.warning_threshold,
            "recovery_reset_threshold": profile.recovery_reset_threshold,
            "default": name == resolver.default_decay_profile,
        }
    print(json.dumps(summary, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devicetrust",
        description="devicetrust — trust evaluation engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.environ.get("DEVICETRUST_CONFIG_DIR", DEFAULT_CONFIG)),
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--profile",
        default=os.environ.get("DEVICETRUST_DECAY_PROFILE"),
        help="Decay profile name (default: from config)",
    )
    sub = parser.add_subparsers(dest="command")

    # score
    p_score = sub.add_parser("score", help="Score a signal bundle")
    p_score.add_argument("--jailbreak", action="store_true", help="Jailbreak detected")
    p_score.add_argument("--vpn", action="store_true", help="VPN active")
    p_score.add_argument(
        "--bot", default=BotClassification.HUMAN.value,
        choices=[b.value for b in BotClassification],
        help="Bot classification (default: human)",
    )
    p_score.add_argument("--trusted-zone", action="store_true", help="Inside a trusted zone")
    p_score.add_argument("--uptime", type=float, help="Device uptime in seconds")

    # evaluate
    p_eval = sub.add_parser("evaluate", help="Evaluate one decay tick")
    p_eval.add_argument("--score", type=int, required=True, help="Previous score (0-100)")
    p_eval.add_argument("--elapsed", type=int, required=True, help="Periods since last activity")
    p_eval.add_argument("--consecutive", type=int, default=0, help="Consecutive active periods")
    p_eval.add_argument(
        "--role", default=DeviceRole.SECONDARY.value,
        choices=[r.value for r in DeviceRole],
        help="Device role (default: secondary)",
    )
    p_eval.add_argument("--device-id", default="device", help="Device ID")

    # decay-table
    p_table = sub.add_parser("decay-table", help="Print the cumulative decay schedule")
    p_table.add_argument("--max", type=int, default=20, help="Last period to show (default: 20)")

    # profiles
    sub.add_parser("profiles", help="List decay profiles")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "score": cmd_score,
        "evaluate": cmd_evaluate,
        "decay-table": cmd_decay_table,
        "profiles": cmd_profiles,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except KeyError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
