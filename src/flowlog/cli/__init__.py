"""
flowlog CLI - operator commands for the logging pipeline.

Commands:
- flowlog info: Show version, effective configuration, memory pressure and tier
- flowlog sessions list: List session files
- flowlog sessions clean: Delete session files past retention
- flowlog demo: Walk through dual-stream output under simulated memory pressure
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from typing import Any

from flowlog import __version__
from flowlog.config import FlowlogConfig, load_config
from flowlog.utils.errors import ConfigurationError


def _load(args: argparse.Namespace) -> FlowlogConfig:
    config = load_config(getattr(args, "config", None))
    base_dir = getattr(args, "base_dir", None)
    if base_dir:
        config.session.base_dir = base_dir
    return config


def cmd_info(args: argparse.Namespace) -> int:
    """Show version, configuration, and current memory pressure."""
    from flowlog.observability.emergency import select_tier
    from flowlog.observability.memory import MemoryProbe

    config = _load(args)
    tiers = config.emergency.to_tiers()
    probe = MemoryProbe(config.logging.memory_ceiling_bytes)
    pressure = probe.pressure()
    tier = select_tier(tiers, pressure)

    if args.json:
        payload: dict[str, Any] = {
            "version": __version__,
            "config": config.model_dump(),
            "memory_pressure": pressure,
            "tier": tier.name,
        }
        print(json.dumps(payload, indent=2))
        return 0

    print("=" * 60)
    print("flowlog - Adaptive Observability Pipeline")
    print("=" * 60)
    print()
    print(f"Version:     {__version__}")
    print(
        f"Python:      {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    )
    print()

    print("Logging:")
    print(f"  Level:        {config.logging.level}")
    print(f"  Format:       {config.logging.format}")
    print(f"  Destination:  {config.logging.destination}")
    if config.logging.file_path:
        print(f"  File:         {config.logging.file_path}")
    print()

    print("Sessions:")
    print(f"  Base dir:     {config.session.base_dir}")
    print(f"  Retention:    {config.session.retention_days:g} days")
    print()

    print("Emergency tiers:")
    for row in tiers:
        features = ", ".join(sorted(row.enabled_features))
        print(
            f"  {row.name:<9} >= {row.pressure_threshold:.2f}  "
            f"batch={row.batch_size:<3} flush={row.flush_interval_ms}ms  [{features}]"
        )
    print()

    print("Memory:")
    print(f"  Pressure:     {pressure:.1%} of {config.logging.memory_ceiling_bytes:,} bytes")
    print(f"  Tier:         {tier.name}")
    print()
    print("=" * 60)
    return 0


def cmd_sessions_list(args: argparse.Namespace) -> int:
    """List session files, newest last."""
    from flowlog.observability.session import iter_session_files

    config = _load(args)
    files = sorted(iter_session_files(config.session.base_dir, args.command_name), key=lambda f: f.modified)
    if not files:
        print(f"No session files under {config.session.base_dir}")
        return 0
    for info in files:
        modified = datetime.fromtimestamp(info.modified).strftime("%Y-%m-%d %H:%M:%S")
        print(f"{modified}  {info.size_bytes:>10,}  {info.command:<16} {info.path}")
    print(f"\n{len(files)} session file(s)")
    return 0


def cmd_sessions_clean(args: argparse.Namespace) -> int:
    """Delete session files older than the retention window."""
    from flowlog.observability.session import cleanup_old_sessions

    config = _load(args)
    max_age = args.max_age_days if args.max_age_days is not None else config.session.retention_days
    deleted = cleanup_old_sessions(config.session.base_dir, max_age)
    print(f"Removed {deleted} session file(s) older than {max_age:g} days")
    return 0


def cmd_demo(args: argparse.Namespace) -> int:
    """Drive an output manager through a sequence of simulated pressures."""
    from flowlog.observability.factory import ComponentLoggerFactory
    from flowlog.observability.memory import FixedPressureProbe
    from flowlog.observability.output_manager import OperationResult, ProgressInfo

    config = _load(args)
    probe = FixedPressureProbe(0.0)
    factory = ComponentLoggerFactory(config, pressure_probe=probe)
    try:
        output = factory.get_output_manager(args.command_name)
        output.user_info(f"Session log: {output.get_session_path()}")
        operation_id = output.start_operation("demo")

        steps = len(args.pressure)
        for index, pressure in enumerate(args.pressure, start=1):
            probe.set(pressure)
            output.info("pressure sample", {"pressure": pressure})
            output.update_progress(
                ProgressInfo(current=index, total=steps, message="Simulating", operation_id=operation_id)
            )
            output.debug_session("info", "tier", {"tier": output.current_tier.name})

        output.user_success("Demo finished")
        output.complete_operation(operation_id, OperationResult(success=True))
        output.flush_session()

        if args.metrics and factory.metrics is not None:
            print(factory.metrics.export_text())
    finally:
        factory.shutdown()
    return 0


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=str,
        help="Path to a YAML configuration file (default: $FLOWLOG_CONFIG)",
    )
    parser.add_argument(
        "--base-dir",
        type=str,
        help="Session root directory (overrides configuration)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowlog",
        description="flowlog - adaptive observability pipeline CLI",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Info command
    info_parser = subparsers.add_parser("info", help="Show version, configuration, and pressure")
    _add_common(info_parser)
    info_parser.add_argument("--json", action="store_true", help="Emit JSON")

    # Sessions command
    sessions_parser = subparsers.add_parser("sessions", help="Inspect or prune session files")
    sessions_parser.set_defaults(help_parser=sessions_parser)
    sessions_sub = sessions_parser.add_subparsers(dest="sessions_command")

    list_parser = sessions_sub.add_parser("list", help="List session files")
    _add_common(list_parser)
    list_parser.add_argument(
        "--command",
        dest="command_name",
        type=str,
        help="Only list sessions for this command",
    )

    clean_parser = sessions_sub.add_parser("clean", help="Delete old session files")
    _add_common(clean_parser)
    clean_parser.add_argument(
        "--max-age-days",
        type=float,
        help="Age limit in days (default: configured retention)",
    )

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Dual-stream walkthrough")
    _add_common(demo_parser)
    demo_parser.add_argument(
        "--pressure",
        type=float,
        nargs="+",
        default=[0.5, 0.96, 0.991, 0.5],
        help="Simulated memory pressures, in order (default: 0.5 0.96 0.991 0.5)",
    )
    demo_parser.add_argument(
        "--command",
        dest="command_name",
        type=str,
        default="demo",
        help="Command name used for the session file (default: demo)",
    )
    demo_parser.add_argument(
        "--metrics",
        action="store_true",
        help="Print Prometheus metrics at the end",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "info":
            return cmd_info(args)
        elif args.command == "sessions":
            if args.sessions_command == "list":
                return cmd_sessions_list(args)
            elif args.sessions_command == "clean":
                return cmd_sessions_clean(args)
            args.help_parser.print_help()
            return 0
        elif args.command == "demo":
            return cmd_demo(args)
        else:
            parser.print_help()
            return 0
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
