#!/usr/bin/env python3
"""Reconcile a JSON file of document extractions and print the result.

Usage
-----
::

    python scripts/reconcile_file.py extractions.json
    python scripts/reconcile_file.py extractions.json --vehicles rows.json --json

The input file holds either a list of extraction payloads or an object
with a ``documents`` list.  ``--vehicles`` loads bulk-upload rows through
the unified fleet view (backed by an in-memory repository).

Options::

    --vehicles FILE      Bulk-upload rows to add before printing
    --json               Output the fleet export as JSON
    --output FILE        Write output to FILE instead of stdout
    --expiring DAYS      List vehicles with a category expiring within DAYS
    -v, --verbose        Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from fleetrecon import (  # noqa: E402
    EventBus,
    InMemoryVehicleRepository,
    InvalidInputError,
    ReconcilerConfig,
    UnifiedFleetViewService,
    VehicleReconciler,
)

_logger = logging.getLogger("reconcile_file")


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _load_list(path: Path, key: str) -> list[Any]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get(key, [])
    if not isinstance(data, list):
        raise SystemExit(f"{path}: expected a list or an object with a {key!r} list")
    return data


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile fleet document extractions from a JSON file")
    parser.add_argument("input", type=Path, help="JSON file of extraction payloads")
    parser.add_argument("--vehicles", type=Path, help="JSON file of bulk-upload vehicle rows")
    parser.add_argument("--json", action="store_true", help="Output the fleet export as JSON")
    parser.add_argument("--output", type=Path, help="Write output to this file")
    parser.add_argument("--expiring", type=int, default=None, metavar="DAYS")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> int:
    config = ReconcilerConfig.from_env()
    bus = EventBus(history_size=config.event_history_size)
    reconciler = VehicleReconciler(config, event_bus=bus)
    view = UnifiedFleetViewService(reconciler, InMemoryVehicleRepository(), event_bus=bus)
    await view.initialize_data()

    rejected = 0
    for index, payload in enumerate(_load_list(args.input, "documents"), start=1):
        try:
            result = await reconciler.ingest(payload, file_name=args.input.name)
        except InvalidInputError as exc:
            rejected += 1
            _logger.warning("Document %d rejected: %s", index, exc)
            continue
        for warning in result.warnings:
            _logger.info("%s [%s]: %s", result.vin, result.document_id, warning)

    if args.vehicles is not None:
        sync = await view.add_vehicles(_load_list(args.vehicles, "vehicles"))
        for error in sync.errors:
            _logger.warning("%s", error)

    lines: list[str] = []
    if args.json:
        lines.append(json.dumps(reconciler.export_data().to_json_dict(), indent=2, ensure_ascii=False))
    else:
        dashboard = view.get_fleet_dashboard()
        summary = dashboard.summary
        lines.append(_section("Fleet summary"))
        lines.append(f"  vehicles: {summary.total_vehicles} (rejected documents: {rejected})")
        lines.append(
            f"  compliant: {summary.compliant}  warning: {summary.warning}  non-compliant: {summary.non_compliant}"
        )
        lines.append(f"  average score: {summary.average_score}  needs review: {summary.needs_review}")
        alerts = dashboard.alerts
        lines.append(
            f"  expired: {alerts.expired}  today: {alerts.expires_today}  "
            f"this week: {alerts.expiring_this_week}  this month: {alerts.expiring_this_month}"
        )
        lines.append(f"  conflicts: {alerts.active_conflicts}  high risk: {alerts.high_risk_vehicles}")

        lines.append(_section("Vehicles"))
        for entry in view.get_vehicles():
            flags = ",".join(flag.value for flag in entry.conflict_flags) or "-"
            risk = entry.risk_level.value if entry.risk_level else "-"
            lines.append(
                f"  {entry.key}  {entry.make or '?'} {entry.model or '?'} {entry.year or ''}  "
                f"score={entry.compliance_score} risk={risk} source={entry.data_source.value} flags={flags}"
            )

        if dashboard.top_issues:
            lines.append(_section("Top issues"))
            for issue in dashboard.top_issues:
                lines.append(f"  [{issue.severity.value}] {issue.issue}: {issue.count}")

        if args.expiring is not None:
            lines.append(_section(f"Expiring within {args.expiring} days"))
            for vehicle in reconciler.get_expiring_vehicles(args.expiring):
                for item in vehicle.expirations:
                    lines.append(
                        f"  {vehicle.vin}  {item.category.value}  {item.expiration_date}  ({item.days_until_expiry} days)"
                    )

    text = "\n".join(lines) + "\n"
    if args.output:
        args.output.write_text(text, encoding="utf-8")
    else:
        sys.stdout.write(text)
    return 1 if rejected else 0


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
