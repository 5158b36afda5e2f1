"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync runs:

- ``format_sync_report`` -- full post-sync summary.
- ``format_status`` -- per-collection local/remote counts.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import CollectionReport, SyncReport

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Each collection gets one summary line; error details are listed
    only when a collection has failures.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    lines.append(f"Sync report [sync:{report.run_id}]")
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"Synced {len(report.collections)} collections: "
        f"{report.uploaded} uploaded, {report.downloaded} downloaded, "
        f"{report.errors} errors"
    )
    lines.append("")

    for coll in report.collections:
        lines.append(_collection_line(coll))
        if coll.errors:
            for r in coll.errors:
                lines.append(f"    {r.action.value} {r.record_id}: {r.error}")

    if report.failed:
        lines.append("")
        lines.append("Failed collections:")
        for name, error in report.failed.items():
            lines.append(f"  {name}: {error}")

    if report.skipped:
        lines.append("")
        lines.append(f"Skipped: {', '.join(report.skipped)}")

    return "\n".join(lines).rstrip()


def _collection_line(coll: CollectionReport) -> str:
    if coll.skipped:
        return f"  {coll.remote_name}: skipped ({coll.skipped_reason})"
    state = "in sync" if coll.in_sync else "needs sync"
    return (
        f"  {coll.remote_name}: {len(coll.uploaded)} up, "
        f"{len(coll.downloaded)} down, {len(coll.errors)} errors "
        f"(local {coll.local_count}, remote {coll.remote_count}) - {state}"
    )


def format_status(counts: dict[str, tuple[int, int | None]]) -> str:
    """Format ``{remote_name: (local_count, remote_count)}`` as a table.

    A remote count of ``None`` means the collection could not be listed.
    """
    if not counts:
        return "No collections configured."
    width = max(len("Collection"), *(len(name) for name in counts))
    lines = [f"{'Collection':<{width}}  {'Local':>7}  {'Remote':>7}"]
    for name, (local, remote) in counts.items():
        remote_text = "?" if remote is None else str(remote)
        lines.append(f"{name:<{width}}  {local:>7}  {remote_text:>7}")
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with run info, totals, and per-collection details.
    """
    collections = []
    for coll in report.collections:
        entry: dict = {
            "collection": coll.collection,
            "remote_name": coll.remote_name,
            "started_at": coll.started_at,
            "completed_at": coll.completed_at,
            "remote_count": coll.remote_count,
            "local_count": coll.local_count,
            "uploaded": len(coll.uploaded),
            "downloaded": len(coll.downloaded),
            "linked": len(coll.linked),
            "in_sync": coll.in_sync,
            "errors": [
                {
                    "record_id": r.record_id,
                    "action": r.action.value,
                    "error": r.error,
                }
                for r in coll.errors
            ],
        }
        if coll.skipped_reason:
            entry["skipped_reason"] = coll.skipped_reason
        if coll.notification is not None:
            entry["notification"] = {
                "severity": coll.notification.severity.value,
                "message": coll.notification.message,
            }
        collections.append(entry)

    return {
        "run_id": report.run_id,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "uploaded": report.uploaded,
            "downloaded": report.downloaded,
            "errors": report.errors,
        },
        "in_sync": report.in_sync,
        "skipped": report.skipped,
        "failed": dict(report.failed),
        "collections": collections,
    }
