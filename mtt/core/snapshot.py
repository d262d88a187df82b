import os
from datetime import datetime
from pathlib import Path
from mtt.common.logger import log

SNAPSHOT_PREFIX = "data_"

# Exponential-ish time-tier targets in seconds.  For each tier we keep the snapshot whose
# timestamp is closest to (now - tier).
TIERS = [
    5 * 60,       # ~5 minutes ago
    10 * 60,      # ~10 minutes ago
    20 * 60,      # ~20 minutes ago
    60 * 60,      # ~1 hour ago
    6 * 3600,     # ~6 hours ago
    24 * 3600,    # ~1 day ago
    2 * 86400,    # ~2 days ago
    4 * 86400,    # ~4 days ago
]

# Writes a verbatim copy of a document's previous text, so a bad replacement can always be undone by hand.
# Only files named with SNAPSHOT_PREFIX (history snapshots) are ever pruned. Returns the snapshot's path.
def create_snapshot(document_text, snapshot_dir, reason, prefix=SNAPSHOT_PREFIX):
    snapshot_dir = Path(snapshot_dir)
    snapshot_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    target_path = snapshot_dir / f"{prefix}{timestamp}.json"
    with open(target_path, "w", encoding="utf-8") as f:
        f.write(document_text)
    log.debug(f"Saved snapshot for reason '{reason}' to {target_path}")
    return target_path

# Extracts and returns the datetime from a given snapshot's filename, such as data_20260212_140311_123456.json ->
# 2/12/2026, 2:03PM, 11.123456 seconds
def _parse_snapshot_time(filename):
    base = os.path.splitext(filename)[0]  # data_20260212_140311_123456
    parts = base.split("_", 1)
    if len(parts) < 2:
        return None
    try:
        return datetime.strptime(parts[1], "%Y%m%d_%H%M%S_%f")
    except ValueError:
        return None
# Use time-tier retention to remove all snapshots that don't best fit any tier. The newest snapshot is always kept.
# We then calculate which snapshot is closest to each tier in TIERS, and delete everything else.
def prune_snapshots(snapshot_dir, now=None):
    snapshot_dir = Path(snapshot_dir)
    if not snapshot_dir.is_dir():
        return 0

    # Gather snapshots with parsed timestamps
    entries = []
    for path in snapshot_dir.iterdir():
        filename = path.name
        if not filename.startswith(SNAPSHOT_PREFIX) or not filename.endswith(".json"):
            continue
        ts = _parse_snapshot_time(filename)
        if ts is not None:
            entries.append((filename, ts))

    # This means there isn't anything to prune yet.
    if len(entries) <= 1:
        return 0

    # Sort by newest first
    entries.sort(key=lambda e: e[1], reverse=True)
    now = now or datetime.now()

    # Always keep newest
    keep = set()
    keep.add(entries[0][0])

    # For each tier, find closest snapshot
    for tier_secs in TIERS:
        target = now.timestamp() - tier_secs
        best = None
        best_distance = float("inf")
        for filename, ts in entries:
            distance = abs(ts.timestamp() - target)
            if distance < best_distance:
                best_distance = distance
                best = filename
        if best is not None:
            keep.add(best)

    # Delete everything not in the keep set
    pruned_count = 0
    for filename, _ in entries:
        if filename not in keep:
            try:
                os.remove(snapshot_dir / filename)
                pruned_count += 1
            except OSError:
                pass
    if pruned_count > 0:
        log.info(f"Pruned {pruned_count} files from '{snapshot_dir}'")
    return pruned_count
