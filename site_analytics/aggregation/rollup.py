"""
Daily Rollup Folding

Pure functions that turn a batch of queue entries into per-(site, UTC day)
rollups and combine them with rollup rows already in the store.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from site_analytics.config.settings import RollupMode

DayKey = Tuple[str, date]


def utc_day(timestamp: Any) -> date:
    """Calendar day of an instant, interpreted in UTC. Naive values are taken as UTC."""
    if isinstance(timestamp, str):
        timestamp = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    if timestamp.tzinfo is None:
        return timestamp.date()
    return timestamp.astimezone(timezone.utc).date()


def rank_paths(counts: Mapping[str, int], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Path counts as [{"path", "views"}], views descending.

    The sort is stable, so ties keep the mapping's insertion order.
    """
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    if limit is not None:
        ranked = ranked[:limit]
    return [{"path": path, "views": views} for path, views in ranked]


@dataclass
class DayAccumulator:
    """Views per path and distinct users for one (site, day)"""
    site_id: str
    date: date
    users: Set[str] = field(default_factory=set)
    paths: Dict[str, int] = field(default_factory=dict)

    def add(self, path: str, user_id: str) -> None:
        self.users.add(user_id)
        self.paths[path] = self.paths.get(path, 0) + 1

    @property
    def total_views(self) -> int:
        return sum(self.paths.values())

    @property
    def unique_users(self) -> int:
        return len(self.users)

    def path_stats(self) -> List[Dict[str, Any]]:
        return rank_paths(self.paths)


def fold_entries(entries: Iterable[Mapping[str, Any]]) -> Dict[DayKey, DayAccumulator]:
    """
    Group queue entries by (site_id, UTC day) and count them.

    Returns:
        Accumulators keyed by (site_id, date), in first-seen order
    """
    groups: Dict[DayKey, DayAccumulator] = {}
    for entry in entries:
        key = (entry["site_id"], utc_day(entry["timestamp"]))
        accumulator = groups.get(key)
        if accumulator is None:
            accumulator = groups[key] = DayAccumulator(site_id=key[0], date=key[1])
        accumulator.add(entry["path"], entry["user_id"])
    return groups


def build_rollup_row(
    accumulator: DayAccumulator,
    existing: Optional[Mapping[str, Any]],
    mode: RollupMode,
    now: datetime,
) -> Dict[str, Any]:
    """
    Rollup row to upsert for one accumulator.

    In REPLACE mode, or when no row exists yet, the row reflects this fold
    only. In MERGE mode the fold is added onto the existing row: path views
    are summed (existing paths first, new paths in first-seen order) and
    the distinct user sets are unioned.
    """
    paths: Dict[str, int] = {}
    users: Set[str] = set()

    if mode == RollupMode.MERGE and existing:
        for stat in existing.get("path_stats") or []:
            paths[stat["path"]] = paths.get(stat["path"], 0) + int(stat["views"])
        users.update(existing.get("user_ids") or [])

    for path, views in accumulator.paths.items():
        paths[path] = paths.get(path, 0) + views
    users.update(accumulator.users)

    return {
        "site_id": accumulator.site_id,
        "date": accumulator.date,
        "total_views": sum(paths.values()),
        "unique_users": len(users),
        "path_stats": rank_paths(paths),
        "user_ids": sorted(users),
        "last_updated": now,
    }
