"""
Decay and pruning for hypergraph memories.

urgency = min(importance * exp(-decay_rate * age_days) + access_count * access_boost, ceiling)

Importance never decays; urgency is always recomputed from it, so running a
sweep twice at the same instant gives the same result.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case

import hypermem.config as config
from hypermem.db import DB
from hypermem.errors import ValidationIssue
from hypermem.models import Hyperedge, HyperedgeMembership, HypergraphConfig, as_utc, utcnow
from hypermem.services.graph_shared import (
    _validate_number,
    _validate_required_text,
    URGENCY_CEILING,
    logger,
)

SECONDS_PER_DAY = 86400.0


# =============================================================================
# Urgency math
# =============================================================================

def decayed_urgency(
    importance: float,
    age_days: float,
    access_count: int,
    decay_rate: float,
    access_boost: float,
    ceiling: float = URGENCY_CEILING,
) -> float:
    base = importance * math.exp(-decay_rate * max(age_days, 0.0))
    return max(0.0, min(base + access_count * access_boost, ceiling))


def boosted_urgency(urgency: float, factor: float, ceiling: float = URGENCY_CEILING) -> float:
    return max(0.0, min(urgency * factor, ceiling))


def _age_days(created_at: datetime, now: datetime) -> float:
    return max((now - as_utc(created_at)).total_seconds() / SECONDS_PER_DAY, 0.0)


# =============================================================================
# Sweeps
# =============================================================================

def decay_sweep(
    db,
    community_id: str,
    decay_rate: float,
    access_boost: float,
    ceiling: float = URGENCY_CEILING,
    now: Optional[datetime] = None,
    batch_size: Optional[int] = None,
) -> int:
    """
    Recompute urgency for every memory of a community.

    Rows are walked in id order, batch by batch. Each row gets its own short
    UPDATE that reads access_count at write time, so a concurrent
    record_access is never lost; each batch is committed on its own.

    Returns:
        Number of rows updated.
    """
    _validate_number(decay_rate, "decay_rate", 0.0)
    _validate_number(access_boost, "access_boost", 0.0)
    now = now or utcnow()
    batch_size = batch_size or config.DECAY_BATCH_SIZE

    updated = 0
    last_id = 0
    while True:
        rows = (
            db.query(Hyperedge.id, Hyperedge.importance, Hyperedge.created_at)
            .filter(Hyperedge.community_id == community_id, Hyperedge.id > last_id)
            .order_by(Hyperedge.id)
            .limit(batch_size)
            .all()
        )
        if not rows:
            break
        try:
            for edge_id, importance, created_at in rows:
                base = importance * math.exp(-decay_rate * _age_days(created_at, now))
                recomputed = base + Hyperedge.access_count * access_boost
                updated += (
                    db.query(Hyperedge)
                    .filter(Hyperedge.id == edge_id)
                    .update(
                        {Hyperedge.urgency: case((recomputed > ceiling, ceiling), else_=recomputed)},
                        synchronize_session=False,
                    )
                ) or 0
            db.commit()
        except Exception:
            db.rollback()
            raise
        last_id = rows[-1][0]
    return updated


def prune_sweep(
    db,
    community_id: str,
    min_urgency: float,
    min_age_days: float,
    now: Optional[datetime] = None,
    batch_size: Optional[int] = None,
) -> int:
    """
    Permanently delete memories that are both faded and old.

    A memory is removed only when urgency < min_urgency AND it was created
    more than min_age_days ago. Memberships go with it; nodes stay.
    """
    _validate_number(min_urgency, "min_urgency", 0.0)
    _validate_number(min_age_days, "min_age_days", 0.0)
    cutoff = (now or utcnow()) - timedelta(days=min_age_days)
    batch_size = batch_size or config.DECAY_BATCH_SIZE

    pruned = 0
    while True:
        try:
            ids = [
                row[0]
                for row in db.query(Hyperedge.id)
                .filter(
                    Hyperedge.community_id == community_id,
                    Hyperedge.urgency < min_urgency,
                    Hyperedge.created_at < cutoff,
                )
                .order_by(Hyperedge.id)
                .limit(batch_size)
                .with_for_update()
                .all()
            ]
            if not ids:
                db.commit()
                break
            db.query(HyperedgeMembership).filter(
                HyperedgeMembership.hyperedge_id.in_(ids)
            ).delete(synchronize_session=False)
            deleted = db.query(Hyperedge).filter(
                Hyperedge.id.in_(ids)
            ).delete(synchronize_session=False)
            db.commit()
        except Exception:
            db.rollback()
            raise
        pruned += deleted or 0
        if len(ids) < batch_size:
            break

    if pruned:
        logger.info("memories_pruned", extra={"community_id": community_id, "pruned": pruned})
    return pruned


# =============================================================================
# Per-community settings
# =============================================================================

@dataclass
class DecayConfig:
    community_id: str
    extraction_enabled: bool = True
    decay_rate: float = config.DEFAULT_DECAY_RATE
    access_boost: float = config.DEFAULT_ACCESS_BOOST
    min_urgency_threshold: float = config.DEFAULT_MIN_URGENCY_THRESHOLD
    prune_min_age_days: float = config.DEFAULT_PRUNE_MIN_AGE_DAYS
    max_memories_per_node: int = config.DEFAULT_MAX_MEMORIES_PER_NODE

    def to_dict(self) -> dict:
        return asdict(self)


CONFIG_FIELDS = (
    "extraction_enabled",
    "decay_rate",
    "access_boost",
    "min_urgency_threshold",
    "prune_min_age_days",
    "max_memories_per_node",
)


def _config_from_row(row: HypergraphConfig) -> DecayConfig:
    return DecayConfig(
        community_id=row.community_id,
        **{field: getattr(row, field) for field in CONFIG_FIELDS},
    )


def get_decay_config(db, community_id: str) -> DecayConfig:
    row = db.get(HypergraphConfig, community_id)
    if row is None:
        return DecayConfig(community_id=community_id)
    return _config_from_row(row)


def _validate_config_values(values: dict) -> None:
    if not isinstance(values, dict):
        raise ValidationIssue("values must be an object", field="values", error_type="invalid_type")
    unknown = sorted(set(values) - set(CONFIG_FIELDS))
    if unknown:
        raise ValidationIssue(
            f"Unknown config fields: {', '.join(unknown)}",
            field=unknown[0],
            error_type="invalid_value",
        )
    if "extraction_enabled" in values and not isinstance(values["extraction_enabled"], bool):
        raise ValidationIssue(
            "extraction_enabled must be a boolean",
            field="extraction_enabled",
            error_type="invalid_type",
        )
    for field in ("decay_rate", "access_boost", "min_urgency_threshold", "prune_min_age_days"):
        if field in values:
            _validate_number(values[field], field, 0.0)
    if "max_memories_per_node" in values:
        value = values["max_memories_per_node"]
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationIssue(
                "max_memories_per_node must be a positive integer",
                field="max_memories_per_node",
                error_type="invalid_value",
            )


def update_decay_config(db, community_id: str, values: dict) -> DecayConfig:
    """Partial update; fields not given keep their current (or default) value."""
    _validate_required_text(community_id, "community_id", 100)
    _validate_config_values(values)
    try:
        row = db.get(HypergraphConfig, community_id)
        if row is None:
            defaults = DecayConfig(community_id=community_id)
            row = HypergraphConfig(
                community_id=community_id,
                **{field: getattr(defaults, field) for field in CONFIG_FIELDS},
            )
            db.add(row)
        for field, value in values.items():
            setattr(row, field, value)
        db.commit()
        db.refresh(row)
    except Exception:
        db.rollback()
        raise
    return _config_from_row(row)


def list_communities(db) -> list[str]:
    rows = db.query(Hyperedge.community_id).distinct().order_by(Hyperedge.community_id).all()
    return [row[0] for row in rows]


# =============================================================================
# Scheduled runs
# =============================================================================

def run_decay_for_community(community_id: str, now: Optional[datetime] = None) -> dict:
    """Load the community's settings, then decay and prune. Owns its session."""
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized")
    started = time.monotonic()
    db = DB.SessionLocal()
    try:
        settings = get_decay_config(db, community_id)
        updated = decay_sweep(
            db,
            community_id,
            settings.decay_rate,
            settings.access_boost,
            now=now,
        )
        pruned = prune_sweep(
            db,
            community_id,
            settings.min_urgency_threshold,
            settings.prune_min_age_days,
            now=now,
        )
    finally:
        db.close()

    result = {
        "community_id": community_id,
        "updated": updated,
        "pruned": pruned,
        "duration_ms": int((time.monotonic() - started) * 1000),
    }
    logger.info("decay_complete", extra=result)
    return result


def _list_all_communities() -> list[str]:
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized")
    db = DB.SessionLocal()
    try:
        return list_communities(db)
    finally:
        db.close()


class DecayManager:
    """
    Runs decay/prune for every community on a fixed period.

    Idle until start(); Running until stop(). Sweeps execute in worker
    threads so the event loop keeps serving conversation traffic.
    """

    def __init__(self):
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.last_run: Optional[dict] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, interval_seconds: int = config.DECAY_INTERVAL_SECONDS) -> None:
        """Schedule the loop on the running event loop; first sweep runs immediately."""
        if self._running:
            logger.warning("Decay manager already running")
            return
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._loop(interval_seconds))
        logger.info("decay_manager_started", extra={"interval_seconds": interval_seconds})

    async def stop(self) -> None:
        task = self._task
        self._task = None
        self._running = False
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("decay_manager_stopped")

    async def _loop(self, interval_seconds: int) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as exc:
                logger.error(f"Memory decay process failed: {exc}")
            await asyncio.sleep(interval_seconds)

    async def run_once(self, now: Optional[datetime] = None) -> dict:
        """Sweep every community; a failing community is logged and skipped."""
        started = time.monotonic()
        communities = await asyncio.to_thread(_list_all_communities)
        total_updated = 0
        total_pruned = 0
        failed: list[str] = []
        for community_id in communities:
            try:
                result = await asyncio.to_thread(run_decay_for_community, community_id, now)
            except Exception as exc:
                failed.append(community_id)
                logger.error(
                    f"Decay failed for community {community_id}: {exc}",
                    extra={"community_id": community_id},
                )
                continue
            total_updated += result["updated"]
            total_pruned += result["pruned"]

        summary = {
            "communities": len(communities),
            "updated": total_updated,
            "pruned": total_pruned,
            "failed": failed,
            "duration_ms": int((time.monotonic() - started) * 1000),
        }
        self.last_run = summary
        logger.info("decay_run_complete", extra=summary)
        return summary

    async def trigger_for_community(self, community_id: str, now: Optional[datetime] = None) -> dict:
        logger.info("decay_manual_trigger", extra={"community_id": community_id})
        return await asyncio.to_thread(run_decay_for_community, community_id, now)
