import json
import sqlite3
import uuid
from typing import Dict, Iterable, List, Optional

from .config import ALLOWED_CONFIG_KEYS, DEFAULT_CONFIG, DURATION_KEYS
from .errors import JobNotFoundError, StaleJobError, ValidationError
from .models import (
    ACTIVE_STATUSES, COMPLETED, JOB_STATUSES, PENDING,
    Job, Target, TargetResult,
)
from .utils import now_iso, parse_duration

# Columns callers may change through update_job
UPDATABLE_JOB_FIELDS = {
    "status", "started_at", "completed_at", "current_index",
    "target_results", "success_count", "failed_count", "error", "run_id",
}

MAX_COMPLETED_JOBS = int(DEFAULT_CONFIG["max_completed_jobs"])


# ---------- Config ----------
def get_config(conn) -> Dict[str, str]:
    cur = conn.execute("SELECT key, value FROM config")
    cfg = dict(DEFAULT_CONFIG)
    cfg.update({r["key"]: r["value"] for r in cur.fetchall()})
    return cfg


def set_config(conn, key: str, value: str):
    if key not in ALLOWED_CONFIG_KEYS:
        raise ValueError(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    if key in DURATION_KEYS:
        parse_duration(value)
    elif key in ("scroll_count", "max_completed_jobs"):
        try:
            if int(value) < 0:
                raise ValueError
        except ValueError:
            raise ValueError(f"{key} must be a non-negative integer.")
    with conn:
        conn.execute(
            "INSERT INTO config(key,value) VALUES(?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, str(value)),
        )


# ---------- Jobs ----------
def _job_from_row(row) -> Job:
    results = [TargetResult.from_dict(d) for d in json.loads(row["target_results"])]
    return Job(
        id=row["id"],
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        total_targets=row["total_targets"],
        current_index=row["current_index"],
        target_results=results,
        success_count=row["success_count"],
        failed_count=row["failed_count"],
        error=row["error"],
        run_id=row["run_id"],
    )


def _encode_results(results: Iterable) -> str:
    return json.dumps([r.to_dict() if isinstance(r, TargetResult) else dict(r) for r in results])


def create_job(
    conn, targets: Iterable[Target], *, require_idle: bool = False, run_id: Optional[str] = None
) -> Job:
    """
    Insert a new pending job with one pending result per target, owned by ``run_id``.
    With require_idle the insert only happens if no job is running or paused,
    checked inside the same write transaction.
    """
    targets = list(targets)
    ts = now_iso()
    job = Job(
        id=uuid.uuid4().hex,
        status=PENDING,
        created_at=ts,
        updated_at=ts,
        total_targets=len(targets),
        target_results=[TargetResult(target_id=t.id, target_name=t.name) for t in targets],
        run_id=run_id,
    )
    with conn:
        if require_idle:
            conn.execute("BEGIN IMMEDIATE")
            active = _active_job_row(conn)
            if active is not None:
                raise ValidationError(f"Job {active['id']} is already {active['status']}")
        conn.execute(
            """INSERT INTO jobs
               (id, status, created_at, updated_at, total_targets, current_index,
                target_results, success_count, failed_count, run_id)
               VALUES (?, ?, ?, ?, ?, 0, ?, 0, 0, ?)""",
            (job.id, job.status, ts, ts, job.total_targets, _encode_results(job.target_results), run_id),
        )
    return job


def list_jobs(conn, status: Optional[str] = None) -> List[Job]:
    if status:
        rows = conn.execute(
            "SELECT * FROM jobs WHERE status=? ORDER BY created_at DESC", (status,)
        ).fetchall()
    else:
        rows = conn.execute("SELECT * FROM jobs ORDER BY created_at DESC").fetchall()
    return [_job_from_row(r) for r in rows]


def get_job(conn, job_id: str) -> Optional[Job]:
    row = conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
    return _job_from_row(row) if row else None


def update_job(conn, job_id: str, expected_status=None, expected_run_id: Optional[str] = None, **changes) -> Job:
    """
    Write only the given fields of a job and return the stored record.

    ``target_results`` is replaced wholesale. If ``expected_status`` (a status
    or a tuple of statuses) is given, the write only applies while the stored
    status matches. Likewise ``expected_run_id`` pins the write to the run that
    owns the job. A write that matches no row raises StaleJobError.
    """
    unknown = set(changes) - UPDATABLE_JOB_FIELDS
    if unknown:
        raise ValueError(f"Cannot update job fields: {', '.join(sorted(unknown))}")
    if "status" in changes and changes["status"] not in JOB_STATUSES:
        raise ValueError(f"Unknown job status: {changes['status']}")

    cols = dict(changes)
    if "target_results" in cols:
        cols["target_results"] = _encode_results(cols["target_results"])
    cols["updated_at"] = now_iso()

    sql = "UPDATE jobs SET " + ", ".join(f"{k}=?" for k in cols) + " WHERE id=?"
    params = list(cols.values()) + [job_id]
    expected = None
    if expected_status is not None:
        expected = (expected_status,) if isinstance(expected_status, str) else tuple(expected_status)
        sql += " AND status IN (" + ",".join("?" * len(expected)) + ")"
        params.extend(expected)
    if expected_run_id is not None:
        sql += " AND run_id=?"
        params.append(expected_run_id)

    with conn:
        updated = conn.execute(sql, params).rowcount

    job = get_job(conn, job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    if updated != 1:
        if expected_run_id is not None and job.run_id != expected_run_id:
            raise StaleJobError(
                job_id, expected, job.status,
                f"Job {job_id} was taken over by run {job.run_id} (this run: {expected_run_id})",
            )
        raise StaleJobError(job_id, expected, job.status)
    return job


def delete_job(conn, job_id: str) -> bool:
    with conn:
        res = conn.execute("DELETE FROM jobs WHERE id=?", (job_id,))
    return res.rowcount == 1


def _active_job_row(conn) -> Optional[sqlite3.Row]:
    return conn.execute(
        "SELECT * FROM jobs WHERE status IN (?, ?) ORDER BY created_at DESC LIMIT 1",
        ACTIVE_STATUSES,
    ).fetchone()


def get_active_job(conn) -> Optional[Job]:
    row = _active_job_row(conn)
    return _job_from_row(row) if row else None


def cleanup_old_jobs(conn, keep: int = MAX_COMPLETED_JOBS) -> int:
    """Delete all but the ``keep`` most recently completed jobs; other statuses are untouched."""
    rows = conn.execute(
        "SELECT id FROM jobs WHERE status=? ORDER BY completed_at DESC, created_at DESC",
        (COMPLETED,),
    ).fetchall()
    stale = [(r["id"],) for r in rows[max(keep, 0):]]
    if stale:
        with conn:
            conn.executemany("DELETE FROM jobs WHERE id=?", stale)
    return len(stale)


def count_jobs(conn) -> Dict[str, int]:
    out = {s: 0 for s in JOB_STATUSES}
    for r in conn.execute("SELECT status, COUNT(1) AS c FROM jobs GROUP BY status"):
        out[r["status"]] = r["c"]
    return out


# ---------- Targets ----------
def add_target(conn, *, target_id: str, url: str, name: str, enabled: bool = True) -> Target:
    if not target_id or not target_id.strip():
        raise ValueError("Target id cannot be empty.")
    if not url or not url.strip():
        raise ValueError("Target url cannot be empty.")

    exists = conn.execute("SELECT 1 FROM targets WHERE id=?", (target_id,)).fetchone()
    if exists:
        raise ValueError(f"Target '{target_id}' already exists.")

    ts = now_iso()
    with conn:
        conn.execute(
            "INSERT INTO targets (id, url, name, enabled, added_at) VALUES (?, ?, ?, ?, ?)",
            (target_id, url, name or target_id, int(enabled), ts),
        )
    return Target(id=target_id, url=url, name=name or target_id, enabled=enabled, added_at=ts)


def list_targets(conn, enabled_only: bool = False) -> List[Target]:
    sql = "SELECT * FROM targets"
    if enabled_only:
        sql += " WHERE enabled=1"
    rows = conn.execute(sql + " ORDER BY rowid ASC").fetchall()
    return [Target.from_row(r) for r in rows]


def get_target(conn, target_id: str) -> Optional[Target]:
    row = conn.execute("SELECT * FROM targets WHERE id=?", (target_id,)).fetchone()
    return Target.from_row(row) if row else None


def resolve_target(conn, target_id: str) -> Optional[Target]:
    """Live target by id, or None if it was removed or disabled."""
    target = get_target(conn, target_id)
    if target is None or not target.enabled:
        return None
    return target


def set_target_enabled(conn, target_id: str, enabled: bool) -> bool:
    with conn:
        res = conn.execute("UPDATE targets SET enabled=? WHERE id=?", (int(enabled), target_id))
    return res.rowcount == 1


def mark_target_scraped(conn, target_id: str, when: Optional[str] = None):
    with conn:
        conn.execute(
            "UPDATE targets SET last_scraped_at=? WHERE id=?", (when or now_iso(), target_id)
        )


def remove_target(conn, target_id: str) -> bool:
    with conn:
        res = conn.execute("DELETE FROM targets WHERE id=?", (target_id,))
    return res.rowcount == 1
