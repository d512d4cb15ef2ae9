"""Monthly voice-analysis quota: limit resolution and usage reservation.

Limits come from ``voice_analysis_limits`` with three scopes. The first one
configured wins: individual (keyed by user id), team (keyed by team id),
global (``target_id`` NULL). Without any row the built-in default applies, so
a user's effective limit can always be resolved.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import date
from typing import Dict, Optional, Protocol, Tuple

from .constants import DEFAULT_MONTHLY_LIMIT
from .models import QuotaDecision, utc_now
from .storage import normalize_database_url

try:
    import psycopg
except Exception:  # pragma: no cover - only relevant when Postgres is enabled.
    psycopg = None


logger = logging.getLogger("uvicorn.error")

SCOPE_ORDER = ("individual", "team", "global")


def current_month(today: Optional[date] = None) -> date:
    today = today or utc_now().date()
    return today.replace(day=1)


class QuotaStore(Protocol):
    storage_name: str

    def get_usage(self, user_id: str, month: date) -> int:
        pass

    def get_limit(self, scope: str, target_id: Optional[str]) -> Optional[int]:
        pass

    def set_limit(self, scope: str, target_id: Optional[str], monthly_limit: int) -> None:
        pass

    def reserve(self, user_id: str, month: date, limit: int) -> Optional[int]:
        """Increment usage unless it already reached ``limit``.

        Returns the new count, or None when the ceiling blocked the increment.
        """
        pass


class InMemoryQuotaStore:
    storage_name = "memory"

    def __init__(self) -> None:
        self._usage: Dict[Tuple[str, date], int] = {}
        self._limits: Dict[Tuple[str, Optional[str]], int] = {}
        self._lock = threading.Lock()

    def get_usage(self, user_id: str, month: date) -> int:
        with self._lock:
            return self._usage.get((user_id, month), 0)

    def get_limit(self, scope: str, target_id: Optional[str]) -> Optional[int]:
        with self._lock:
            return self._limits.get((scope, target_id))

    def set_limit(self, scope: str, target_id: Optional[str], monthly_limit: int) -> None:
        if scope not in SCOPE_ORDER:
            raise ValueError(f"Unknown quota scope: {scope}")
        with self._lock:
            self._limits[(scope, None if scope == "global" else target_id)] = int(monthly_limit)

    def reserve(self, user_id: str, month: date, limit: int) -> Optional[int]:
        key = (user_id, month)
        with self._lock:
            used = self._usage.get(key, 0)
            if used >= limit:
                return None
            self._usage[key] = used + 1
            return used + 1


class PostgresQuotaStore:
    storage_name = "postgres"

    def __init__(self, database_url: str) -> None:
        if psycopg is None:
            raise RuntimeError("psycopg is required when DATABASE_URL is set.")
        self._database_url = normalize_database_url(database_url)
        self._ensure_schema()

    def _connect(self):
        return psycopg.connect(self._database_url, autocommit=True, connect_timeout=10)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS voice_analysis_usage (
                        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                        user_id UUID NOT NULL,
                        month DATE NOT NULL,
                        analyses_used INTEGER NOT NULL DEFAULT 0,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        UNIQUE (user_id, month)
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS voice_analysis_limits (
                        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                        scope TEXT NOT NULL CHECK (scope IN ('global', 'team', 'individual')),
                        target_id UUID NULL,
                        monthly_limit INTEGER NOT NULL DEFAULT 10,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        UNIQUE (scope, target_id)
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_voice_limits_global_unique
                    ON voice_analysis_limits (scope)
                    WHERE scope = 'global' AND target_id IS NULL
                    """
                )

    def get_usage(self, user_id: str, month: date) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT analyses_used FROM voice_analysis_usage WHERE user_id = %s AND month = %s",
                    (user_id, month),
                )
                row = cur.fetchone()
                return int(row[0]) if row else 0

    def get_limit(self, scope: str, target_id: Optional[str]) -> Optional[int]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                if scope == "global":
                    cur.execute(
                        """
                        SELECT monthly_limit FROM voice_analysis_limits
                        WHERE scope = 'global' AND target_id IS NULL
                        """
                    )
                else:
                    cur.execute(
                        "SELECT monthly_limit FROM voice_analysis_limits WHERE scope = %s AND target_id = %s",
                        (scope, target_id),
                    )
                row = cur.fetchone()
                return int(row[0]) if row else None

    def set_limit(self, scope: str, target_id: Optional[str], monthly_limit: int) -> None:
        if scope not in SCOPE_ORDER:
            raise ValueError(f"Unknown quota scope: {scope}")
        with self._connect() as conn:
            with conn.cursor() as cur:
                if scope == "global":
                    cur.execute(
                        """
                        INSERT INTO voice_analysis_limits (scope, target_id, monthly_limit)
                        VALUES ('global', NULL, %s)
                        ON CONFLICT (scope) WHERE scope = 'global' AND target_id IS NULL
                        DO UPDATE SET monthly_limit = EXCLUDED.monthly_limit
                        """,
                        (monthly_limit,),
                    )
                else:
                    cur.execute(
                        """
                        INSERT INTO voice_analysis_limits (scope, target_id, monthly_limit)
                        VALUES (%s, %s, %s)
                        ON CONFLICT (scope, target_id)
                        DO UPDATE SET monthly_limit = EXCLUDED.monthly_limit
                        """,
                        (scope, target_id, monthly_limit),
                    )

    def reserve(self, user_id: str, month: date, limit: int) -> Optional[int]:
        # Single statement: the ceiling check and the increment cannot interleave
        # with another run for the same user and month.
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO voice_analysis_usage (user_id, month, analyses_used)
                    VALUES (%s, %s, 1)
                    ON CONFLICT (user_id, month) DO UPDATE
                        SET analyses_used = voice_analysis_usage.analyses_used + 1,
                            updated_at = NOW()
                        WHERE voice_analysis_usage.analyses_used < %s
                    RETURNING analyses_used
                    """,
                    (user_id, month, limit),
                )
                row = cur.fetchone()
                return int(row[0]) if row else None


def build_quota_store() -> QuotaStore:
    database_url = os.getenv("DATABASE_URL", "").strip()
    if database_url:
        return PostgresQuotaStore(database_url=database_url)
    return InMemoryQuotaStore()


def resolve_monthly_limit(
    store: QuotaStore,
    user_id: str,
    team_id: Optional[str],
) -> Tuple[int, str]:
    individual = store.get_limit("individual", user_id)
    if individual is not None:
        return individual, "individual"

    if team_id:
        team = store.get_limit("team", team_id)
        if team is not None:
            return team, "team"

    global_limit = store.get_limit("global", None)
    if global_limit is not None:
        return global_limit, "global"

    return DEFAULT_MONTHLY_LIMIT, "default"


def check_usage_quota(
    store: QuotaStore,
    user_id: str,
    team_id: Optional[str],
    today: Optional[date] = None,
) -> QuotaDecision:
    try:
        current_usage = store.get_usage(user_id, current_month(today))
        limit, scope = resolve_monthly_limit(store, user_id, team_id)
    except Exception as exc:
        # Unmetered model calls are costly, so an unreadable quota denies the run.
        logger.error("user_id=%s voice_quota_check_failed error=%s", user_id, exc, exc_info=True)
        return QuotaDecision(allowed=False, reason="Unable to verify usage quota. Please try again.")

    if current_usage >= limit:
        return QuotaDecision(
            allowed=False,
            current_usage=current_usage,
            limit=limit,
            scope=scope,
            reason=f"Monthly voice analysis limit reached ({current_usage}/{limit})",
        )

    logger.info("user_id=%s voice_quota_ok usage=%s limit=%s scope=%s", user_id, current_usage, limit, scope)
    return QuotaDecision(allowed=True, current_usage=current_usage, limit=limit, scope=scope)


def reserve_usage(
    store: QuotaStore,
    user_id: str,
    limit: int,
    today: Optional[date] = None,
) -> bool:
    """Reserve one analysis slot for the current month before any model call.

    Returns False only when a concurrent run took the last slot. A storage
    failure is logged and treated as reserved; the quota check already passed.
    """
    month = current_month(today)
    try:
        new_usage = store.reserve(user_id, month, limit)
    except Exception as exc:
        logger.warning("user_id=%s voice_quota_reserve_failed month=%s error=%s", user_id, month, exc)
        return True

    if new_usage is None:
        logger.info("user_id=%s voice_quota_reserve_rejected month=%s limit=%s", user_id, month, limit)
        return False

    logger.info("user_id=%s voice_quota_reserved month=%s usage=%s/%s", user_id, month, new_usage, limit)
    return True
