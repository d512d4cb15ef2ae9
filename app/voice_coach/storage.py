import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional, Protocol

from .models import OwnerInfo, utc_now

try:
    import psycopg
    from psycopg.types.json import Jsonb
except Exception:  # pragma: no cover - only relevant when Postgres is enabled.
    psycopg = None
    Jsonb = None


logger = logging.getLogger("uvicorn.error")

AUDIO_MODEL_LABEL = "gpt-4o-audio-preview"

VOICE_ANALYSIS_TABLES = {
    "full_cycle": "ai_call_analysis",
    "sdr": "sdr_call_grades",
}

FULL_CYCLE_PENDING_SUMMARY = "Pending — voice analysis completed before text analysis"
SDR_PENDING_SUMMARY = "Pending — voice analysis completed before grading"


class PersistenceError(RuntimeError):
    pass


def normalize_database_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        return "postgresql://" + database_url[len("postgres://") :]
    return database_url


def voice_analysis_table(pipeline: str) -> str:
    try:
        return VOICE_ANALYSIS_TABLES[pipeline]
    except KeyError:
        raise ValueError(f"Unknown pipeline: {pipeline}") from None


class RecordStore(Protocol):
    storage_name: str

    def lookup_owner(self, pipeline: str, transcript_id: str, call_id: Optional[str]) -> OwnerInfo:
        pass

    def get_declared_duration(self, pipeline: str, transcript_id: str) -> Optional[float]:
        pass

    def update_voice_analysis(self, table: str, call_id: str, analysis: dict) -> bool:
        pass

    def upsert_voice_analysis(self, table: str, row: dict) -> None:
        """Insert ``row``; on a call_id conflict only the voice column is replaced."""
        pass

    def get_voice_analysis(self, table: str, call_id: str) -> Optional[dict]:
        pass

    def record_metric(self, metric_name: str, duration_ms: float, status: str, metadata: dict) -> None:
        pass


class InMemoryRecordStore:
    storage_name = "memory"

    def __init__(self) -> None:
        self._call_transcripts: Dict[str, dict] = {}
        self._profile_teams: Dict[str, Optional[str]] = {}
        self._sdr_calls: Dict[str, str] = {}
        self._sdr_daily_transcripts: Dict[str, str] = {}
        self._sdr_team_members: Dict[str, Optional[str]] = {}
        self._tables: Dict[str, Dict[str, dict]] = {table: {} for table in VOICE_ANALYSIS_TABLES.values()}
        self.metrics: List[dict] = []
        self._lock = threading.Lock()

    def add_call_transcript(
        self,
        transcript_id: str,
        *,
        rep_id: Optional[str],
        audio_duration_seconds: Optional[float] = None,
    ) -> None:
        with self._lock:
            self._call_transcripts[transcript_id] = {
                "rep_id": rep_id,
                "audio_duration_seconds": audio_duration_seconds,
            }

    def add_profile(self, user_id: str, team_id: Optional[str]) -> None:
        with self._lock:
            self._profile_teams[user_id] = team_id

    def add_sdr_call(self, call_id: str, sdr_id: str) -> None:
        with self._lock:
            self._sdr_calls[call_id] = sdr_id

    def add_sdr_daily_transcript(self, transcript_id: str, sdr_id: str) -> None:
        with self._lock:
            self._sdr_daily_transcripts[transcript_id] = sdr_id

    def add_sdr_team_member(self, user_id: str, team_id: Optional[str]) -> None:
        with self._lock:
            self._sdr_team_members[user_id] = team_id

    def rows(self, table: str) -> List[dict]:
        with self._lock:
            return [dict(row) for row in self._tables[table].values()]

    def lookup_owner(self, pipeline: str, transcript_id: str, call_id: Optional[str]) -> OwnerInfo:
        with self._lock:
            if pipeline == "full_cycle":
                owner_id = (self._call_transcripts.get(transcript_id) or {}).get("rep_id")
                team_id = self._profile_teams.get(owner_id) if owner_id else None
                return OwnerInfo(owner_id=owner_id, team_id=team_id)

            owner_id = self._sdr_calls.get(call_id) if call_id else None
            if not owner_id:
                owner_id = self._sdr_daily_transcripts.get(transcript_id)
            team_id = self._sdr_team_members.get(owner_id) if owner_id else None
            return OwnerInfo(owner_id=owner_id, team_id=team_id)

    def get_declared_duration(self, pipeline: str, transcript_id: str) -> Optional[float]:
        if pipeline != "full_cycle":
            return None
        with self._lock:
            return (self._call_transcripts.get(transcript_id) or {}).get("audio_duration_seconds")

    def update_voice_analysis(self, table: str, call_id: str, analysis: dict) -> bool:
        with self._lock:
            row = self._tables[table].get(call_id)
            if row is None:
                return False
            row["audio_voice_analysis"] = analysis
            return True

    def upsert_voice_analysis(self, table: str, row: dict) -> None:
        with self._lock:
            existing = self._tables[table].get(row["call_id"])
            if existing is not None:
                existing["audio_voice_analysis"] = row["audio_voice_analysis"]
            else:
                self._tables[table][row["call_id"]] = dict(row)

    def get_voice_analysis(self, table: str, call_id: str) -> Optional[dict]:
        with self._lock:
            row = self._tables[table].get(call_id)
            return row.get("audio_voice_analysis") if row else None

    def record_metric(self, metric_name: str, duration_ms: float, status: str, metadata: dict) -> None:
        with self._lock:
            self.metrics.append(
                {
                    "metric_type": "edge_function",
                    "metric_name": metric_name,
                    "duration_ms": duration_ms,
                    "status": status,
                    "metadata": metadata,
                    "created_at": utc_now(),
                }
            )


class PostgresRecordStore:
    storage_name = "postgres"

    def __init__(self, database_url: str) -> None:
        if psycopg is None or Jsonb is None:
            raise RuntimeError("psycopg is required when DATABASE_URL is set.")
        self._database_url = normalize_database_url(database_url)
        self._ensure_schema()

    def _connect(self):
        return psycopg.connect(self._database_url, autocommit=True, connect_timeout=10)

    def _ensure_schema(self) -> None:
        # Call, transcript and grade tables belong to the surrounding application;
        # only the metrics table and the voice column are managed here.
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS performance_metrics (
                        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                        metric_type TEXT NOT NULL,
                        metric_name TEXT NOT NULL,
                        duration_ms NUMERIC NOT NULL,
                        status TEXT NOT NULL,
                        metadata JSONB NULL,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                    )
                    """
                )
                for table in VOICE_ANALYSIS_TABLES.values():
                    cur.execute(
                        f"ALTER TABLE IF EXISTS {table} ADD COLUMN IF NOT EXISTS audio_voice_analysis JSONB NULL"
                    )

    def lookup_owner(self, pipeline: str, transcript_id: str, call_id: Optional[str]) -> OwnerInfo:
        with self._connect() as conn:
            with conn.cursor() as cur:
                if pipeline == "full_cycle":
                    cur.execute(
                        """
                        SELECT ct.rep_id, p.team_id
                        FROM call_transcripts ct
                        LEFT JOIN profiles p ON p.id = ct.rep_id
                        WHERE ct.id = %s
                        """,
                        (transcript_id,),
                    )
                    row = cur.fetchone()
                    if row is None or row[0] is None:
                        return OwnerInfo()
                    return OwnerInfo(owner_id=str(row[0]), team_id=str(row[1]) if row[1] else None)

                owner_id = None
                if call_id:
                    cur.execute("SELECT sdr_id FROM sdr_calls WHERE id = %s", (call_id,))
                    row = cur.fetchone()
                    owner_id = str(row[0]) if row and row[0] else None
                if not owner_id:
                    cur.execute("SELECT sdr_id FROM sdr_daily_transcripts WHERE id = %s", (transcript_id,))
                    row = cur.fetchone()
                    owner_id = str(row[0]) if row and row[0] else None
                if not owner_id:
                    return OwnerInfo()

                cur.execute("SELECT team_id FROM sdr_team_members WHERE user_id = %s LIMIT 1", (owner_id,))
                row = cur.fetchone()
                return OwnerInfo(owner_id=owner_id, team_id=str(row[0]) if row and row[0] else None)

    def get_declared_duration(self, pipeline: str, transcript_id: str) -> Optional[float]:
        if pipeline != "full_cycle":
            return None
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT audio_duration_seconds FROM call_transcripts WHERE id = %s", (transcript_id,))
                row = cur.fetchone()
                if row is None or row[0] is None:
                    return None
                return float(row[0])

    def update_voice_analysis(self, table: str, call_id: str, analysis: dict) -> bool:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"UPDATE {table} SET audio_voice_analysis = %s WHERE call_id = %s RETURNING id",
                    (Jsonb(analysis), call_id),
                )
                return cur.fetchone() is not None

    def upsert_voice_analysis(self, table: str, row: dict) -> None:
        columns = list(row.keys())
        values: List[Any] = [Jsonb(value) if column == "audio_voice_analysis" else value for column, value in row.items()]
        placeholders = ", ".join(["%s"] * len(columns))
        query = (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
            "ON CONFLICT (call_id) DO UPDATE SET audio_voice_analysis = EXCLUDED.audio_voice_analysis"
        )
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, values)

    def get_voice_analysis(self, table: str, call_id: str) -> Optional[dict]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT audio_voice_analysis FROM {table} WHERE call_id = %s", (call_id,))
                row = cur.fetchone()
                if row is None or row[0] is None:
                    return None
                analysis = row[0]
                if isinstance(analysis, str):
                    analysis = json.loads(analysis)
                return analysis

    def record_metric(self, metric_name: str, duration_ms: float, status: str, metadata: dict) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO performance_metrics (metric_type, metric_name, duration_ms, status, metadata)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    ("edge_function", metric_name, round(duration_ms, 2), status, Jsonb(metadata)),
                )


def build_record_store() -> RecordStore:
    database_url = os.getenv("DATABASE_URL", "").strip()
    if database_url:
        return PostgresRecordStore(database_url=database_url)
    return InMemoryRecordStore()


def emit_metric(store: RecordStore, metric_name: str, duration_ms: float, status: str, metadata: dict) -> None:
    try:
        store.record_metric(metric_name, duration_ms, status, metadata)
    except Exception as exc:
        logger.warning("metric_write_failed metric=%s status=%s error=%s", metric_name, status, exc)


def _placeholder_row(pipeline: str, record_call_id: str, owner_id: Optional[str], analysis: dict) -> dict:
    if pipeline == "full_cycle":
        return {
            "call_id": record_call_id,
            "rep_id": owner_id,
            "model_name": AUDIO_MODEL_LABEL,
            "audio_voice_analysis": analysis,
            "call_summary": FULL_CYCLE_PENDING_SUMMARY,
            "confidence": "pending",
            "prompt_version": 1,
        }
    return {
        "call_id": record_call_id,
        "sdr_id": owner_id,
        "overall_grade": "F",
        "model_name": AUDIO_MODEL_LABEL,
        "audio_voice_analysis": analysis,
        "call_summary": SDR_PENDING_SUMMARY,
    }


def store_voice_analysis(
    store: RecordStore,
    pipeline: str,
    transcript_id: str,
    call_id: Optional[str],
    owner_id: Optional[str],
    analysis: dict,
) -> str:
    """Attach ``analysis`` to the owning analysis/grade record.

    Updates the existing row when there is one; otherwise inserts a placeholder
    row whose conflict clause touches only the voice column, so a text analysis
    written concurrently is never overwritten. Returns "updated", "inserted" or
    "skipped".
    """
    table = voice_analysis_table(pipeline)
    record_call_id = transcript_id if pipeline == "full_cycle" else (call_id or transcript_id)

    try:
        updated = store.update_voice_analysis(table, record_call_id, analysis)
    except Exception as exc:
        raise PersistenceError(f"Failed to update {table} for {record_call_id}: {exc}") from exc
    if updated:
        logger.info("call_id=%s voice_analysis_updated table=%s", record_call_id, table)
        return "updated"

    if pipeline == "sdr" and not owner_id:
        logger.warning(
            "call_id=%s voice_analysis_not_stored table=%s reason=no_existing_record_and_no_owner",
            record_call_id,
            table,
        )
        return "skipped"

    try:
        store.upsert_voice_analysis(table, _placeholder_row(pipeline, record_call_id, owner_id, analysis))
    except Exception as exc:
        raise PersistenceError(f"Failed to upsert {table} for {record_call_id}: {exc}") from exc
    logger.info("call_id=%s voice_analysis_inserted table=%s", record_call_id, table)
    return "inserted"


def get_voice_analysis(store: RecordStore, pipeline: str, record_id: str) -> Optional[dict]:
    return store.get_voice_analysis(voice_analysis_table(pipeline), record_id)
