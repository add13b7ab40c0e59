"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import json
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from seo_aggregator.storage.models import (
    TASK_TABLES,
    CostEntry,
    CostGroupTotal,
    CostSummary,
    Credentials,
    DashboardRollup,
    DeadLetter,
    RequestSlot,
    TaskRecord,
    UsageSnapshot,
)

STATUS_FIELDS = ("status_code", "status_message", "time", "cost", "result_count")


class PostgresSeoStorage:
    """Persist task records, credentials, the cost ledger and usage counters in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("SEO_AGGREGATOR_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._sql, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            for table in TASK_TABLES:
                conn.execute(
                    self._sql.SQL("""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        user_id INTEGER NOT NULL,
                        status_code INTEGER,
                        status_message TEXT,
                        time TEXT,
                        cost DOUBLE PRECISION,
                        result_count INTEGER NOT NULL DEFAULT 0,
                        path JSONB NOT NULL DEFAULT '[]'::jsonb,
                        data JSONB,
                        params JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                        result JSONB,
                        is_ready BOOLEAN NOT NULL DEFAULT FALSE,
                        created_at TIMESTAMPTZ NOT NULL
                    )
                    """).format(table=self._sql.Identifier(table))
                )
                conn.execute(
                    self._sql.SQL("""
                    CREATE INDEX IF NOT EXISTS {index}
                    ON {table}(user_id, created_at DESC)
                    """).format(
                        index=self._sql.Identifier(f"idx_{table}_user_created"),
                        table=self._sql.Identifier(table),
                    )
                )
            conn.execute("""
                CREATE TABLE IF NOT EXISTS dataforseo_credentials (
                    user_id INTEGER PRIMARY KEY,
                    login TEXT NOT NULL,
                    password TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_costs (
                    id BIGSERIAL PRIMARY KEY,
                    user_id INTEGER NOT NULL,
                    task_id TEXT NOT NULL,
                    task_type TEXT NOT NULL,
                    cost DOUBLE PRECISION NOT NULL,
                    api_endpoint TEXT NOT NULL,
                    status_code INTEGER NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_task_costs_user_created
                ON task_costs(user_id, created_at DESC)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_task_costs_user_type
                ON task_costs(user_id, task_type)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_cost_dead_letters (
                    id BIGSERIAL PRIMARY KEY,
                    entry_json JSONB NOT NULL,
                    error TEXT NOT NULL,
                    attempts INTEGER NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_dashboard_stats (
                    user_id INTEGER PRIMARY KEY,
                    total_api_calls INTEGER NOT NULL DEFAULT 0,
                    total_cost DOUBLE PRECISION NOT NULL DEFAULT 0,
                    last_api_call TIMESTAMPTZ,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS api_usage (
                    user_id INTEGER NOT NULL,
                    api_name TEXT NOT NULL,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    quota_limit INTEGER NOT NULL,
                    reset_at TIMESTAMPTZ NOT NULL,
                    PRIMARY KEY (user_id, api_name)
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS api_active_requests (
                    user_id INTEGER PRIMARY KEY,
                    active_count INTEGER NOT NULL DEFAULT 0,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.commit()

    def insert_task(self, table: str, record: TaskRecord) -> bool:
        query = self._sql.SQL("""
            INSERT INTO {table} (
                id,
                user_id,
                status_code,
                status_message,
                time,
                cost,
                result_count,
                path,
                data,
                params,
                result,
                is_ready,
                created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO NOTHING
            """).format(table=self._table(table))
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                query,
                (
                    record.id,
                    record.user_id,
                    record.status_code,
                    record.status_message,
                    record.time,
                    record.cost,
                    record.result_count,
                    self._json_wrapper(record.path),
                    self._json_wrapper(record.data) if record.data is not None else None,
                    self._json_wrapper(record.params),
                    self._json_wrapper(record.result) if record.result is not None else None,
                    record.is_ready,
                    record.created_at,
                ),
            )
            conn.commit()
        return cursor.rowcount == 1

    def get_task(self, table: str, task_id: str, *, user_id: int) -> TaskRecord | None:
        query = self._sql.SQL("SELECT * FROM {table} WHERE id = %s AND user_id = %s").format(
            table=self._table(table)
        )
        with self._lock, self._connect() as conn:
            row = conn.execute(query, (task_id, user_id)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(
        self,
        table: str,
        *,
        user_id: int,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> list[TaskRecord]:
        clauses = [self._sql.SQL("user_id = %s")]
        params: list[Any] = [user_id]
        if created_from is not None:
            clauses.append(self._sql.SQL("created_at >= %s"))
            params.append(created_from)
        if created_to is not None:
            clauses.append(self._sql.SQL("created_at < %s"))
            params.append(created_to)
        query = self._sql.SQL("SELECT * FROM {table} WHERE {where} ORDER BY created_at DESC").format(
            table=self._table(table),
            where=self._sql.SQL(" AND ").join(clauses),
        )
        with self._lock, self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def count_tasks(self, table: str, *, user_id: int) -> int:
        query = self._sql.SQL("SELECT COUNT(*) AS total FROM {table} WHERE user_id = %s").format(
            table=self._table(table)
        )
        with self._lock, self._connect() as conn:
            row = conn.execute(query, (user_id,)).fetchone()
        return int(row["total"]) if row else 0

    def mark_task_ready(
        self,
        table: str,
        task_id: str,
        *,
        user_id: int,
        fields: dict[str, Any],
    ) -> bool:
        return self._update_task(table, task_id, user_id=user_id, fields=fields)

    def store_task_result(
        self,
        table: str,
        task_id: str,
        *,
        user_id: int,
        result: list[Any],
        fields: dict[str, Any],
    ) -> bool:
        return self._update_task(
            table,
            task_id,
            user_id=user_id,
            fields=fields,
            result=self._json_wrapper(list(result)),
        )

    def delete_tasks(self, table: str, *, user_id: int, task_ids: Iterable[str]) -> int:
        ids = sorted(set(task_ids))
        if not ids:
            return 0
        query = self._sql.SQL("DELETE FROM {table} WHERE user_id = %s AND id = ANY(%s)").format(
            table=self._table(table)
        )
        with self._lock, self._connect() as conn:
            cursor = conn.execute(query, (user_id, ids))
            conn.commit()
        return cursor.rowcount

    def get_credentials(self, user_id: int) -> Credentials | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM dataforseo_credentials WHERE user_id = %s",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_credentials(row)

    def upsert_credentials(self, user_id: int, login: str, password: str) -> Credentials:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO dataforseo_credentials (user_id, login, password, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE
                SET login = EXCLUDED.login,
                    password = EXCLUDED.password,
                    updated_at = EXCLUDED.updated_at
                RETURNING *
                """,
                (user_id, login, password, now, now),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist credentials")
        return self._row_to_credentials(row)

    def append_cost(self, entry: CostEntry) -> CostEntry:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO task_costs (
                    user_id,
                    task_id,
                    task_type,
                    cost,
                    api_endpoint,
                    status_code,
                    created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    entry.user_id,
                    entry.task_id,
                    entry.task_type,
                    entry.cost,
                    entry.api_endpoint,
                    entry.status_code,
                    entry.created_at,
                ),
            ).fetchone()
            conn.commit()
        if row is None or row.get("id") is None:
            raise RuntimeError("Failed to persist cost entry")
        return entry.model_copy(update={"id": int(row["id"])})

    def cost_summary(
        self,
        user_id: int,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> CostSummary:
        clauses = ["user_id = %s"]
        params: list[Any] = [user_id]
        if start is not None:
            clauses.append("created_at >= %s")
            params.append(start)
        if end is not None:
            clauses.append("created_at <= %s")
            params.append(end)
        query = self._sql.SQL(
            "SELECT COUNT(*) AS count, COALESCE(SUM(cost), 0) AS total_cost, "
            "MAX(created_at) AS last_at FROM task_costs WHERE " + " AND ".join(clauses)
        )
        with self._lock, self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            return CostSummary()
        return CostSummary(
            count=int(row["count"]),
            total_cost=float(row["total_cost"]),
            last_at=self._parse_datetime(row["last_at"]) if row["last_at"] is not None else None,
        )

    def costs_by_type(self, user_id: int) -> list[CostGroupTotal]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT task_type AS key, SUM(cost) AS total_cost, COUNT(*) AS task_count
                FROM task_costs
                WHERE user_id = %s
                GROUP BY task_type
                ORDER BY task_type
                """,
                (user_id,),
            ).fetchall()
        return [self._row_to_group_total(row) for row in rows]

    def costs_by_endpoint(self, user_id: int, *, limit: int) -> list[CostGroupTotal]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT api_endpoint AS key, SUM(cost) AS total_cost, COUNT(*) AS task_count
                FROM task_costs
                WHERE user_id = %s
                GROUP BY api_endpoint
                ORDER BY task_count DESC, total_cost DESC, api_endpoint
                LIMIT %s
                """,
                (user_id, limit),
            ).fetchall()
        return [self._row_to_group_total(row) for row in rows]

    def costs_by_month(self, user_id: int, *, start: datetime) -> list[CostGroupTotal]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT
                    to_char(date_trunc('month', created_at AT TIME ZONE 'UTC'), 'YYYY-MM') AS key,
                    SUM(cost) AS total_cost,
                    COUNT(*) AS task_count
                FROM task_costs
                WHERE user_id = %s AND created_at >= %s
                GROUP BY 1
                ORDER BY 1
                """,
                (user_id, start),
            ).fetchall()
        return [self._row_to_group_total(row) for row in rows]

    def recent_costs(self, user_id: int, *, limit: int) -> list[CostEntry]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM task_costs
                WHERE user_id = %s
                ORDER BY created_at DESC, id DESC
                LIMIT %s
                """,
                (user_id, limit),
            ).fetchall()
        return [self._row_to_cost(row) for row in rows]

    def record_dead_letter(self, entry: CostEntry, *, error: str, attempts: int) -> None:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO task_cost_dead_letters (entry_json, error, attempts, created_at)
                VALUES (%s, %s, %s, %s)
                """,
                (
                    self._json_wrapper(entry.model_dump(mode="json")),
                    error,
                    attempts,
                    datetime.now(tz=UTC),
                ),
            )
            conn.commit()

    def list_dead_letters(
        self, *, user_id: int | None = None, limit: int = 100
    ) -> list[DeadLetter]:
        where = self._sql.SQL("")
        params: list[Any] = []
        if user_id is not None:
            where = self._sql.SQL("WHERE (entry_json->>'user_id')::integer = %s")
            params.append(user_id)
        query = self._sql.SQL(
            "SELECT * FROM task_cost_dead_letters {where} ORDER BY id DESC LIMIT %s"
        ).format(where=where)
        with self._lock, self._connect() as conn:
            rows = conn.execute(query, [*params, limit]).fetchall()
        return [
            DeadLetter(
                entry=CostEntry.model_validate(self._parse_json_optional(row["entry_json"]) or {}),
                error=row["error"],
                attempts=int(row["attempts"]),
                created_at=self._parse_datetime(row["created_at"]),
            )
            for row in reversed(rows)
        ]

    def bump_dashboard_rollup(self, entry: CostEntry) -> None:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_dashboard_stats (
                    user_id,
                    total_api_calls,
                    total_cost,
                    last_api_call,
                    updated_at
                ) VALUES (%s, 1, %s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE
                SET total_api_calls = user_dashboard_stats.total_api_calls + 1,
                    total_cost = user_dashboard_stats.total_cost + EXCLUDED.total_cost,
                    last_api_call = GREATEST(
                        user_dashboard_stats.last_api_call,
                        EXCLUDED.last_api_call
                    ),
                    updated_at = EXCLUDED.updated_at
                """,
                (entry.user_id, entry.cost, entry.created_at, datetime.now(tz=UTC)),
            )
            conn.commit()

    def get_dashboard_rollup(self, user_id: int) -> DashboardRollup | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM user_dashboard_stats WHERE user_id = %s",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return DashboardRollup(
            user_id=int(row["user_id"]),
            total_api_calls=int(row["total_api_calls"]),
            total_cost=float(row["total_cost"]),
            last_api_call=(
                self._parse_datetime(row["last_api_call"])
                if row["last_api_call"] is not None
                else None
            ),
            updated_at=self._parse_datetime(row["updated_at"]),
        )

    def increment_usage(
        self,
        user_id: int,
        api_name: str,
        *,
        quota_limit: int,
        now: datetime,
        next_reset: datetime,
    ) -> UsageSnapshot:
        # One statement: expired windows restart at 1, live windows increment.
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO api_usage (user_id, api_name, usage_count, quota_limit, reset_at)
                VALUES (%s, %s, 1, %s, %s)
                ON CONFLICT (user_id, api_name) DO UPDATE
                SET usage_count = CASE
                        WHEN api_usage.reset_at <= %s THEN 1
                        ELSE api_usage.usage_count + 1
                    END,
                    reset_at = CASE
                        WHEN api_usage.reset_at <= %s THEN EXCLUDED.reset_at
                        ELSE api_usage.reset_at
                    END,
                    quota_limit = EXCLUDED.quota_limit
                RETURNING *
                """,
                (user_id, api_name, quota_limit, next_reset, now, now),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to update usage counter")
        return UsageSnapshot(
            user_id=int(row["user_id"]),
            api_name=row["api_name"],
            usage_count=int(row["usage_count"]),
            quota_limit=int(row["quota_limit"]),
            reset_at=self._parse_datetime(row["reset_at"]),
        )

    def acquire_request_slot(self, user_id: int, *, limit: int) -> RequestSlot:
        # The conditional upsert claims a slot only while the count is under the limit.
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO api_active_requests (user_id, active_count, updated_at)
                VALUES (%s, 1, %s)
                ON CONFLICT (user_id) DO UPDATE
                SET active_count = api_active_requests.active_count + 1,
                    updated_at = EXCLUDED.updated_at
                WHERE api_active_requests.active_count < %s
                RETURNING active_count
                """,
                (user_id, now, limit),
            ).fetchone()
            if row is None:
                current = conn.execute(
                    "SELECT active_count FROM api_active_requests WHERE user_id = %s",
                    (user_id,),
                ).fetchone()
            conn.commit()
        if row is not None:
            return RequestSlot(
                user_id=user_id, active=int(row["active_count"]), limit=limit, acquired=True
            )
        active = int(current["active_count"]) if current else limit
        return RequestSlot(user_id=user_id, active=active, limit=limit, acquired=False)

    def release_request_slot(self, user_id: int) -> None:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE api_active_requests
                SET active_count = GREATEST(active_count - 1, 0),
                    updated_at = %s
                WHERE user_id = %s
                """,
                (datetime.now(tz=UTC), user_id),
            )
            conn.commit()

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    def _table(self, table: str) -> Any:
        if table not in TASK_TABLES:
            raise ValueError(f"Unknown task table: {table}")
        return self._sql.Identifier(table)

    def _update_task(
        self,
        table: str,
        task_id: str,
        *,
        user_id: int,
        fields: dict[str, Any],
        result: Any = None,
    ) -> bool:
        assignments = [self._sql.SQL("is_ready = TRUE")]
        params: list[Any] = []
        for name in STATUS_FIELDS:
            if name in fields:
                assignments.append(
                    self._sql.SQL("{column} = %s").format(column=self._sql.Identifier(name))
                )
                params.append(fields[name])
        if result is not None:
            assignments.append(self._sql.SQL("result = %s"))
            params.append(result)
        query = self._sql.SQL("UPDATE {table} SET {assignments} WHERE id = %s AND user_id = %s").format(
            table=self._table(table),
            assignments=self._sql.SQL(", ").join(assignments),
        )
        with self._lock, self._connect() as conn:
            cursor = conn.execute(query, [*params, task_id, user_id])
            conn.commit()
        return cursor.rowcount > 0

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any, Any]:
        try:
            import psycopg
            from psycopg import sql
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, sql, dict_row, Json

    @staticmethod
    def _parse_json(raw: Any) -> Any:
        if isinstance(raw, str):
            return json.loads(raw)
        return raw

    @classmethod
    def _parse_json_optional(cls, raw: Any) -> dict[str, Any] | None:
        if raw is None:
            return None
        parsed = cls._parse_json(raw)
        if isinstance(parsed, dict):
            return parsed
        return None

    @classmethod
    def _parse_json_list_optional(cls, raw: Any) -> list[Any] | None:
        if raw is None:
            return None
        parsed = cls._parse_json(raw)
        if isinstance(parsed, list):
            return parsed
        return None

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_task(cls, row: Any) -> TaskRecord:
        return TaskRecord(
            id=str(row["id"]),
            user_id=int(row["user_id"]),
            status_code=row["status_code"],
            status_message=row["status_message"],
            time=row["time"],
            cost=row["cost"],
            result_count=int(row["result_count"] or 0),
            path=[str(item) for item in cls._parse_json_list_optional(row["path"]) or []],
            data=cls._parse_json(row["data"]),
            params=cls._parse_json_optional(row["params"]) or {},
            result=cls._parse_json_list_optional(row["result"]),
            is_ready=bool(row["is_ready"]),
            created_at=cls._parse_datetime(row["created_at"]),
        )

    @classmethod
    def _row_to_credentials(cls, row: Any) -> Credentials:
        return Credentials(
            user_id=int(row["user_id"]),
            login=row["login"],
            password=row["password"],
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )

    @classmethod
    def _row_to_cost(cls, row: Any) -> CostEntry:
        return CostEntry(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            task_id=row["task_id"],
            task_type=row["task_type"],
            cost=float(row["cost"]),
            api_endpoint=row["api_endpoint"],
            status_code=int(row["status_code"]),
            created_at=cls._parse_datetime(row["created_at"]),
        )

    @staticmethod
    def _row_to_group_total(row: Any) -> CostGroupTotal:
        return CostGroupTotal(
            key=row["key"],
            total_cost=float(row["total_cost"] or 0),
            task_count=int(row["task_count"]),
        )
