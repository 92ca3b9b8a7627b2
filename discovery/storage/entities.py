"""Idempotent persistence for discovered sources, organizations, job boards and jobs."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from discovery.errors import NotFound
from discovery.storage.database import Database, first_row, to_timestamp, utcnow

_UPSERT_SQL = {
    "sources": """
        INSERT INTO sources (url, name, description, portfolio, created_at, updated_at)
        VALUES (:url, :name, :description, :portfolio, :now, :now)
        ON CONFLICT(url) DO UPDATE SET
            name=excluded.name,
            description=excluded.description,
            portfolio=excluded.portfolio,
            updated_at=excluded.updated_at
        RETURNING *
    """,
    "organizations": """
        INSERT INTO organizations (
            url, name, city, province, description, careers_page, industry, source_id, created_at, updated_at
        ) VALUES (
            :url, :name, :city, :province, :description, :careers_page, :industry, :source_id, :now, :now
        )
        ON CONFLICT(url) DO UPDATE SET
            name=excluded.name,
            city=excluded.city,
            province=excluded.province,
            description=excluded.description,
            careers_page=COALESCE(excluded.careers_page, organizations.careers_page),
            industry=COALESCE(excluded.industry, organizations.industry),
            source_id=COALESCE(excluded.source_id, organizations.source_id),
            updated_at=excluded.updated_at
        RETURNING *
    """,
    "job_boards": """
        INSERT INTO job_boards (url, name, organization_id, created_at, updated_at)
        VALUES (:url, :name, :organization_id, :now, :now)
        ON CONFLICT(url) DO UPDATE SET
            name=excluded.name,
            organization_id=COALESCE(excluded.organization_id, job_boards.organization_id),
            updated_at=excluded.updated_at
        RETURNING *
    """,
    "jobs": """
        INSERT INTO jobs (
            url, title, company, city, province, remote_ok, salary_min, salary_max,
            description, job_board_url, organization_id, created_at, updated_at
        ) VALUES (
            :url, :title, :company, :city, :province, :remote_ok, :salary_min, :salary_max,
            :description, :job_board_url, :organization_id, :now, :now
        )
        ON CONFLICT(url) DO UPDATE SET
            title=excluded.title,
            company=excluded.company,
            city=excluded.city,
            province=excluded.province,
            remote_ok=excluded.remote_ok,
            salary_min=excluded.salary_min,
            salary_max=excluded.salary_max,
            description=excluded.description,
            job_board_url=COALESCE(excluded.job_board_url, jobs.job_board_url),
            organization_id=COALESCE(excluded.organization_id, jobs.organization_id),
            updated_at=excluded.updated_at
        RETURNING *
    """,
}

_COLUMNS = {
    "sources": ("url", "name", "description", "portfolio"),
    "organizations": ("url", "name", "city", "province", "description", "careers_page", "industry", "source_id"),
    "job_boards": ("url", "name", "organization_id"),
    "jobs": (
        "url",
        "title",
        "company",
        "city",
        "province",
        "remote_ok",
        "salary_min",
        "salary_max",
        "description",
        "job_board_url",
        "organization_id",
    ),
}


class EntityStore:
    """Upserts entities keyed by URL so re-running a task never duplicates rows."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def _upsert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        params = {column: values.get(column) for column in _COLUMNS[table]}
        if params.get("description") is None and "description" in params:
            params["description"] = ""
        params["now"] = to_timestamp(utcnow())
        with self._db.transaction() as connection:
            row = first_row(connection.execute(_UPSERT_SQL[table], params))
        return dict(row)

    async def upsert_source(self, **values: Any) -> Dict[str, Any]:
        return await asyncio.to_thread(self._upsert, "sources", values)

    async def upsert_organization(self, **values: Any) -> Dict[str, Any]:
        return await asyncio.to_thread(self._upsert, "organizations", values)

    async def upsert_job_board(self, **values: Any) -> Dict[str, Any]:
        return await asyncio.to_thread(self._upsert, "job_boards", values)

    async def upsert_job(self, **values: Any) -> Dict[str, Any]:
        if "remote_ok" in values:
            values["remote_ok"] = int(bool(values["remote_ok"]))
        return await asyncio.to_thread(self._upsert, "jobs", values)

    def _get(self, table: str, entity_id: int) -> Dict[str, Any]:
        with self._db.connect() as connection:
            row = first_row(connection.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,)))
        if row is None:
            raise NotFound(f"No {table} row with id {entity_id}", meta={"table": table, "id": entity_id})
        return dict(row)

    async def get_organization(self, organization_id: int) -> Dict[str, Any]:
        return await asyncio.to_thread(self._get, "organizations", organization_id)

    def _list(self, table: str, limit: Optional[int]) -> List[Dict[str, Any]]:
        sql = f"SELECT * FROM {table} ORDER BY id"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        with self._db.connect() as connection:
            return [dict(row) for row in connection.execute(sql, params)]

    async def list(self, table: str, *, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        if table not in _COLUMNS:
            raise ValueError(f"Unknown entity table: {table}")
        return await asyncio.to_thread(self._list, table, limit)

    def _count(self, table: str) -> int:
        with self._db.connect() as connection:
            return connection.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    async def count(self, table: str) -> int:
        if table not in _COLUMNS:
            raise ValueError(f"Unknown entity table: {table}")
        return await asyncio.to_thread(self._count, table)
