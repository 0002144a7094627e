from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from gitcontent.schemas import GitOrganization, HostProvider


class OrganizationDirectory:
    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def upsert_organization(self, organization: GitOrganization) -> None:
        payload = (
            organization.provider.value,
            organization.login,
            organization.base_url,
            datetime.now(tz=timezone.utc).isoformat(),
        )
        query = """
        INSERT INTO git_organizations (provider, login, base_url, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(provider, login) DO UPDATE SET
            base_url=excluded.base_url,
            updated_at=excluded.updated_at
        """
        with self._connect() as conn:
            conn.execute(query, payload)

    def get_organization(
        self,
        login: str,
        *,
        provider: HostProvider | None = None,
    ) -> GitOrganization | None:
        query = """
        SELECT provider, login, base_url
        FROM git_organizations
        WHERE login = ?
        """
        params: tuple[object, ...] = (login,)
        if provider is not None:
            query += " AND provider = ?"
            params = (login, provider.value)
        query += " ORDER BY CASE provider WHEN 'GITHUB' THEN 0 ELSE 1 END, provider"

        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()

        if row is None:
            return None
        return self._row_to_organization(row)

    def list_organizations(self) -> list[GitOrganization]:
        query = """
        SELECT provider, login, base_url
        FROM git_organizations
        ORDER BY login ASC, provider ASC
        """
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()

        return [self._row_to_organization(row) for row in rows]

    def delete_organization(self, login: str, *, provider: HostProvider) -> bool:
        query = "DELETE FROM git_organizations WHERE provider = ? AND login = ?"
        with self._connect() as conn:
            cursor = conn.execute(query, (provider.value, login))
        return cursor.rowcount > 0

    def _init_schema(self) -> None:
        schema_path = Path(__file__).with_name("schema.sql")
        schema = schema_path.read_text(encoding="utf-8")
        with self._connect() as conn:
            conn.executescript(schema)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _row_to_organization(row: sqlite3.Row) -> GitOrganization:
        return GitOrganization(
            provider=HostProvider(row["provider"]),
            login=row["login"],
            base_url=row["base_url"],
        )
