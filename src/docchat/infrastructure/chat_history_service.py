"""Chat history persistence service.

Manages users, projects, and conversation turns in a dedicated SQLite
database.  The streaming pipeline only uses ``create_turns`` and
``find_recent_turns``; the rest backs the project and message routes.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from docchat.application.exceptions import PersistenceFailure
from docchat.domain.models import ChatTurn, EditRecord, Project, User, utcnow

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    name TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK(role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    metadata TEXT DEFAULT '{}',
    edit_history TEXT DEFAULT '[]',
    is_deleted BOOLEAN DEFAULT 0,
    deleted_at TEXT,
    last_edited_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_project_id ON messages(project_id, created_at);
CREATE INDEX IF NOT EXISTS idx_projects_user_id ON projects(user_id);
"""


def _iso(value: datetime | None) -> str | None:
    # Fixed precision keeps ``ORDER BY created_at`` correct on the text column.
    return value.isoformat(timespec="microseconds") if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _loads(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return default


class ChatHistoryService:
    """CRUD operations for users, projects, and turns in one SQLite file."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Open (or create) the database and ensure the schema exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self.conn.executescript(_SCHEMA_SQL)
        self.conn.commit()
        logger.info("Chat history DB ready at {}", self.db_path)

    def close(self) -> None:
        if self.conn:
            self.conn.close()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, name: str, email: str | None = None) -> User:
        """Create a new user and return it."""
        assert self.conn
        user = User(id=str(uuid.uuid4()), name=name, email=email, created_at=utcnow().isoformat())
        with self._lock:
            self.conn.execute(
                "INSERT INTO users (id, name, email, created_at) VALUES (?, ?, ?, ?)",
                (user.id, user.name, user.email, user.created_at),
            )
            self.conn.commit()
        return user

    def get_user(self, user_id: str) -> User | None:
        assert self.conn
        with self._lock:
            row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> User | None:
        assert self.conn
        with self._lock:
            row = self.conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        return self._row_to_user(row) if row else None

    def ensure_user(self, user_id: str) -> User:
        """Return existing user or auto-create a placeholder with the given ID."""
        user = self.get_user(user_id)
        if user:
            return user
        assert self.conn
        now = utcnow().isoformat()
        with self._lock:
            self.conn.execute(
                "INSERT INTO users (id, name, email, created_at) VALUES (?, ?, ?, ?)",
                (user_id, "User", None, now),
            )
            self.conn.commit()
        return User(id=user_id, name="User", email=None, created_at=now)

    def ensure_user_by_email(self, name: str, email: str) -> User:
        """Return existing user by email, or create one with a new UUID."""
        user = self.get_user_by_email(email)
        if user:
            return user
        user = self.create_user(name or email.split("@")[0], email)
        logger.info("Created user {} ({})", user.name, email)
        return user

    def seed_users(self, users: list[dict]) -> None:
        """Create the given ``{name, email}`` users unless they already exist."""
        for entry in users:
            self.ensure_user_by_email(entry["name"], entry["email"])

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, user_id: str, name: str, description: str | None = None) -> Project:
        assert self.conn
        self.ensure_user(user_id)
        now = utcnow().isoformat()
        project = Project(
            id=str(uuid.uuid4()),
            user_id=user_id,
            name=name,
            description=description,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self.conn.execute(
                "INSERT INTO projects (id, user_id, name, description, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (project.id, user_id, name, description, now, now),
            )
            self.conn.commit()
        logger.info("Created project {} for user {}", project.id, user_id)
        return project

    def get_project(self, project_id: str) -> Project | None:
        assert self.conn
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        return self._row_to_project(row) if row else None

    def is_project_owner(self, project_id: str, user_id: str) -> bool:
        assert self.conn
        with self._lock:
            row = self.conn.execute(
                "SELECT 1 FROM projects WHERE id = ? AND user_id = ?", (project_id, user_id)
            ).fetchone()
        return row is not None

    def list_user_projects(self, user_id: str) -> list[tuple[Project, int]]:
        """Return the user's projects, most recently used first, with live message counts."""
        assert self.conn
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT p.*, COUNT(m.id) AS message_count
                FROM projects p
                LEFT JOIN messages m ON m.project_id = p.id AND m.is_deleted = 0
                WHERE p.user_id = ?
                GROUP BY p.id
                ORDER BY p.updated_at DESC
                """,
                (user_id,),
            ).fetchall()
        return [(self._row_to_project(row), row["message_count"]) for row in rows]

    # ------------------------------------------------------------------
    # Turns (used by the streaming pipeline)
    # ------------------------------------------------------------------

    def create_turns(self, project_id: str, turns: list[ChatTurn]) -> None:
        """Insert all *turns* in one transaction.

        Raises:
            PersistenceFailure: If the write fails (e.g. a duplicate id).
        """
        assert self.conn
        now = utcnow().isoformat()
        rows = [
            (
                t.id,
                project_id,
                t.role,
                t.content,
                json.dumps(t.metadata),
                json.dumps([]),
                _iso(t.created_at),
                now,
            )
            for t in turns
        ]
        with self._lock:
            try:
                with self.conn:
                    self.conn.executemany(
                        "INSERT INTO messages "
                        "(id, project_id, role, content, metadata, edit_history, created_at, updated_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        rows,
                    )
                    self.conn.execute(
                        "UPDATE projects SET updated_at = ? WHERE id = ?", (now, project_id)
                    )
            except sqlite3.Error as exc:
                raise PersistenceFailure(f"Could not save {len(turns)} turns: {exc}") from exc

    def find_recent_turns(self, project_id: str, limit: int) -> list[ChatTurn]:
        """Return up to *limit* live turns, most recent first."""
        assert self.conn
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT * FROM messages
                WHERE project_id = ? AND is_deleted = 0
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (project_id, limit),
            ).fetchall()
        return [self._row_to_turn(row) for row in rows]

    # ------------------------------------------------------------------
    # Turns (message management)
    # ------------------------------------------------------------------

    def get_project_turns(self, project_id: str, include_deleted: bool = False) -> list[ChatTurn]:
        """Return a project's turns in chronological order."""
        assert self.conn
        query = "SELECT * FROM messages WHERE project_id = ?"
        if not include_deleted:
            query += " AND is_deleted = 0"
        query += " ORDER BY created_at ASC, rowid ASC"
        with self._lock:
            rows = self.conn.execute(query, (project_id,)).fetchall()
        return [self._row_to_turn(row) for row in rows]

    def get_owned_turn(self, turn_id: str, user_id: str) -> ChatTurn | None:
        """Return a turn if it belongs to one of *user_id*'s projects."""
        assert self.conn
        with self._lock:
            row = self.conn.execute(
                """
                SELECT m.* FROM messages m
                JOIN projects p ON p.id = m.project_id
                WHERE m.id = ? AND p.user_id = ?
                """,
                (turn_id, user_id),
            ).fetchone()
        return self._row_to_turn(row) if row else None

    def update_turn_content(self, turn_id: str, content: str) -> ChatTurn | None:
        """Replace a turn's content, appending the previous version to its edit history."""
        assert self.conn
        with self._lock:
            row = self.conn.execute("SELECT * FROM messages WHERE id = ?", (turn_id,)).fetchone()
            if not row:
                return None
            now = utcnow()
            history = _loads(row["edit_history"], [])
            history.append({"content": row["content"], "editedAt": now.isoformat()})
            self.conn.execute(
                "UPDATE messages SET content = ?, edit_history = ?, last_edited_at = ?, "
                "updated_at = ? WHERE id = ?",
                (content, json.dumps(history), now.isoformat(), now.isoformat(), turn_id),
            )
            self.conn.commit()
        return self.get_turn(turn_id)

    def soft_delete_turn(self, turn_id: str) -> ChatTurn | None:
        assert self.conn
        now = utcnow().isoformat()
        with self._lock:
            self.conn.execute(
                "UPDATE messages SET is_deleted = 1, deleted_at = ?, updated_at = ? WHERE id = ?",
                (now, now, turn_id),
            )
            self.conn.commit()
        return self.get_turn(turn_id)

    def restore_turn(self, turn_id: str) -> ChatTurn | None:
        assert self.conn
        with self._lock:
            self.conn.execute(
                "UPDATE messages SET is_deleted = 0, deleted_at = NULL, updated_at = ? WHERE id = ?",
                (utcnow().isoformat(), turn_id),
            )
            self.conn.commit()
        return self.get_turn(turn_id)

    def delete_turn(self, turn_id: str) -> None:
        """Remove a turn permanently."""
        assert self.conn
        with self._lock:
            self.conn.execute("DELETE FROM messages WHERE id = ?", (turn_id,))
            self.conn.commit()

    def get_turn(self, turn_id: str) -> ChatTurn | None:
        assert self.conn
        with self._lock:
            row = self.conn.execute("SELECT * FROM messages WHERE id = ?", (turn_id,)).fetchone()
        return self._row_to_turn(row) if row else None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(id=row["id"], name=row["name"], email=row["email"], created_at=row["created_at"])

    @staticmethod
    def _row_to_project(row: sqlite3.Row) -> Project:
        return Project(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            description=row["description"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_turn(row: sqlite3.Row) -> ChatTurn:
        edits = [
            EditRecord(content=e["content"], edited_at=datetime.fromisoformat(e["editedAt"]))
            for e in _loads(row["edit_history"], [])
        ]
        return ChatTurn(
            id=row["id"],
            role=row["role"],
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
            project_id=row["project_id"],
            edit_history=edits,
            is_deleted=bool(row["is_deleted"]),
            deleted_at=_parse(row["deleted_at"]),
            last_edited_at=_parse(row["last_edited_at"]),
            metadata=_loads(row["metadata"], {}),
        )
