"""SQLite storage for conversations, branches, messages and facts."""

import json
import sqlite3
import uuid
from pathlib import Path

from ..facts.models import FactMap, FactStatus, FactValue
from .models import Branch, Conversation, Message

SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    tenant_id              TEXT NOT NULL,
    id                     TEXT NOT NULL,
    last_active_branch_id  TEXT,
    created_at             TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    updated_at             TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    PRIMARY KEY (tenant_id, id)
);

CREATE TABLE IF NOT EXISTS branches (
    id               TEXT PRIMARY KEY,
    tenant_id        TEXT NOT NULL,
    conversation_id  TEXT NOT NULL,
    parent_id        TEXT REFERENCES branches(id),
    topic            TEXT NOT NULL,
    context          TEXT,
    depth            INTEGER NOT NULL DEFAULT 0,
    message_count    INTEGER NOT NULL DEFAULT 0,
    centroid         TEXT NOT NULL DEFAULT '[]',
    touched_seq      INTEGER NOT NULL DEFAULT 0,
    created_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    updated_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_branches_conversation
    ON branches(tenant_id, conversation_id);

CREATE TABLE IF NOT EXISTS messages (
    seq              INTEGER PRIMARY KEY AUTOINCREMENT,
    id               TEXT NOT NULL UNIQUE,
    tenant_id        TEXT NOT NULL,
    conversation_id  TEXT NOT NULL,
    branch_id        TEXT NOT NULL REFERENCES branches(id),
    role             TEXT NOT NULL,
    content          TEXT NOT NULL,
    embedding        TEXT,
    action           TEXT NOT NULL,
    reason           TEXT NOT NULL,
    created_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_messages_branch ON messages(branch_id);

CREATE TABLE IF NOT EXISTS fact_values (
    branch_id      TEXT NOT NULL REFERENCES branches(id),
    key            TEXT NOT NULL,
    position       INTEGER NOT NULL,
    value          TEXT NOT NULL,
    message_id     TEXT NOT NULL,
    confidence     REAL NOT NULL,
    status         TEXT NOT NULL DEFAULT 'active',
    superseded_by  TEXT,
    PRIMARY KEY (branch_id, key, position)
);
"""

BRANCH_COLUMNS = (
    "id, tenant_id, conversation_id, parent_id, topic, context, depth, "
    "message_count, centroid, created_at, updated_at"
)

MESSAGE_COLUMNS = (
    "id, conversation_id, branch_id, role, content, embedding, action, reason, created_at"
)


class SQLiteDriftStore:
    """Persistent storage for the drift router using SQLite.

    Conversations are keyed by (tenant_id, id) so two tenants never see
    each other's conversations. Fact values are stored per branch in
    insertion order, including superseded and removed entries.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def init_db(self) -> None:
        """Create the tables if they don't exist."""
        conn = self._get_connection()
        conn.executescript(SCHEMA)
        conn.commit()

    # Conversations

    def ensure_conversation(self, tenant_id: str, conversation_id: str) -> Conversation:
        """Create the conversation if missing and return it."""
        conn = self._get_connection()
        conn.execute(
            "INSERT INTO conversations (tenant_id, id) VALUES (?, ?) "
            "ON CONFLICT(tenant_id, id) DO NOTHING",
            (tenant_id, conversation_id),
        )
        conn.commit()
        conversation = self.get_conversation(tenant_id, conversation_id)
        assert conversation is not None
        return conversation

    def get_conversation(self, tenant_id: str, conversation_id: str) -> Conversation | None:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT id, tenant_id, last_active_branch_id, created_at, updated_at "
            "FROM conversations WHERE tenant_id = ? AND id = ?",
            (tenant_id, conversation_id),
        ).fetchone()
        if row is None:
            return None
        return Conversation(
            id=row["id"],
            tenant_id=row["tenant_id"],
            last_active_branch_id=row["last_active_branch_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def set_last_active_branch(
        self, tenant_id: str, conversation_id: str, branch_id: str
    ) -> None:
        conn = self._get_connection()
        conn.execute(
            "UPDATE conversations SET last_active_branch_id = ?, "
            "updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now') "
            "WHERE tenant_id = ? AND id = ?",
            (branch_id, tenant_id, conversation_id),
        )
        conn.commit()

    # Branches

    def list_branches(
        self, tenant_id: str, conversation_id: str, oldest_first: bool = False
    ) -> list[Branch]:
        """List a conversation's branches, most recently updated first.

        With ``oldest_first`` the branches come back in creation order.
        """
        order = "rowid ASC" if oldest_first else "touched_seq DESC"
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {BRANCH_COLUMNS} FROM branches "
            "WHERE tenant_id = ? AND conversation_id = ? "
            f"ORDER BY {order}",
            (tenant_id, conversation_id),
        )
        return [self._row_to_branch(row) for row in cursor.fetchall()]

    def get_branch(self, branch_id: str) -> Branch | None:
        conn = self._get_connection()
        row = conn.execute(
            f"SELECT {BRANCH_COLUMNS} FROM branches WHERE id = ?",
            (branch_id,),
        ).fetchone()
        return self._row_to_branch(row) if row is not None else None

    def create_branch(
        self,
        tenant_id: str,
        conversation_id: str,
        topic: str,
        parent_id: str | None = None,
        centroid: list[float] | None = None,
        context: str | None = None,
    ) -> Branch:
        """Create a branch. Depth is derived from the parent."""
        conn = self._get_connection()
        depth = 0
        if parent_id is not None:
            parent = self.get_branch(parent_id)
            if parent is not None:
                depth = parent.depth + 1

        branch_id = str(uuid.uuid4())
        conn.execute(
            "INSERT INTO branches "
            "(id, tenant_id, conversation_id, parent_id, topic, context, depth, "
            "centroid, touched_seq) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, "
            "(SELECT COALESCE(MAX(touched_seq), 0) + 1 FROM branches))",
            (
                branch_id,
                tenant_id,
                conversation_id,
                parent_id,
                topic,
                context,
                depth,
                json.dumps(centroid or []),
            ),
        )
        conn.commit()
        branch = self.get_branch(branch_id)
        assert branch is not None
        return branch

    def update_centroid(self, branch_id: str, centroid: list[float]) -> None:
        conn = self._get_connection()
        conn.execute(
            "UPDATE branches SET centroid = ? WHERE id = ?",
            (json.dumps(centroid), branch_id),
        )
        conn.commit()

    def update_branch_context(self, branch_id: str, context: str) -> None:
        """Overwrite the evolving context summary. The topic never changes."""
        conn = self._get_connection()
        conn.execute(
            "UPDATE branches SET context = ?, "
            "updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now') WHERE id = ?",
            (context, branch_id),
        )
        conn.commit()

    # Messages

    def create_message(
        self,
        tenant_id: str,
        conversation_id: str,
        branch_id: str,
        role: str,
        content: str,
        action: str,
        reason: str,
        embedding: list[float] | None = None,
    ) -> Message:
        """Insert a message and bump its branch's count and recency."""
        conn = self._get_connection()
        message_id = str(uuid.uuid4())
        with conn:
            conn.execute(
                "INSERT INTO messages "
                "(id, tenant_id, conversation_id, branch_id, role, content, "
                "embedding, action, reason) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    message_id,
                    tenant_id,
                    conversation_id,
                    branch_id,
                    role,
                    content,
                    json.dumps(embedding) if embedding is not None else None,
                    action,
                    reason,
                ),
            )
            conn.execute(
                "UPDATE branches SET message_count = message_count + 1, "
                "touched_seq = (SELECT COALESCE(MAX(touched_seq), 0) + 1 FROM branches), "
                "updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now') WHERE id = ?",
                (branch_id,),
            )
        row = conn.execute(
            f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE id = ?",
            (message_id,),
        ).fetchone()
        return self._row_to_message(row)

    def get_messages(
        self,
        branch_id: str,
        limit: int | None = None,
        role: str | None = None,
    ) -> list[Message]:
        """Get a branch's messages, oldest first.

        Args:
            branch_id: The branch to read.
            limit: Keep only the most recent ``limit`` messages.
            role: Only messages with this role.
        """
        conn = self._get_connection()
        query = f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE branch_id = ?"
        params: list[object] = [branch_id]
        if role is not None:
            query += " AND role = ?"
            params.append(role)
        query += " ORDER BY seq DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = conn.execute(query, params).fetchall()
        return [self._row_to_message(row) for row in reversed(rows)]

    # Facts

    def get_facts(self, branch_id: str) -> FactMap:
        """Load the full fact map of a branch, history included."""
        conn = self._get_connection()
        cursor = conn.execute(
            "SELECT key, value, message_id, confidence, status, superseded_by "
            "FROM fact_values WHERE branch_id = ? ORDER BY key, position",
            (branch_id,),
        )
        facts: FactMap = {}
        for row in cursor.fetchall():
            facts.setdefault(row["key"], []).append(
                FactValue(
                    value=row["value"],
                    message_id=row["message_id"],
                    confidence=row["confidence"],
                    status=FactStatus(row["status"]),
                    superseded_by=row["superseded_by"],
                )
            )
        return facts

    def fact_keys(self, branch_id: str) -> list[str]:
        """Keys that have at least one active value."""
        conn = self._get_connection()
        cursor = conn.execute(
            "SELECT DISTINCT key FROM fact_values "
            "WHERE branch_id = ? AND status = 'active' ORDER BY key",
            (branch_id,),
        )
        return [row["key"] for row in cursor.fetchall()]

    def count_active_facts(self, branch_id: str) -> int:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM fact_values WHERE branch_id = ? AND status = 'active'",
            (branch_id,),
        ).fetchone()
        return int(row["n"])

    def replace_facts(self, branch_id: str, facts: FactMap) -> None:
        """Replace all fact rows of a branch in one transaction."""
        conn = self._get_connection()
        with conn:
            conn.execute("DELETE FROM fact_values WHERE branch_id = ?", (branch_id,))
            conn.executemany(
                "INSERT INTO fact_values "
                "(branch_id, key, position, value, message_id, confidence, status, "
                "superseded_by) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        branch_id,
                        key,
                        position,
                        fv.value,
                        fv.message_id,
                        fv.confidence,
                        fv.status.value,
                        fv.superseded_by,
                    )
                    for key, values in facts.items()
                    for position, fv in enumerate(values)
                ],
            )

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _row_to_branch(self, row: sqlite3.Row) -> Branch:
        """Convert a database row to a Branch."""
        return Branch(
            id=row["id"],
            conversation_id=row["conversation_id"],
            tenant_id=row["tenant_id"],
            topic=row["topic"],
            parent_id=row["parent_id"],
            context=row["context"],
            depth=row["depth"],
            message_count=row["message_count"],
            centroid=json.loads(row["centroid"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        """Convert a database row to a Message."""
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            branch_id=row["branch_id"],
            role=row["role"],
            content=row["content"],
            action=row["action"],
            reason=row["reason"],
            embedding=json.loads(row["embedding"]) if row["embedding"] else None,
            created_at=row["created_at"],
        )
