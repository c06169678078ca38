from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Iterator
from uuid import uuid4

from lexdraft.config import settings


def _database_path() -> Path:
    prefix = "sqlite:///"
    if not settings.database_url.startswith(prefix):
        raise RuntimeError("Only sqlite:/// DATABASE_URL is supported.")
    return Path(settings.database_url[len(prefix) :])


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_db() -> None:
    db_path = _database_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS profiles (
                id TEXT PRIMARY KEY,
                email TEXT,
                full_name TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS cases (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                case_number TEXT,
                status TEXT NOT NULL DEFAULT 'active',
                details_json TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_cases_user_id ON cases(user_id);

            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                case_id TEXT,
                filename TEXT NOT NULL,
                content_type TEXT NOT NULL,
                storage_path TEXT NOT NULL,
                size_bytes INTEGER NOT NULL,
                extracted_text TEXT,
                processing_status TEXT NOT NULL DEFAULT 'pending',
                is_deleted INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_documents_case_id ON documents(case_id);
            CREATE INDEX IF NOT EXISTS idx_documents_user_status ON documents(user_id, processing_status);

            CREATE TABLE IF NOT EXISTS document_chunks (
                id TEXT PRIMARY KEY,
                document_id TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                chunk_text TEXT NOT NULL,
                embedding_json TEXT NOT NULL,
                embedding_provider TEXT NOT NULL DEFAULT 'hash',
                created_at TEXT NOT NULL,
                FOREIGN KEY(document_id) REFERENCES documents(id)
            );

            CREATE INDEX IF NOT EXISTS idx_document_chunks_document_id ON document_chunks(document_id);

            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                case_id TEXT,
                title TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_conversations_owner_id ON conversations(owner_id);

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('system', 'user', 'assistant')),
                content TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(conversation_id) REFERENCES conversations(id)
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at ASC);

            CREATE TABLE IF NOT EXISTS document_templates (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                category TEXT NOT NULL,
                content TEXT NOT NULL,
                variables_json TEXT NOT NULL,
                tags_json TEXT NOT NULL,
                is_public INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS document_analyses (
                id TEXT PRIMARY KEY,
                document_id TEXT NOT NULL,
                user_id TEXT,
                analysis_type TEXT NOT NULL,
                result_json TEXT NOT NULL,
                model TEXT,
                prompt_tokens INTEGER,
                completion_tokens INTEGER,
                parse_error TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(document_id) REFERENCES documents(id)
            );

            CREATE INDEX IF NOT EXISTS idx_document_analyses_document
                ON document_analyses(document_id, created_at DESC);
            """
        )
        _ensure_column(conn, "documents", "error_message", "TEXT")


def _ensure_column(conn: sqlite3.Connection, table_name: str, column_name: str, column_def: str) -> None:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    existing_columns = {str(row[1]) for row in rows}
    if column_name in existing_columns:
        return
    conn.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_def}")


@contextmanager
def get_conn() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(_database_path())
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        yield conn
        conn.commit()
    finally:
        conn.close()


def create_case(
    user_id: str,
    name: str,
    *,
    description: str | None = None,
    case_number: str | None = None,
    details: dict[str, object] | None = None,
) -> dict[str, object]:
    now = _utc_now_iso()
    row = {
        "id": str(uuid4()),
        "user_id": user_id,
        "name": name,
        "description": description,
        "case_number": case_number,
        "status": "active",
        "details_json": json.dumps(details or {}),
        "created_at": now,
        "updated_at": now,
    }
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO cases (id, user_id, name, description, case_number, status, details_json, created_at, updated_at)
            VALUES (:id, :user_id, :name, :description, :case_number, :status, :details_json, :created_at, :updated_at)
            """,
            row,
        )
    return _case_from_row(row)


def _case_from_row(row: dict[str, object]) -> dict[str, object]:
    item = dict(row)
    details = json.loads(str(item.pop("details_json") or "{}"))
    # Structured details (client, court, judge...) sit beside the column values.
    return {**details, **item}


def get_case(case_id: str) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute(
            """
            SELECT id, user_id, name, description, case_number, status, details_json, created_at, updated_at
            FROM cases
            WHERE id = ?
            """,
            (case_id,),
        ).fetchone()
    if row is None:
        return None
    return _case_from_row(dict(row))


_DOCUMENT_COLUMNS = """
    id, user_id, case_id, filename, content_type, storage_path, size_bytes,
    extracted_text, processing_status, error_message, created_at, updated_at
"""


def create_document(
    user_id: str,
    case_id: str | None,
    filename: str,
    content_type: str,
    storage_path: str,
    size_bytes: int,
) -> dict[str, object]:
    now = _utc_now_iso()
    document: dict[str, object] = {
        "id": str(uuid4()),
        "user_id": user_id,
        "case_id": case_id,
        "filename": filename,
        "content_type": content_type,
        "storage_path": storage_path,
        "size_bytes": size_bytes,
        "extracted_text": None,
        "processing_status": "pending",
        "error_message": None,
        "created_at": now,
        "updated_at": now,
    }
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO documents (
                id, user_id, case_id, filename, content_type, storage_path, size_bytes,
                processing_status, created_at, updated_at
            )
            VALUES (
                :id, :user_id, :case_id, :filename, :content_type, :storage_path, :size_bytes,
                :processing_status, :created_at, :updated_at
            )
            """,
            document,
        )
    return document


def get_document(document_id: str) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ? AND is_deleted = 0",
            (document_id,),
        ).fetchone()
    if row is None:
        return None
    return dict(row)


def update_document_status(
    document_id: str,
    processing_status: str,
    *,
    extracted_text: str | None = None,
    error_message: str | None = None,
) -> None:
    assignments = ["processing_status = ?", "error_message = ?", "updated_at = ?"]
    params: list[object] = [processing_status, error_message, _utc_now_iso()]
    if extracted_text is not None:
        assignments.append("extracted_text = ?")
        params.append(extracted_text)
    params.append(document_id)
    with get_conn() as conn:
        conn.execute(f"UPDATE documents SET {', '.join(assignments)} WHERE id = ?", tuple(params))


def list_documents_pending_embedding(limit: int) -> list[dict[str, object]]:
    with get_conn() as conn:
        rows = conn.execute(
            f"""
            SELECT {_DOCUMENT_COLUMNS}
            FROM documents
            WHERE is_deleted = 0
                AND extracted_text IS NOT NULL
                AND TRIM(extracted_text) <> ''
                AND processing_status <> 'completed'
            ORDER BY created_at ASC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
    return [dict(row) for row in rows]


def list_context_documents(document_ids: list[str], *, case_id: str, user_id: str) -> list[dict[str, object]]:
    """Documents usable as chat context: in the case, owned by the user, and already processed."""
    if not document_ids:
        return []
    placeholders = ", ".join("?" for _ in document_ids)
    with get_conn() as conn:
        rows = conn.execute(
            f"""
            SELECT id, filename, extracted_text, processing_status
            FROM documents
            WHERE id IN ({placeholders})
                AND case_id = ?
                AND user_id = ?
                AND is_deleted = 0
                AND processing_status NOT IN ('pending', 'failed', 'text_extraction_pending', 'text_extraction_failed')
            """,
            (*document_ids, case_id, user_id),
        ).fetchall()
    by_id = {str(row["id"]): dict(row) for row in rows}
    return [by_id[doc_id] for doc_id in document_ids if doc_id in by_id]


def create_document_chunks(document_id: str, chunks: list[dict[str, object]]) -> list[dict[str, object]]:
    """Replace the stored chunks of a document with ``chunks``."""
    now = _utc_now_iso()
    rows: list[dict[str, object]] = [
        {
            "id": str(uuid4()),
            "document_id": document_id,
            "chunk_index": int(chunk["chunk_index"]),
            "chunk_text": str(chunk["chunk_text"]),
            "embedding_json": json.dumps(chunk["embedding"]),
            "embedding_provider": str(chunk.get("embedding_provider") or "hash"),
            "created_at": now,
        }
        for chunk in chunks
    ]

    with get_conn() as conn:
        conn.execute("DELETE FROM document_chunks WHERE document_id = ?", (document_id,))
        if rows:
            conn.executemany(
                """
                INSERT INTO document_chunks (
                    id, document_id, chunk_index, chunk_text, embedding_json, embedding_provider, created_at
                )
                VALUES (:id, :document_id, :chunk_index, :chunk_text, :embedding_json, :embedding_provider, :created_at)
                """,
                rows,
            )
    return rows


def list_document_chunks(user_id: str | None = None) -> list[dict[str, object]]:
    query = """
            SELECT
                c.id,
                c.document_id,
                d.filename,
                d.case_id,
                c.chunk_index,
                c.chunk_text,
                c.embedding_json,
                c.embedding_provider
            FROM document_chunks c
            JOIN documents d ON d.id = c.document_id
            WHERE d.is_deleted = 0
    """
    params: list[object] = []
    if user_id is not None:
        query += " AND d.user_id = ?"
        params.append(user_id)
    query += " ORDER BY c.document_id ASC, c.chunk_index ASC"
    with get_conn() as conn:
        rows = conn.execute(query, tuple(params)).fetchall()

    parsed: list[dict[str, object]] = []
    for row in rows:
        item = dict(row)
        item["embedding"] = json.loads(item.pop("embedding_json"))
        parsed.append(item)
    return parsed


def create_conversation(owner_id: str, case_id: str | None, title: str) -> dict[str, object]:
    now = _utc_now_iso()
    conversation = {
        "id": str(uuid4()),
        "owner_id": owner_id,
        "case_id": case_id,
        "title": title,
        "created_at": now,
        "updated_at": now,
    }
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO conversations (id, owner_id, case_id, title, created_at, updated_at)
            VALUES (:id, :owner_id, :case_id, :title, :created_at, :updated_at)
            """,
            conversation,
        )
    return conversation


def get_conversation(conversation_id: str) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute(
            "SELECT id, owner_id, case_id, title, created_at, updated_at FROM conversations WHERE id = ?",
            (conversation_id,),
        ).fetchone()
    if row is None:
        return None
    return dict(row)


def list_conversation_ids(owner_id: str) -> list[str]:
    with get_conn() as conn:
        rows = conn.execute("SELECT id FROM conversations WHERE owner_id = ?", (owner_id,)).fetchall()
    return [str(row["id"]) for row in rows]


def delete_conversations(conversation_ids: list[str]) -> int:
    if not conversation_ids:
        return 0
    placeholders = ", ".join("?" for _ in conversation_ids)
    with get_conn() as conn:
        conn.execute(f"DELETE FROM messages WHERE conversation_id IN ({placeholders})", tuple(conversation_ids))
        cursor = conn.execute(f"DELETE FROM conversations WHERE id IN ({placeholders})", tuple(conversation_ids))
    return int(cursor.rowcount if cursor.rowcount is not None else 0)


def create_message(
    conversation_id: str,
    role: str,
    content: str,
    *,
    message_id: str | None = None,
) -> dict[str, object] | None:
    """Insert a message; returns None when a message with the same id already exists."""
    message = {
        "id": message_id or str(uuid4()),
        "conversation_id": conversation_id,
        "role": role,
        "content": content,
        "created_at": _utc_now_iso(),
    }
    with get_conn() as conn:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO messages (id, conversation_id, role, content, created_at)
            VALUES (:id, :conversation_id, :role, :content, :created_at)
            """,
            message,
        )
    if cursor.rowcount == 0:
        return None
    return message


def list_messages(conversation_id: str) -> list[dict[str, object]]:
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT id, conversation_id, role, content, created_at
            FROM messages
            WHERE conversation_id = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            (conversation_id,),
        ).fetchall()
    return [dict(row) for row in rows]


def create_template(
    *,
    user_id: str,
    name: str,
    description: str | None,
    category: str,
    content: str,
    variables: list[str],
    tags: list[str],
    is_public: bool = False,
) -> dict[str, object]:
    template = {
        "id": str(uuid4()),
        "user_id": user_id,
        "name": name,
        "description": description,
        "category": category,
        "content": content,
        "variables_json": json.dumps(variables),
        "tags_json": json.dumps(tags),
        "is_public": 1 if is_public else 0,
        "created_at": _utc_now_iso(),
    }
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO document_templates (
                id, user_id, name, description, category, content, variables_json, tags_json, is_public, created_at
            )
            VALUES (
                :id, :user_id, :name, :description, :category, :content, :variables_json, :tags_json, :is_public, :created_at
            )
            """,
            template,
        )
    return _template_from_row(template)


def _template_from_row(row: dict[str, object]) -> dict[str, object]:
    item = dict(row)
    item["variables"] = json.loads(str(item.pop("variables_json")))
    item["tags"] = json.loads(str(item.pop("tags_json")))
    item["is_public"] = bool(item["is_public"])
    return item


def get_template(template_id: str) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute(
            """
            SELECT id, user_id, name, description, category, content, variables_json, tags_json, is_public, created_at
            FROM document_templates
            WHERE id = ?
            """,
            (template_id,),
        ).fetchone()
    if row is None:
        return None
    return _template_from_row(dict(row))


def create_document_analysis(
    *,
    document_id: str,
    user_id: str | None,
    analysis_type: str,
    result: object,
    model: str | None,
    prompt_tokens: int | None,
    completion_tokens: int | None,
    parse_error: str | None,
) -> dict[str, object]:
    analysis = {
        "id": str(uuid4()),
        "document_id": document_id,
        "user_id": user_id,
        "analysis_type": analysis_type,
        "result_json": json.dumps(result),
        "model": model,
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "parse_error": parse_error,
        "created_at": _utc_now_iso(),
    }
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO document_analyses (
                id, document_id, user_id, analysis_type, result_json, model,
                prompt_tokens, completion_tokens, parse_error, created_at
            )
            VALUES (
                :id, :document_id, :user_id, :analysis_type, :result_json, :model,
                :prompt_tokens, :completion_tokens, :parse_error, :created_at
            )
            """,
            analysis,
        )
    return {
        "id": analysis["id"],
        "document_id": document_id,
        "analysis_type": analysis_type,
        "created_at": analysis["created_at"],
    }


def list_document_analyses(document_id: str) -> list[dict[str, object]]:
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT id, document_id, user_id, analysis_type, result_json, model,
                prompt_tokens, completion_tokens, parse_error, created_at
            FROM document_analyses
            WHERE document_id = ?
            ORDER BY created_at DESC
            """,
            (document_id,),
        ).fetchall()

    parsed: list[dict[str, object]] = []
    for row in rows:
        item = dict(row)
        item["result"] = json.loads(item.pop("result_json"))
        parsed.append(item)
    return parsed
