from __future__ import annotations

import logging
import os
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

import sqlite_vec

from linkvault.core.embeddings import vector_to_literal
from linkvault.core.errors import Conflict, StoreError
from linkvault.core.ranking import (
    RankedBookmark,
    merge_ranked,
    relevance_from_bm25,
    similarity_from_distance,
)
from linkvault.core.settings import Settings
from linkvault.core.urls import url_domain

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS bookmarks (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id TEXT NOT NULL,
  url TEXT NOT NULL,
  url_canonical TEXT,
  title TEXT,
  description TEXT,
  site_name TEXT,
  image_url TEXT,
  notes TEXT,
  content_text TEXT,
  archived INTEGER NOT NULL DEFAULT 0,
  created_at TEXT DEFAULT (datetime('now')),
  updated_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_bookmarks_user ON bookmarks(user_id, archived, created_at);

-- Text notes have no canonical URL (NULLs never collide)
CREATE UNIQUE INDEX IF NOT EXISTS idx_bookmarks_user_url ON bookmarks(user_id, url_canonical);

CREATE TABLE IF NOT EXISTS bookmark_tags (
  bookmark_id INTEGER NOT NULL REFERENCES bookmarks(id) ON DELETE CASCADE,
  user_id TEXT NOT NULL,
  tag TEXT NOT NULL,
  UNIQUE(bookmark_id, tag)
);

CREATE TABLE IF NOT EXISTS bookmark_embeddings (
  bookmark_id INTEGER PRIMARY KEY REFERENCES bookmarks(id) ON DELETE CASCADE,
  user_id TEXT NOT NULL,
  embedding TEXT NOT NULL,
  dimensions INTEGER NOT NULL,
  embedding_model TEXT NOT NULL,
  semantic_source_hash TEXT NOT NULL,
  content_for_embedding TEXT NOT NULL,
  updated_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_bookmark_embeddings_user ON bookmark_embeddings(user_id, dimensions);

CREATE TABLE IF NOT EXISTS query_embeddings_cache (
  query_hash TEXT PRIMARY KEY,
  query_text TEXT NOT NULL,
  embedding TEXT NOT NULL,
  embedding_model TEXT NOT NULL,
  created_at TEXT DEFAULT (datetime('now')),
  last_used_at TEXT DEFAULT (datetime('now')),
  use_count INTEGER NOT NULL DEFAULT 1
);

CREATE VIRTUAL TABLE IF NOT EXISTS bookmarks_fts USING fts5(
  title, notes, content_text, description, url,
  content='bookmarks',
  content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS bookmarks_fts_ai AFTER INSERT ON bookmarks BEGIN
  INSERT INTO bookmarks_fts(rowid, title, notes, content_text, description, url)
  VALUES (new.id, new.title, new.notes, new.content_text, new.description, new.url);
END;

CREATE TRIGGER IF NOT EXISTS bookmarks_fts_ad AFTER DELETE ON bookmarks BEGIN
  INSERT INTO bookmarks_fts(bookmarks_fts, rowid, title, notes, content_text, description, url)
  VALUES ('delete', old.id, old.title, old.notes, old.content_text, old.description, old.url);
END;

CREATE TRIGGER IF NOT EXISTS bookmarks_fts_au AFTER UPDATE ON bookmarks BEGIN
  INSERT INTO bookmarks_fts(bookmarks_fts, rowid, title, notes, content_text, description, url)
  VALUES ('delete', old.id, old.title, old.notes, old.content_text, old.description, old.url);
  INSERT INTO bookmarks_fts(rowid, title, notes, content_text, description, url)
  VALUES (new.id, new.title, new.notes, new.content_text, new.description, new.url);
END;
"""

BOOKMARK_COLUMNS = "b.id, b.url, b.title, b.description, b.site_name, b.image_url, b.notes, b.created_at"

# Columns callers may change through update_bookmark
UPDATABLE_COLUMNS = {
    "url_canonical",
    "title",
    "description",
    "site_name",
    "image_url",
    "notes",
    "content_text",
    "archived",
}

# Params: model, model, user_id, user_id
NEEDS_EMBEDDING_SQL = """
    (e.bookmark_id IS NULL OR (? IS NOT NULL AND e.embedding_model != ?))
    AND (? IS NULL OR b.user_id = ?)
    AND (
        trim(coalesce(b.title, '')) != '' OR trim(coalesce(b.notes, '')) != ''
        OR trim(coalesce(b.content_text, '')) != '' OR trim(coalesce(b.description, '')) != ''
        OR trim(coalesce(b.site_name, '')) != ''
        OR EXISTS (SELECT 1 FROM bookmark_tags t WHERE t.bookmark_id = b.id)
    )
"""

# Searched by the keyword fallback
KEYWORD_FIELDS = ("title", "notes", "content_text", "description", "url")


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


def _like_pattern(term: str) -> str:
    escaped = term.casefold().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def fts_query(text: str) -> str | None:
    """Build an FTS5 MATCH expression that ORs the quoted query words."""
    tokens = re.findall(r"\w+", text.lower())
    if not tokens:
        return None
    return " OR ".join(f'"{t}"' for t in dict.fromkeys(tokens))


def connect(db_path: str, timeout: float = 8.0) -> sqlite3.Connection:
    """Open a connection with sqlite-vec loaded and foreign keys enforced."""
    conn = sqlite3.connect(db_path, timeout=timeout, check_same_thread=False)
    conn.row_factory = sqlite3.Row

    # sqlite-vec must be loaded into this connection
    conn.enable_load_extension(True)
    sqlite_vec.load(conn)
    conn.enable_load_extension(False)

    # SQLite's lower() only folds ASCII
    conn.create_function("casefold", 1, _casefold, deterministic=True)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@dataclass
class DB:
    conn: sqlite3.Connection

    def init(self) -> None:
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Translate sqlite errors into StoreError, rolling back open work."""
        try:
            yield
        except sqlite3.Error as e:
            if self.conn.in_transaction:
                self.conn.rollback()
            raise StoreError(f"{operation} failed: {e}") from e

    # ==================== Bookmarks ====================

    def create_bookmark(
        self,
        *,
        user_id: str,
        url: str,
        url_canonical: str | None = None,
        title: str | None = None,
        description: str | None = None,
        site_name: str | None = None,
        image_url: str | None = None,
        notes: str | None = None,
        content_text: str | None = None,
    ) -> int:
        """Insert a bookmark and return its id.

        Raises:
            Conflict: user_id already has a bookmark with this url_canonical.
        """
        with self._guard("create_bookmark"):
            try:
                cur = self.conn.execute(
                    """
                    INSERT INTO bookmarks (user_id, url, url_canonical, title, description,
                                           site_name, image_url, notes, content_text)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (user_id, url, url_canonical, title, description, site_name, image_url, notes, content_text),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" not in str(e):
                    raise
                self.conn.rollback()
                raise Conflict("Bookmark already exists") from e
            self.conn.commit()
            return cur.lastrowid

    def get_bookmark(self, bookmark_id: int) -> dict[str, Any] | None:
        """Get a single bookmark by ID with all fields."""
        with self._guard("get_bookmark"):
            cur = self.conn.execute(
                """
                SELECT id, user_id, url, url_canonical, title, description, site_name,
                       image_url, notes, content_text, archived, created_at, updated_at
                FROM bookmarks WHERE id = ?
                """,
                (bookmark_id,),
            )
            row = cur.fetchone()
        if not row:
            return None
        bookmark = dict(row)
        bookmark["archived"] = bool(bookmark["archived"])
        bookmark["tags"] = self.get_tags(bookmark_id)
        return bookmark

    def update_bookmark(self, bookmark_id: int, **fields: Any) -> None:
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{col} = ?" for col in fields)
        with self._guard("update_bookmark"):
            self.conn.execute(
                f"UPDATE bookmarks SET {assignments}, updated_at = datetime('now') WHERE id = ?",
                (*fields.values(), bookmark_id),
            )
            self.conn.commit()

    def delete_bookmark(self, bookmark_id: int, user_id: str) -> bool:
        """Delete a bookmark owned by user_id. Tags and embedding cascade."""
        with self._guard("delete_bookmark"):
            cur = self.conn.execute(
                "DELETE FROM bookmarks WHERE id = ? AND user_id = ?",
                (bookmark_id, user_id),
            )
            self.conn.commit()
            return cur.rowcount > 0

    def get_tags(self, bookmark_id: int) -> list[str]:
        with self._guard("get_tags"):
            cur = self.conn.execute(
                "SELECT tag FROM bookmark_tags WHERE bookmark_id = ? ORDER BY tag",
                (bookmark_id,),
            )
            return [r[0] for r in cur.fetchall()]

    def set_tags(self, bookmark_id: int, user_id: str, tags: list[str]) -> None:
        """Replace the tag set of a bookmark."""
        clean = sorted({t.strip() for t in tags if t and t.strip()})
        with self._guard("set_tags"):
            self.conn.execute("DELETE FROM bookmark_tags WHERE bookmark_id = ?", (bookmark_id,))
            self.conn.executemany(
                "INSERT INTO bookmark_tags (bookmark_id, user_id, tag) VALUES (?, ?, ?)",
                [(bookmark_id, user_id, t) for t in clean],
            )
            self.conn.commit()

    def add_tag(self, bookmark_id: int, user_id: str, tag: str) -> None:
        with self._guard("add_tag"):
            self.conn.execute(
                "INSERT OR IGNORE INTO bookmark_tags (bookmark_id, user_id, tag) VALUES (?, ?, ?)",
                (bookmark_id, user_id, tag),
            )
            self.conn.commit()

    # ==================== Document Embeddings ====================

    def get_document_embedding(self, bookmark_id: int) -> dict[str, Any] | None:
        with self._guard("get_document_embedding"):
            cur = self.conn.execute(
                """
                SELECT bookmark_id, user_id, embedding, dimensions, embedding_model,
                       semantic_source_hash, content_for_embedding, updated_at
                FROM bookmark_embeddings WHERE bookmark_id = ?
                """,
                (bookmark_id,),
            )
            row = cur.fetchone()
        return dict(row) if row else None

    def upsert_document_embedding(
        self,
        *,
        bookmark_id: int,
        user_id: str,
        vector: list[float],
        model: str,
        semantic_source_hash: str,
        content_for_embedding: str,
    ) -> None:
        """Insert or replace the embedding of a bookmark in one statement."""
        with self._guard("upsert_document_embedding"):
            self.conn.execute(
                """
                INSERT INTO bookmark_embeddings (bookmark_id, user_id, embedding, dimensions,
                    embedding_model, semantic_source_hash, content_for_embedding, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, datetime('now'))
                ON CONFLICT(bookmark_id) DO UPDATE SET
                    user_id = excluded.user_id,
                    embedding = excluded.embedding,
                    dimensions = excluded.dimensions,
                    embedding_model = excluded.embedding_model,
                    semantic_source_hash = excluded.semantic_source_hash,
                    content_for_embedding = excluded.content_for_embedding,
                    updated_at = excluded.updated_at
                """,
                (
                    bookmark_id,
                    user_id,
                    vector_to_literal(vector),
                    len(vector),
                    model,
                    semantic_source_hash,
                    content_for_embedding,
                ),
            )
            self.conn.commit()

    def get_bookmarks_without_embedding(
        self,
        limit: int = 100,
        user_id: str | None = None,
        model: str | None = None,
    ) -> list[dict[str, Any]]:
        """Embeddable bookmarks (id, user_id) lacking an embedding.

        With model given, bookmarks embedded by any other model count as
        lacking one. Bookmarks without any semantic text are never returned.
        """
        with self._guard("get_bookmarks_without_embedding"):
            cur = self.conn.execute(
                f"""
                SELECT b.id, b.user_id
                FROM bookmarks b
                LEFT JOIN bookmark_embeddings e ON e.bookmark_id = b.id
                WHERE {NEEDS_EMBEDDING_SQL}
                ORDER BY b.id
                LIMIT ?
                """,
                (model, model, user_id, user_id, limit),
            )
            return [dict(r) for r in cur.fetchall()]

    def count_bookmarks_without_embedding(self, user_id: str | None = None, model: str | None = None) -> int:
        with self._guard("count_bookmarks_without_embedding"):
            cur = self.conn.execute(
                f"""
                SELECT COUNT(*)
                FROM bookmarks b
                LEFT JOIN bookmark_embeddings e ON e.bookmark_id = b.id
                WHERE {NEEDS_EMBEDDING_SQL}
                """,
                (model, model, user_id, user_id),
            )
            return cur.fetchone()[0]

    def get_embedding_stats(self, user_id: str | None = None) -> dict[str, int]:
        """Get embedding statistics, for one user or (user_id=None) overall.

        cached_queries is only reported overall; the query cache is shared.
        """
        with self._guard("get_embedding_stats"):
            total = self.conn.execute(
                "SELECT COUNT(*) FROM bookmarks b WHERE (? IS NULL OR b.user_id = ?)",
                (user_id, user_id),
            ).fetchone()[0]
            embedded = self.conn.execute(
                """
                SELECT COUNT(*) FROM bookmark_embeddings e
                JOIN bookmarks b ON b.id = e.bookmark_id
                WHERE (? IS NULL OR b.user_id = ?)
                """,
                (user_id, user_id),
            ).fetchone()[0]
            stats = {"total": total, "embedded": embedded, "pending": total - embedded}
            if user_id is None:
                stats["cached_queries"] = self.conn.execute(
                    "SELECT COUNT(*) FROM query_embeddings_cache"
                ).fetchone()[0]
        return stats

    # ==================== Query Embedding Cache ====================

    def get_cached_query_embedding(self, query_hash: str) -> dict[str, Any] | None:
        """Point lookup by query hash; None on a miss."""
        with self._guard("get_cached_query_embedding"):
            cur = self.conn.execute(
                """
                SELECT query_hash, query_text, embedding, embedding_model,
                       created_at, last_used_at, use_count
                FROM query_embeddings_cache WHERE query_hash = ?
                """,
                (query_hash,),
            )
            row = cur.fetchone()
        return dict(row) if row else None

    def save_query_embedding(
        self,
        *,
        query_hash: str,
        query_text: str,
        vector: list[float],
        model: str,
    ) -> None:
        """Store a query embedding. Concurrent writers: last one wins."""
        with self._guard("save_query_embedding"):
            self.conn.execute(
                """
                INSERT INTO query_embeddings_cache (query_hash, query_text, embedding,
                    embedding_model, created_at, last_used_at, use_count)
                VALUES (?, ?, ?, ?, datetime('now'), datetime('now'), 1)
                ON CONFLICT(query_hash) DO UPDATE SET
                    query_text = excluded.query_text,
                    embedding = excluded.embedding,
                    embedding_model = excluded.embedding_model,
                    created_at = excluded.created_at,
                    last_used_at = excluded.last_used_at,
                    use_count = 1
                """,
                (query_hash, query_text, vector_to_literal(vector), model),
            )
            self.conn.commit()

    def touch_query_cache(self, query_hash: str) -> None:
        with self._guard("touch_query_cache"):
            self.conn.execute(
                """
                UPDATE query_embeddings_cache
                SET last_used_at = datetime('now'), use_count = use_count + 1
                WHERE query_hash = ?
                """,
                (query_hash,),
            )
            self.conn.commit()

    def prune_query_cache(self, max_age_days: int) -> int:
        """Delete cache entries not used within max_age_days. Returns count."""
        with self._guard("prune_query_cache"):
            cur = self.conn.execute(
                "DELETE FROM query_embeddings_cache WHERE last_used_at < datetime('now', ?)",
                (f"-{int(max_age_days)} days",),
            )
            self.conn.commit()
            return cur.rowcount

    # ==================== Search ====================

    def match_bookmarks(
        self,
        user_id: str,
        query_vector: list[float],
        query_text: str,
        limit: int,
    ) -> list[RankedBookmark]:
        """Hybrid ranking: cosine similarity blended with FTS5 relevance.

        Only non-archived bookmarks of user_id are considered, and only
        embeddings with the query's dimension are compared.
        """
        candidates = limit * 2  # Get more to merge
        with self._guard("match_bookmarks"):
            cur = self.conn.execute(
                f"""
                SELECT {BOOKMARK_COLUMNS},
                       vec_distance_cosine(vec_f32(e.embedding), vec_f32(?)) AS distance
                FROM bookmark_embeddings e
                JOIN bookmarks b ON b.id = e.bookmark_id
                WHERE b.user_id = ? AND b.archived = 0 AND e.dimensions = ?
                ORDER BY distance
                LIMIT ?
                """,
                (vector_to_literal(query_vector), user_id, len(query_vector), candidates),
            )
            semantic = [
                RankedBookmark.from_row(
                    r,
                    semantic_score=similarity_from_distance(r["distance"]),
                    matched_by="semantic",
                )
                for r in cur.fetchall()
            ]

            keyword: list[RankedBookmark] = []
            match = fts_query(query_text)
            if match:
                cur = self.conn.execute(
                    f"""
                    SELECT {BOOKMARK_COLUMNS}, bm25(bookmarks_fts) AS relevance
                    FROM bookmarks_fts
                    JOIN bookmarks b ON b.id = bookmarks_fts.rowid
                    WHERE bookmarks_fts MATCH ? AND b.user_id = ? AND b.archived = 0
                    ORDER BY relevance
                    LIMIT ?
                    """,
                    (match, user_id, candidates),
                )
                keyword = [
                    RankedBookmark.from_row(
                        r,
                        keyword_score=relevance_from_bm25(r["relevance"]),
                        matched_by="keyword",
                    )
                    for r in cur.fetchall()
                ]

        return merge_ranked(semantic, keyword, limit=limit)

    def keyword_search(self, user_id: str, query: str, limit: int) -> list[RankedBookmark]:
        """Substring search, newest first.

        If the query is a URL or bare domain, bookmarks whose URL contains
        that domain come first. Otherwise (and to fill up) every query word
        must appear, case-insensitively, in one of the keyword fields.
        """
        results: list[RankedBookmark] = []
        with self._guard("keyword_search"):
            domain = url_domain(query)
            if domain:
                cur = self.conn.execute(
                    f"""
                    SELECT {BOOKMARK_COLUMNS}
                    FROM bookmarks b
                    WHERE b.user_id = ? AND b.archived = 0 AND casefold(b.url) LIKE ? ESCAPE '\\'
                    ORDER BY b.created_at DESC, b.id DESC
                    LIMIT ?
                    """,
                    (user_id, _like_pattern(domain), limit),
                )
                results = [RankedBookmark.from_row(r, matched_by="domain") for r in cur.fetchall()]

            tokens = query.casefold().split()
            remaining = limit - len(results)
            if tokens and remaining > 0:
                field_match = " OR ".join(
                    f"casefold(coalesce(b.{f}, '')) LIKE ? ESCAPE '\\'" for f in KEYWORD_FIELDS
                )
                where = " AND ".join(f"({field_match})" for _ in tokens)
                params: list[Any] = [user_id]
                for t in tokens:
                    params.extend([_like_pattern(t)] * len(KEYWORD_FIELDS))

                seen = [b.id for b in results]
                exclude = ""
                if seen:
                    exclude = f" AND b.id NOT IN ({','.join('?' * len(seen))})"
                    params.extend(seen)
                params.append(remaining)

                cur = self.conn.execute(
                    f"""
                    SELECT {BOOKMARK_COLUMNS}
                    FROM bookmarks b
                    WHERE b.user_id = ? AND b.archived = 0 AND {where}{exclude}
                    ORDER BY b.created_at DESC, b.id DESC
                    LIMIT ?
                    """,
                    params,
                )
                results.extend(RankedBookmark.from_row(r, matched_by="keyword") for r in cur.fetchall())

        return results


_db: DB | None = None


def init_db(settings: Settings | None = None) -> DB:
    global _db
    s = settings or Settings.from_env()
    directory = os.path.dirname(s.db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    _db = DB(conn=connect(s.db_path, timeout=s.store_timeout))
    _db.init()
    logger.info(f"Database ready at {s.db_path}")
    return _db


def get_db() -> DB:
    assert _db is not None, "DB not initialized"
    return _db
