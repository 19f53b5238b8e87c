"""SQLite content store: users, sessions, questions, responses, weaknesses, reminders."""
import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from itertools import count
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from clock import isoformat
from db_pool import SQLiteConnectionPool
from env_validation import get_env_float, get_env_int
from schemas import Question, Session, User, dump_session_state

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")


class StoreError(RuntimeError):
    """Raised when the store cannot complete a critical read or write."""


class SessionConflictError(StoreError):
    """The session changed underneath this turn (duplicate or concurrent delivery)."""


_USER_FIELDS = frozenset(
    {
        "grade",
        "skill_rate",
        "streak_count",
        "total_answered",
        "total_correct",
        "difficulty_band",
        "current_question_id",
        "current_menu",
        "active_session_id",
        "last_active_at",
    }
)

_SESSION_FIELDS = (
    "topic",
    "panic_level",
    "stress_level",
    "reason",
    "pre_confidence",
    "post_confidence",
    "ladder_action",
    "exam_date",
    "preferred_time",
    "requested_subject",
    "problem_details",
    "burst_score",
    "next_action",
    "plan_opt_in",
    "reminder_opt_in",
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    grade TEXT CHECK (grade IS NULL OR grade IN ('10', '11', 'varsity')),
    skill_rate REAL NOT NULL DEFAULT 0.5,
    streak_count INTEGER NOT NULL DEFAULT 0,
    total_answered INTEGER NOT NULL DEFAULT 0,
    total_correct INTEGER NOT NULL DEFAULT 0,
    difficulty_band TEXT,
    current_question_id TEXT,
    current_menu TEXT NOT NULL DEFAULT 'welcome',
    active_session_id INTEGER,
    last_active_at TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL REFERENCES users(id),
    flow_type TEXT NOT NULL,
    started_at TEXT NOT NULL,
    ended_at TEXT,
    state TEXT NOT NULL DEFAULT '{}',
    version INTEGER NOT NULL DEFAULT 0,
    topic TEXT,
    panic_level INTEGER,
    stress_level INTEGER,
    reason TEXT,
    pre_confidence INTEGER,
    post_confidence INTEGER,
    ladder_action TEXT,
    exam_date TEXT,
    preferred_time TEXT,
    requested_subject TEXT,
    problem_details TEXT,
    burst_score INTEGER,
    next_action TEXT,
    plan_opt_in INTEGER,
    reminder_opt_in INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_sessions_active
    ON sessions(user_id, flow_type, ended_at, started_at);

CREATE TABLE IF NOT EXISTS questions (
    id TEXT PRIMARY KEY,
    subject TEXT NOT NULL DEFAULT 'math',
    topic TEXT NOT NULL,
    difficulty TEXT NOT NULL CHECK (difficulty IN ('easy', 'medium', 'hard')),
    question_text TEXT NOT NULL,
    choices TEXT NOT NULL,
    correct_choice TEXT NOT NULL,
    explanation TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    times_served INTEGER NOT NULL DEFAULT 0,
    times_answered INTEGER NOT NULL DEFAULT 0,
    times_correct INTEGER NOT NULL DEFAULT 0,
    accuracy_rate REAL,
    last_served_at TEXT,
    created_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_questions_rotation
    ON questions(subject, topic, difficulty, is_active, last_served_at, times_served);

CREATE TABLE IF NOT EXISTS responses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    question_id TEXT NOT NULL,
    session_id INTEGER,
    submitted_choice TEXT NOT NULL,
    is_correct INTEGER NOT NULL,
    answered_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_responses_user ON responses(user_id, answered_at);

CREATE TABLE IF NOT EXISTS weaknesses (
    user_id TEXT NOT NULL,
    weakness_tag TEXT NOT NULL,
    occurrence_count INTEGER NOT NULL DEFAULT 1,
    first_logged_at TEXT NOT NULL,
    last_logged_at TEXT NOT NULL,
    PRIMARY KEY (user_id, weakness_tag)
);

CREATE TABLE IF NOT EXISTS reminders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    scheduled_for TEXT NOT NULL,
    metadata TEXT,
    created_at TEXT NOT NULL
);
"""


def _row_to_user(row: sqlite3.Row) -> User:
    return User.model_validate(dict(row))


def _row_to_session(row: sqlite3.Row) -> Session:
    data = dict(row)
    data.pop("updated_at", None)
    for flag in ("plan_opt_in", "reminder_opt_in"):
        if data.get(flag) is not None:
            data[flag] = bool(data[flag])
    return Session.model_validate(data)


def _row_to_question(row: sqlite3.Row) -> Question:
    data = dict(row)
    data.pop("created_at", None)
    data["choices"] = json.loads(data.get("choices") or "[]")
    data["is_active"] = bool(data.get("is_active", 1))
    return Question.model_validate(data)


def _db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return isoformat(value)
    if isinstance(value, bool):
        return int(value)
    return value


class ContentStore:
    """Query surface the flows need, backed by a pooled SQLite database.

    Statements issued inside :meth:`transaction` share one connection and
    commit or roll back together; outside a transaction each statement
    commits on its own.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        *,
        max_connections: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.path = str(path or os.getenv("DB_PATH") or DB_PATH)
        self._pool = SQLiteConnectionPool(
            self.path,
            max_connections=max_connections or get_env_int("DB_MAX_CONNECTIONS", 10),
            timeout=timeout if timeout is not None else get_env_float("STORE_TIMEOUT", 5.0),
        )
        self._local = threading.local()
        self._savepoints = count(1)

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------
    @property
    def _active(self) -> Optional[sqlite3.Connection]:
        return getattr(self._local, "connection", None)

    def _exec(self, sql: str, params: Iterable = ()) -> sqlite3.Cursor:
        con = self._active
        if con is not None:
            return con.execute(sql, tuple(params))
        with self._pool.get_connection() as con:
            return con.execute(sql, tuple(params))

    def _query(self, sql: str, params: Iterable = ()) -> List[sqlite3.Row]:
        con = self._active
        if con is not None:
            return con.execute(sql, tuple(params)).fetchall()
        with self._pool.get_connection() as con:
            return con.execute(sql, tuple(params)).fetchall()

    @contextmanager
    def transaction(self) -> Iterator["ContentStore"]:
        """Run the enclosed calls as one unit of work on a single connection."""
        if self._active is not None:
            with self.savepoint():
                yield self
            return
        with self._pool.get_connection() as con:
            con.execute("BEGIN")
            self._local.connection = con
            try:
                yield self
                con.execute("COMMIT")
            except BaseException:
                if con.in_transaction:
                    con.execute("ROLLBACK")
                raise
            finally:
                self._local.connection = None

    @contextmanager
    def savepoint(self) -> Iterator["ContentStore"]:
        """Nested unit inside the current transaction; its failure leaves the outer one intact."""
        con = self._active
        if con is None:
            with self.transaction():
                yield self
            return
        name = f"sp_{next(self._savepoints)}"
        con.execute(f"SAVEPOINT {name}")
        try:
            yield self
        except BaseException:
            con.execute(f"ROLLBACK TO SAVEPOINT {name}")
            con.execute(f"RELEASE SAVEPOINT {name}")
            raise
        con.execute(f"RELEASE SAVEPOINT {name}")

    def init(self) -> None:
        """Create tables and indexes if they don't exist."""
        directory = os.path.dirname(os.path.abspath(self.path))
        if directory:
            os.makedirs(directory, exist_ok=True)
        with self._pool.get_connection() as con:
            con.executescript(_SCHEMA)

    def close(self) -> None:
        self._pool.close_all()

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------
    def get_user(self, user_id: str) -> Optional[User]:
        rows = self._query("SELECT * FROM users WHERE id = ?", [user_id])
        return _row_to_user(rows[0]) if rows else None

    def get_or_create_user(self, user_id: str, now: datetime) -> User:
        stamp = isoformat(now)
        self._exec(
            """
            INSERT INTO users (id, created_at, last_active_at)
            VALUES (?, ?, ?)
            ON CONFLICT(id) DO NOTHING
            """,
            (user_id, stamp, stamp),
        )
        user = self.get_user(user_id)
        if user is None:
            raise StoreError(f"user {user_id!r} could not be created")
        return user

    def update_user(self, user_id: str, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - _USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {', '.join(sorted(unknown))}")
        if not fields:
            return
        columns = sorted(fields)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        params = [_db_value(fields[column]) for column in columns]
        self._exec(f"UPDATE users SET {assignments} WHERE id = ?", (*params, user_id))

    # ------------------------------------------------------------------
    # sessions
    # ------------------------------------------------------------------
    def get_session(self, session_id: int) -> Optional[Session]:
        rows = self._query("SELECT * FROM sessions WHERE id = ?", [session_id])
        return _row_to_session(rows[0]) if rows else None

    def get_active_session(self, user_id: str, flow_type: str) -> Optional[Session]:
        rows = self._query(
            """
            SELECT * FROM sessions
            WHERE user_id = ? AND flow_type = ? AND ended_at IS NULL
            ORDER BY started_at DESC, id DESC
            LIMIT 1
            """,
            (user_id, flow_type),
        )
        return _row_to_session(rows[0]) if rows else None

    def create_session(self, user_id: str, flow_type: str, state: Any, now: datetime) -> Session:
        stamp = isoformat(now)
        cur = self._exec(
            """
            INSERT INTO sessions (user_id, flow_type, started_at, state, version, updated_at)
            VALUES (?, ?, ?, ?, 0, ?)
            """,
            (user_id, flow_type, stamp, dump_session_state(state), stamp),
        )
        session = self.get_session(cur.lastrowid)
        if session is None:
            raise StoreError("session insert was not visible")
        return session

    def save_session(self, session: Session, now: Optional[datetime] = None) -> Session:
        """Persist ``session`` if nobody else wrote it since it was read."""
        columns = ["state", "ended_at", *_SESSION_FIELDS, "updated_at", "version"]
        values = [
            dump_session_state(session.state),
            _db_value(session.ended_at),
            *(_db_value(getattr(session, name)) for name in _SESSION_FIELDS),
            isoformat(now) if now else None,
            session.version + 1,
        ]
        assignments = ", ".join(f"{column} = ?" for column in columns)
        cur = self._exec(
            f"UPDATE sessions SET {assignments} WHERE id = ? AND version = ?",
            (*values, session.id, session.version),
        )
        if cur.rowcount != 1:
            raise SessionConflictError(
                f"session {session.id} changed since version {session.version}"
            )
        return session.model_copy(update={"version": session.version + 1})

    def end_session(self, session: Session, now: datetime) -> Session:
        return self.save_session(session.model_copy(update={"ended_at": now}), now)

    # ------------------------------------------------------------------
    # questions
    # ------------------------------------------------------------------
    def get_question(self, question_id: str) -> Optional[Question]:
        rows = self._query("SELECT * FROM questions WHERE id = ?", [question_id])
        return _row_to_question(rows[0]) if rows else None

    def find_question(
        self,
        *,
        subject: str,
        difficulty: Optional[str] = None,
        topic: Optional[str] = None,
        exclude_ids: Sequence[str] = (),
    ) -> Optional[Question]:
        """Least recently served active question matching the filters."""
        clauses = ["is_active = 1", "subject = ?"]
        params: List[Any] = [subject]
        if topic is not None:
            clauses.append("topic = ?")
            params.append(topic)
        if difficulty is not None:
            clauses.append("difficulty = ?")
            params.append(difficulty)
        exclude = list(dict.fromkeys(exclude_ids))
        if exclude:
            clauses.append(f"id NOT IN ({', '.join('?' for _ in exclude)})")
            params.extend(exclude)
        rows = self._query(
            f"""
            SELECT * FROM questions
            WHERE {' AND '.join(clauses)}
            ORDER BY last_served_at IS NOT NULL, last_served_at ASC, times_served ASC, id ASC
            LIMIT 1
            """,
            params,
        )
        return _row_to_question(rows[0]) if rows else None

    def mark_question_served(self, question_id: str, user_id: str, now: datetime) -> None:
        """Record a serve and point the user at the question, together."""
        with self.savepoint():
            self._exec(
                """
                UPDATE questions
                SET times_served = times_served + 1, last_served_at = ?
                WHERE id = ?
                """,
                (isoformat(now), question_id),
            )
            cur = self._exec(
                "UPDATE users SET current_question_id = ? WHERE id = ?",
                (question_id, user_id),
            )
            if cur.rowcount != 1:
                raise StoreError(f"user {user_id!r} missing while serving {question_id}")

    def record_question_result(self, question_id: str, is_correct: bool) -> None:
        self._exec(
            """
            UPDATE questions
            SET times_answered = times_answered + 1,
                times_correct = times_correct + ?,
                accuracy_rate = CAST(times_correct + ? AS REAL) / (times_answered + 1)
            WHERE id = ?
            """,
            (int(is_correct), int(is_correct), question_id),
        )

    def upsert_question(self, question: Question, now: Optional[datetime] = None) -> None:
        """Insert or refresh content fields; serve statistics are kept."""
        choices = json.dumps([choice.model_dump() for choice in question.choices], ensure_ascii=False)
        self._exec(
            """
            INSERT INTO questions (
                id, subject, topic, difficulty, question_text, choices,
                correct_choice, explanation, is_active, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                subject = excluded.subject,
                topic = excluded.topic,
                difficulty = excluded.difficulty,
                question_text = excluded.question_text,
                choices = excluded.choices,
                correct_choice = excluded.correct_choice,
                explanation = excluded.explanation,
                is_active = excluded.is_active
            """,
            (
                question.id,
                question.subject,
                question.topic,
                question.difficulty,
                question.question_text,
                choices,
                question.correct_choice.strip().upper(),
                question.explanation,
                int(question.is_active),
                isoformat(now) if now else None,
            ),
        )

    def count_questions(self, subject: Optional[str] = None) -> int:
        if subject is None:
            rows = self._query("SELECT COUNT(*) AS n FROM questions WHERE is_active = 1")
        else:
            rows = self._query(
                "SELECT COUNT(*) AS n FROM questions WHERE is_active = 1 AND subject = ?",
                [subject],
            )
        return int(rows[0]["n"]) if rows else 0

    # ------------------------------------------------------------------
    # responses and weaknesses
    # ------------------------------------------------------------------
    def insert_response(
        self,
        *,
        user_id: str,
        question_id: str,
        submitted_choice: str,
        is_correct: bool,
        answered_at: datetime,
        session_id: Optional[int] = None,
    ) -> int:
        cur = self._exec(
            """
            INSERT INTO responses (user_id, question_id, session_id, submitted_choice, is_correct, answered_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, question_id, session_id, submitted_choice, int(is_correct), isoformat(answered_at)),
        )
        return int(cur.lastrowid)

    def recent_question_ids(
        self, user_id: str, *, last: int, since: Optional[datetime] = None
    ) -> List[str]:
        """Questions the user answered in their last ``last`` answers or after ``since``."""
        sql = """
            SELECT question_id FROM (
                SELECT question_id FROM responses
                WHERE user_id = ?
                ORDER BY answered_at DESC, id DESC
                LIMIT ?
            )
        """
        params: List[Any] = [user_id, last]
        if since is not None:
            sql += " UNION SELECT question_id FROM responses WHERE user_id = ? AND answered_at > ?"
            params.extend([user_id, isoformat(since)])
        return [row["question_id"] for row in self._query(sql, params)]

    def list_responses(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        rows = self._query(
            "SELECT * FROM responses WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        )
        return [dict(row) for row in rows]

    def upsert_weakness(self, user_id: str, weakness_tag: str, now: datetime) -> None:
        stamp = isoformat(now)
        self._exec(
            """
            INSERT INTO weaknesses (user_id, weakness_tag, occurrence_count, first_logged_at, last_logged_at)
            VALUES (?, ?, 1, ?, ?)
            ON CONFLICT(user_id, weakness_tag) DO UPDATE SET
                occurrence_count = occurrence_count + 1,
                last_logged_at = excluded.last_logged_at
            """,
            (user_id, weakness_tag, stamp, stamp),
        )

    def list_weaknesses(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        rows = self._query(
            """
            SELECT weakness_tag, occurrence_count, first_logged_at, last_logged_at
            FROM weaknesses
            WHERE user_id = ?
            ORDER BY occurrence_count DESC, last_logged_at DESC
            LIMIT ?
            """,
            (user_id, limit),
        )
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # reminders
    # ------------------------------------------------------------------
    def create_reminder(
        self,
        user_id: str,
        kind: str,
        scheduled_for: datetime,
        now: datetime,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> int:
        cur = self._exec(
            """
            INSERT INTO reminders (user_id, kind, scheduled_for, metadata, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                user_id,
                kind,
                isoformat(scheduled_for),
                json.dumps(dict(metadata or {}), ensure_ascii=False),
                isoformat(now),
            ),
        )
        return int(cur.lastrowid)

    def list_reminders(self, user_id: str) -> List[Dict[str, Any]]:
        rows = self._query(
            "SELECT * FROM reminders WHERE user_id = ? ORDER BY scheduled_for ASC, id ASC",
            [user_id],
        )
        result = []
        for row in rows:
            item = dict(row)
            try:
                item["metadata"] = json.loads(item.get("metadata") or "{}")
            except json.JSONDecodeError:
                item["metadata"] = {}
            result.append(item)
        return result
