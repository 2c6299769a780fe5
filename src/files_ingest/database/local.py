import sqlite3
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple, Iterator

from files_ingest.schemas import (
    AuditLogEntry,
    FileRecord,
    FileStatus,
    ProcessingOutcome,
    ShareRecord,
    UserRecord,
    UserRole,
    UserUsage,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "files_ingest.db"

# Fixed width so timestamps compare correctly as strings inside SQL.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


@contextmanager
def get_connection(db_path: str = DEFAULT_DB_PATH) -> Iterator[sqlite3.Connection]:
    """Open a connection with row access by name and foreign keys enabled."""
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(db_path: str = DEFAULT_DB_PATH) -> Iterator[sqlite3.Connection]:
    """Run the body inside one write transaction; any exception rolls it back."""
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize database with all required tables."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
                storage_quota_bytes INTEGER NOT NULL,
                files_quota INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS files (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                original_name TEXT NOT NULL,
                storage_key TEXT NOT NULL UNIQUE,
                size_bytes INTEGER NOT NULL,
                sha256 TEXT,
                detected_mime TEXT,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'scanning', 'clean', 'quarantined', 'rejected')),
                reason TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                scanned_at TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS file_shares (
                id TEXT PRIMARY KEY,
                file_id TEXT NOT NULL REFERENCES files(id) ON DELETE CASCADE,
                created_by TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                share_token TEXT NOT NULL UNIQUE,
                expires_at TEXT NOT NULL,
                one_time_use INTEGER NOT NULL DEFAULT 0,
                used_at TEXT,
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS audit_logs (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                action TEXT NOT NULL,
                target_type TEXT NOT NULL,
                target_id TEXT,
                metadata TEXT,
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_files_owner_id ON files(owner_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_files_status ON files(status)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_files_sha256 ON files(sha256)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_file_shares_file_id ON file_shares(file_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_file_shares_expires_at ON file_shares(expires_at)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_audit_logs_user_id ON audit_logs(user_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_audit_logs_action ON audit_logs(action)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_audit_logs_created_at ON audit_logs(created_at)')

        conn.commit()
    logger.info("Database initialized at %s", db_path)


#################
# --- Users --- #
#################

def create_user(
    user_id: str,
    storage_quota_bytes: int,
    files_quota: int,
    role: UserRole = UserRole.USER,
    db_path: str = DEFAULT_DB_PATH,
) -> UserRecord:
    with get_connection(db_path) as conn:
        conn.execute(
            'INSERT INTO users (id, role, storage_quota_bytes, files_quota, created_at) VALUES (?, ?, ?, ?, ?)',
            (user_id, UserRole(role).value, storage_quota_bytes, files_quota, format_ts(utc_now())),
        )
        conn.commit()
    return get_user(user_id, db_path)


def get_user(user_id: str, db_path: str = DEFAULT_DB_PATH) -> Optional[UserRecord]:
    with get_connection(db_path) as conn:
        row = conn.execute('SELECT * FROM users WHERE id = ?', (user_id,)).fetchone()
    return UserRecord(**dict(row)) if row else None


def get_usage(owner_id: str, db_path: str = DEFAULT_DB_PATH) -> Tuple[int, int]:
    """Bytes and file count held by a user. Everything except ``rejected`` counts."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            '''
            SELECT COALESCE(SUM(size_bytes), 0) AS used_storage, COUNT(*) AS file_count
            FROM files WHERE owner_id = ? AND status != ?
            ''',
            (owner_id, FileStatus.REJECTED.value),
        ).fetchone()
    return int(row["used_storage"]), int(row["file_count"])


def list_users_with_usage(limit: int, offset: int, db_path: str = DEFAULT_DB_PATH) -> Tuple[List[UserUsage], int]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            '''
            SELECT u.*, COUNT(f.id) AS file_count, COALESCE(SUM(f.size_bytes), 0) AS used_storage
            FROM users u
            LEFT JOIN files f ON u.id = f.owner_id AND f.status != 'rejected'
            GROUP BY u.id
            ORDER BY u.created_at DESC
            LIMIT ? OFFSET ?
            ''',
            (limit, offset),
        ).fetchall()
        total = conn.execute('SELECT COUNT(*) FROM users').fetchone()[0]

    users = []
    for row in rows:
        data = dict(row)
        file_count = data.pop("file_count")
        used_storage = data.pop("used_storage")
        users.append(UserUsage(user=UserRecord(**data), used_storage_bytes=used_storage, file_count=file_count))
    return users, total


#################
# --- Files --- #
#################

def _file_from_row(row: Optional[sqlite3.Row]) -> Optional[FileRecord]:
    return FileRecord(**dict(row)) if row else None


def insert_file(
    file_id: str,
    owner_id: str,
    original_name: str,
    storage_key: str,
    size_bytes: int,
    db_path: str = DEFAULT_DB_PATH,
) -> FileRecord:
    """Add the initial ``pending`` record when an upload is admitted."""
    now = format_ts(utc_now())
    with get_connection(db_path) as conn:
        conn.execute(
            '''
            INSERT INTO files (id, owner_id, original_name, storage_key, size_bytes, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ''',
            (file_id, owner_id, original_name, storage_key, size_bytes, FileStatus.PENDING.value, now, now),
        )
        conn.commit()
    return get_file(file_id, db_path)


def get_file(file_id: str, db_path: str = DEFAULT_DB_PATH) -> Optional[FileRecord]:
    with get_connection(db_path) as conn:
        row = conn.execute('SELECT * FROM files WHERE id = ?', (file_id,)).fetchone()
    return _file_from_row(row)


def list_files(
    owner_id: Optional[str] = None,
    status: Optional[FileStatus] = None,
    limit: int = 20,
    offset: int = 0,
    db_path: str = DEFAULT_DB_PATH,
) -> Tuple[List[FileRecord], int]:
    """List files newest first. ``owner_id=None`` lists every user's files."""
    conditions = []
    params: List[Any] = []
    if owner_id is not None:
        conditions.append('owner_id = ?')
        params.append(owner_id)
    if status is not None:
        conditions.append('status = ?')
        params.append(FileStatus(status).value)
    where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    with get_connection(db_path) as conn:
        rows = conn.execute(
            f'SELECT * FROM files {where_clause} ORDER BY created_at DESC LIMIT ? OFFSET ?',
            (*params, limit, offset),
        ).fetchall()
        total = conn.execute(f'SELECT COUNT(*) FROM files {where_clause}', params).fetchone()[0]
    return [_file_from_row(row) for row in rows], total


def mark_scanning(conn: sqlite3.Connection, file_id: str, owner_id: str) -> Optional[FileRecord]:
    """Flip an owned ``pending`` file to ``scanning`` inside the caller's transaction."""
    cursor = conn.execute(
        'UPDATE files SET status = ?, updated_at = ? WHERE id = ? AND owner_id = ? AND status = ?',
        (FileStatus.SCANNING.value, format_ts(utc_now()), file_id, owner_id, FileStatus.PENDING.value),
    )
    if cursor.rowcount == 0:
        return None
    row = conn.execute('SELECT * FROM files WHERE id = ?', (file_id,)).fetchone()
    return _file_from_row(row)


def find_clean_duplicate(sha256: str, exclude_file_id: str, db_path: str = DEFAULT_DB_PATH) -> Optional[FileRecord]:
    with get_connection(db_path) as conn:
        row = conn.execute(
            'SELECT * FROM files WHERE sha256 = ? AND id != ? AND status = ? ORDER BY scanned_at LIMIT 1',
            (sha256, exclude_file_id, FileStatus.CLEAN.value),
        ).fetchone()
    return _file_from_row(row)


def commit_processing_result(file_id: str, outcome: ProcessingOutcome, db_path: str = DEFAULT_DB_PATH) -> bool:
    """Write the whole classification in one update.

    Only a ``scanning`` row is updated, so a terminal state is never overwritten.
    Returns False when another attempt already finished the file.
    """
    now = format_ts(utc_now())
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            '''
            UPDATE files
            SET sha256 = ?, detected_mime = ?, status = ?, reason = ?, updated_at = ?, scanned_at = ?
            WHERE id = ? AND status = ?
            ''',
            (
                outcome.sha256,
                outcome.detected_mime,
                outcome.status.value,
                outcome.reason,
                now,
                now,
                file_id,
                FileStatus.SCANNING.value,
            ),
        )
        conn.commit()
        return cursor.rowcount == 1


def mark_rejected(file_id: str, reason: str, db_path: str = DEFAULT_DB_PATH) -> bool:
    now = format_ts(utc_now())
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            'UPDATE files SET status = ?, reason = ?, updated_at = ?, scanned_at = ? WHERE id = ? AND status = ?',
            (FileStatus.REJECTED.value, reason, now, now, file_id, FileStatus.SCANNING.value),
        )
        conn.commit()
        return cursor.rowcount == 1


def override_quarantined(file_id: str, db_path: str = DEFAULT_DB_PATH) -> bool:
    """Operator override: ``quarantined`` -> ``clean``. No other source state is accepted."""
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            'UPDATE files SET status = ?, reason = NULL, updated_at = ? WHERE id = ? AND status = ?',
            (FileStatus.CLEAN.value, format_ts(utc_now()), file_id, FileStatus.QUARANTINED.value),
        )
        conn.commit()
        return cursor.rowcount == 1


def delete_file(file_id: str, db_path: str = DEFAULT_DB_PATH) -> bool:
    with get_connection(db_path) as conn:
        cursor = conn.execute('DELETE FROM files WHERE id = ?', (file_id,))
        conn.commit()
        return cursor.rowcount == 1


##################
# --- Shares --- #
##################

def insert_share(
    share_id: str,
    file_id: str,
    created_by: str,
    share_token: str,
    expires_at: datetime,
    one_time_use: bool,
    db_path: str = DEFAULT_DB_PATH,
) -> ShareRecord:
    with get_connection(db_path) as conn:
        conn.execute(
            '''
            INSERT INTO file_shares (id, file_id, created_by, share_token, expires_at, one_time_use, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ''',
            (share_id, file_id, created_by, share_token, format_ts(expires_at), int(one_time_use), format_ts(utc_now())),
        )
        conn.commit()
    return get_share_by_token(share_token, db_path)


def get_share_by_token(share_token: str, db_path: str = DEFAULT_DB_PATH) -> Optional[ShareRecord]:
    with get_connection(db_path) as conn:
        row = conn.execute('SELECT * FROM file_shares WHERE share_token = ?', (share_token,)).fetchone()
    return ShareRecord(**dict(row)) if row else None


def consume_share(share_id: str, now: datetime, db_path: str = DEFAULT_DB_PATH) -> bool:
    """Mark a one-time share used only if nobody did so first. Returns whether this call won."""
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            'UPDATE file_shares SET used_at = ? WHERE id = ? AND used_at IS NULL AND expires_at > ?',
            (format_ts(now), share_id, format_ts(now)),
        )
        conn.commit()
        return cursor.rowcount == 1


#####################
# --- Audit logs --- #
#####################

def insert_audit_log(
    log_id: str,
    user_id: Optional[str],
    action: str,
    target_type: str,
    target_id: Optional[str],
    metadata: Dict[str, Any],
    db_path: str = DEFAULT_DB_PATH,
) -> None:
    with get_connection(db_path) as conn:
        conn.execute(
            '''
            INSERT INTO audit_logs (id, user_id, action, target_type, target_id, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ''',
            (log_id, user_id, action, target_type, target_id, json.dumps(metadata, default=str), format_ts(utc_now())),
        )
        conn.commit()


def list_audit_logs(
    limit: int = 100,
    offset: int = 0,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db_path: str = DEFAULT_DB_PATH,
) -> Tuple[List[AuditLogEntry], int]:
    conditions = []
    params: List[Any] = []
    for column, value in (
        ("user_id", user_id),
        ("action", action),
        ("target_type", target_type),
        ("target_id", target_id),
    ):
        if value is not None:
            conditions.append(f"{column} = ?")
            params.append(value)
    if start_date is not None:
        conditions.append("created_at >= ?")
        params.append(format_ts(start_date))
    if end_date is not None:
        conditions.append("created_at <= ?")
        params.append(format_ts(end_date))
    where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    with get_connection(db_path) as conn:
        rows = conn.execute(
            f'SELECT * FROM audit_logs {where_clause} ORDER BY created_at DESC LIMIT ? OFFSET ?',
            (*params, limit, offset),
        ).fetchall()
        total = conn.execute(f'SELECT COUNT(*) FROM audit_logs {where_clause}', params).fetchone()[0]

    logs = []
    for row in rows:
        data = dict(row)
        data["metadata"] = json.loads(data["metadata"]) if data.get("metadata") else {}
        logs.append(AuditLogEntry(**data))
    return logs, total
