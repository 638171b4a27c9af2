"""SQLite-based container processing state tracker.

Tracks sequence files through pipeline stages (indexed, extracted, archived).
Records progress and failures per container so a run can be audited or
retried.
"""

import sqlite3
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Dict, List
import threading

logger = logging.getLogger(__name__)

STAGES = ('indexed', 'extracted', 'archived')


class FileProcessingTracker:
    """Tracks container processing state and progress through pipeline stages.

    **Pipeline Stages:**

    1. **Indexed**: Header validated, frame timestamps and brightness read
    2. **Extracted**: Selected frames decoded and classified
    3. **Archived**: Particles from this container written to a closed archive

    **Database Schema:**

    SQLite table `file_processing`:

    - file_id: Container file name (e.g., RF04_2021-06-04-17-25-03.seq)
    - flight_id: Flight prefix (e.g., RF04)
    - Status: pending, processing, completed, failed
    - Timestamps: When each stage completed (ISO format)
    - Counts: frame_count, selected_frames, num_holograms
    - Metadata: seq_path, archive_path, file_size_mb, error_message

    **Thread Safety:**

    All methods are thread-safe via internal locking; the index workers
    and the archive processor share one tracker.

    **Typical Usage:**

        tracker = FileProcessingTracker(db_path)
        tracker.register_file(path.name, "RF04", seq_path=path)
        tracker.mark_stage_complete(path.name, "indexed", frame_count=2400)
        stats = tracker.get_statistics("RF04")
        tracker.close()
    """

    def __init__(self, db_path: Path | str):
        """Initialize tracker.

        Parameters
        ----------
        db_path : Path or str
            Path to SQLite database file. Created if doesn't exist.
            Typically: logs/{prefix}_file_tracker.db
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = None
        self._lock = threading.Lock()

        self._init_database()
        logger.info("File tracker initialized: %s", self.db_path)

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self):
        """Create database schema if it doesn't exist."""
        conn = self._get_connection()

        with self._lock:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS file_processing (
                    file_id TEXT PRIMARY KEY,
                    flight_id TEXT NOT NULL,

                    seq_path TEXT,
                    archive_path TEXT,

                    indexed_at TEXT,
                    extracted_at TEXT,
                    archived_at TEXT,

                    status TEXT DEFAULT 'pending',
                    error_message TEXT,

                    file_size_mb REAL,
                    frame_count INTEGER,
                    selected_frames INTEGER,
                    num_holograms INTEGER,

                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_flight_id ON file_processing(flight_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_status ON file_processing(status)")
            conn.commit()

    def register_file(self, file_id: str, flight_id: str,
                      seq_path: Optional[Path] = None) -> bool:
        """Register a container for tracking.

        Returns
        -------
        bool
            True if newly registered, False if already in the database.
        """
        conn = self._get_connection()

        with self._lock:
            cursor = conn.execute("SELECT file_id FROM file_processing WHERE file_id = ?", (file_id,))
            if cursor.fetchone():
                return False

            file_size_mb = None
            if seq_path is not None and Path(seq_path).exists():
                file_size_mb = Path(seq_path).stat().st_size / (1024 * 1024)

            conn.execute("""
                INSERT INTO file_processing (file_id, flight_id, seq_path, file_size_mb, status)
                VALUES (?, ?, ?, ?, 'pending')
            """, (file_id, flight_id, str(seq_path) if seq_path else None, file_size_mb))
            conn.commit()

            logger.debug("Registered file: %s", file_id)
            return True

    def mark_stage_complete(self, file_id: str, stage: str,
                            frame_count: Optional[int] = None,
                            selected_frames: Optional[int] = None,
                            num_holograms: Optional[int] = None,
                            archive_path: Optional[Path] = None):
        """Record that a stage finished for a container.

        ``archived`` completes the container; earlier stages leave it
        ``processing``.

        Raises
        ------
        ValueError
            If stage is not one of the pipeline stages.
        """
        if stage not in STAGES:
            raise ValueError(f"Invalid stage: {stage}. Must be one of {list(STAGES)}")

        updates = {
            f"{stage}_at": datetime.now(timezone.utc).isoformat(),
            "status": "completed" if stage == "archived" else "processing",
            "error_message": None,
        }
        if frame_count is not None:
            updates["frame_count"] = frame_count
        if selected_frames is not None:
            updates["selected_frames"] = selected_frames
        if num_holograms is not None:
            updates["num_holograms"] = num_holograms
        if archive_path is not None:
            updates["archive_path"] = str(archive_path)

        self._update(file_id, updates)
        logger.debug("Marked %s complete: %s", stage, file_id)

    def mark_failed(self, file_id: str, error: str):
        """Record a failure; the message is kept for inspection."""
        self._update(file_id, {"status": "failed", "error_message": error})
        logger.debug("Marked failed: %s (%s)", file_id, error)

    def _update(self, file_id: str, updates: Dict):
        updates = dict(updates, updated_at=datetime.now(timezone.utc).isoformat())
        columns = ", ".join(f"{col} = ?" for col in updates)

        conn = self._get_connection()
        with self._lock:
            conn.execute(
                f"UPDATE file_processing SET {columns} WHERE file_id = ?",
                (*updates.values(), file_id),
            )
            conn.commit()

    def get_file_status(self, file_id: str) -> Optional[Dict]:
        """Complete record for a container, or None if not registered."""
        conn = self._get_connection()

        with self._lock:
            cursor = conn.execute("SELECT * FROM file_processing WHERE file_id = ?", (file_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

    def get_files(self, flight_id: Optional[str] = None,
                  status: Optional[str] = None) -> List[Dict]:
        """Records filtered by flight and status, oldest registration first."""
        query = "SELECT * FROM file_processing WHERE 1 = 1"
        params = []
        if flight_id:
            query += " AND flight_id = ?"
            params.append(flight_id)
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at, file_id"

        conn = self._get_connection()
        with self._lock:
            cursor = conn.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def get_statistics(self, flight_id: Optional[str] = None) -> Dict:
        """Summary counts.

        Returns
        -------
        dict
            ``total``, ``indexed``, ``extracted``, ``archived``,
            ``completed``, ``failed``, ``processing``, ``pending``,
            ``total_frames`` and ``total_holograms``.
        """
        where_clause = "WHERE flight_id = ?" if flight_id else ""
        params = (flight_id,) if flight_id else ()

        conn = self._get_connection()
        with self._lock:
            cursor = conn.execute(f"""
                SELECT
                    COUNT(*) as total,
                    COUNT(indexed_at) as indexed,
                    COUNT(extracted_at) as extracted,
                    COUNT(archived_at) as archived,
                    SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) as completed,
                    SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) as failed,
                    SUM(CASE WHEN status = 'processing' THEN 1 ELSE 0 END) as processing,
                    SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END) as pending,
                    SUM(frame_count) as total_frames,
                    SUM(num_holograms) as total_holograms
                FROM file_processing
                {where_clause}
            """, params)
            row = cursor.fetchone()
            return dict(row) if row else {}

    def reset_failed(self, flight_id: Optional[str] = None):
        """Reset failed containers to pending so a re-run retries them."""
        now = datetime.now(timezone.utc).isoformat()
        conn = self._get_connection()

        with self._lock:
            if flight_id:
                conn.execute("""
                    UPDATE file_processing
                    SET status = 'pending', error_message = NULL, updated_at = ?
                    WHERE status = 'failed' AND flight_id = ?
                """, (now, flight_id))
            else:
                conn.execute("""
                    UPDATE file_processing
                    SET status = 'pending', error_message = NULL, updated_at = ?
                    WHERE status = 'failed'
                """, (now,))
            conn.commit()

        logger.info("Reset failed files to pending")

    def close(self):
        """Close database connection. Safe to call multiple times."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
