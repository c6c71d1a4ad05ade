"""
Database manager for Blocklift.

This module persists conversion state in DuckDB: the model each unfinished
conversion writes into, the instance-to-record mappings created during
migration, so a resumed run does not create duplicate records, and the
per-record failures skipped along the way.
"""

import duckdb
import logging
import threading
from typing import List, Optional, Dict
from datetime import datetime


class DatabaseManager:
    """
    Manages the DuckDB database holding conversion state.
    """

    def __init__(self, db_path: str = "blocklift.db"):
        """
        Initialize the database manager.

        Args:
            db_path: Path to the DuckDB database file (":memory:" for a throwaway store)
        """
        self.db_path = db_path
        self.connection = None
        # One connection is shared with the record-creation worker threads
        self._lock = threading.Lock()

    def connect(self):
        """Establish connection to the database."""
        self.connection = duckdb.connect(self.db_path)

    def disconnect(self):
        """Close the database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

    def _require_connection(self):
        if not self.connection:
            raise RuntimeError("Database connection not established")

    def initialize_database(self):
        """
        Create all necessary tables if they don't exist.
        """
        self._require_connection()

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS conversions (
                block_type_id VARCHAR PRIMARY KEY,
                destination_type_id VARCHAR NOT NULL,
                started_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                completed_at TIMESTAMP
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS block_mappings (
                block_type_id VARCHAR NOT NULL,
                destination_type_id VARCHAR NOT NULL DEFAULT '',
                instance_id VARCHAR NOT NULL,
                record_id VARCHAR NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (block_type_id, destination_type_id, instance_id)
            )
        """)

        self.connection.execute("CREATE SEQUENCE IF NOT EXISTS failure_id_seq;")
        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS record_failures (
                failure_id BIGINT PRIMARY KEY DEFAULT nextval('failure_id_seq'),
                block_type_id VARCHAR NOT NULL,
                record_id VARCHAR NOT NULL,
                field_api_key VARCHAR,
                operation VARCHAR NOT NULL,
                error_message TEXT NOT NULL,
                failed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        logging.debug(f"Conversion state database ready at {self.db_path}")

    def start_conversion(self, block_type_id: str, destination_type_id: str):
        """Remember the model a block type is being converted into, until the run completes."""
        self._require_connection()

        with self._lock:
            self.connection.execute("DELETE FROM conversions WHERE block_type_id = ?", [block_type_id])
            self.connection.execute("""
                INSERT INTO conversions (block_type_id, destination_type_id, started_at)
                VALUES (?, ?, ?)
            """, [block_type_id, destination_type_id, datetime.now()])

    def complete_conversion(self, block_type_id: str):
        """Mark the conversion of a block type as finished."""
        self._require_connection()

        with self._lock:
            self.connection.execute("""
                UPDATE conversions SET completed_at = ?
                WHERE block_type_id = ? AND completed_at IS NULL
            """, [datetime.now(), block_type_id])

    def get_pending_destination(self, block_type_id: str) -> Optional[str]:
        """
        Destination model of an interrupted conversion.

        Returns:
            The destination type id, or None when no unfinished conversion exists
        """
        self._require_connection()

        with self._lock:
            row = self.connection.execute("""
                SELECT destination_type_id FROM conversions
                WHERE block_type_id = ? AND completed_at IS NULL
            """, [block_type_id]).fetchone()
        return row[0] if row else None

    def save_mapping(self, block_type_id: str, instance_id: str, record_id: str,
                     destination_type_id: str = "") -> bool:
        """
        Persist one instance-to-record mapping.

        Args:
            block_type_id: The block type being converted
            instance_id: Original block id, synthetic id or group key
            record_id: The standalone record created for it
            destination_type_id: The model record_id belongs to

        Returns:
            True if the mapping was stored, False if the instance was already mapped
        """
        self._require_connection()

        with self._lock:
            try:
                self.connection.execute("""
                    INSERT INTO block_mappings (block_type_id, destination_type_id, instance_id, record_id, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, [block_type_id, destination_type_id, instance_id, record_id, datetime.now()])
                return True
            except duckdb.IntegrityError:
                # Instance already mapped
                return False

    def load_mappings(self, block_type_id: str, destination_type_id: Optional[str] = None) -> Dict[str, str]:
        """
        Load stored mappings for a block type.

        Args:
            block_type_id: The block type being converted
            destination_type_id: Only mappings to records of this model (all when None)

        Returns:
            Dictionary of instance id to record id
        """
        self._require_connection()

        query = "SELECT instance_id, record_id FROM block_mappings WHERE block_type_id = ?"
        params = [block_type_id]
        if destination_type_id is not None:
            query += " AND destination_type_id = ?"
            params.append(destination_type_id)
        query += " ORDER BY created_at"

        with self._lock:
            rows = self.connection.execute(query, params).fetchall()

        return {row[0]: row[1] for row in rows}

    def forget_mappings(self, block_type_id: str, destination_type_id: str, instance_ids: List[str]) -> int:
        """
        Delete stored mappings whose records no longer exist.

        Returns:
            Number of mappings deleted
        """
        self._require_connection()

        with self._lock:
            for instance_id in instance_ids:
                self.connection.execute("""
                    DELETE FROM block_mappings
                    WHERE block_type_id = ? AND destination_type_id = ? AND instance_id = ?
                """, [block_type_id, destination_type_id, instance_id])
        return len(instance_ids)

    def record_failure(self, block_type_id: str, record_id: str, operation: str,
                       error_message: str, field_api_key: Optional[str] = None) -> Optional[int]:
        """
        Record a record update that was skipped during migration.

        Returns:
            The failure id
        """
        self._require_connection()

        with self._lock:
            result = self.connection.execute("""
                INSERT INTO record_failures (
                    block_type_id, record_id, field_api_key, operation, error_message, failed_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                RETURNING failure_id
            """, [block_type_id, record_id, field_api_key, operation, error_message,
                  datetime.now()]).fetchone()
        return result[0] if result else None

    def list_failures(self, block_type_id: Optional[str] = None) -> List[Dict]:
        """
        List recorded failures, most recent last.

        Args:
            block_type_id: Optional filter by block type

        Returns:
            List of failure records
        """
        self._require_connection()

        query = """
            SELECT failure_id, block_type_id, record_id, field_api_key,
                   operation, error_message, failed_at
            FROM record_failures
        """
        params = []
        if block_type_id:
            query += " WHERE block_type_id = ?"
            params.append(block_type_id)
        query += " ORDER BY failure_id"

        with self._lock:
            rows = self.connection.execute(query, params).fetchall()

        return [
            {
                "failure_id": row[0],
                "block_type_id": row[1],
                "record_id": row[2],
                "field_api_key": row[3],
                "operation": row[4],
                "error_message": row[5],
                "failed_at": row[6],
            }
            for row in rows
        ]
