"""Database migration runner for concern review."""

import logging
from pathlib import Path
from typing import List, Optional
import psycopg2

logger = logging.getLogger(__name__)


class MigrationRunner:
    """Runs database migrations from SQL files."""

    def __init__(self, database_url: str, migrations_dir: Optional[Path] = None):
        """
        Initialize migration runner.

        Args:
            database_url: PostgreSQL connection string
            migrations_dir: Directory of numbered *.sql files
        """
        self.database_url = database_url
        self.migrations_dir = migrations_dir or Path(__file__).parent / "migrations"

    def _get_migration_files(self) -> List[Path]:
        """Get sorted list of migration files."""
        if not self.migrations_dir.exists():
            return []
        return sorted(self.migrations_dir.glob("*.sql"))

    def _create_migrations_table(self, conn):
        """Create migrations tracking table if it doesn't exist."""
        with conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    id SERIAL PRIMARY KEY,
                    migration_name VARCHAR(255) NOT NULL UNIQUE,
                    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)
        conn.commit()

    def _applied_migrations(self, conn) -> set:
        with conn.cursor() as cur:
            cur.execute("SELECT migration_name FROM schema_migrations")
            return {row[0] for row in cur.fetchall()}

    def pending_migrations(self) -> List[str]:
        """
        List migrations that have not been applied yet.

        Returns:
            Migration file names in application order
        """
        conn = psycopg2.connect(self.database_url)
        try:
            self._create_migrations_table(conn)
            applied = self._applied_migrations(conn)
            return [f.name for f in self._get_migration_files() if f.name not in applied]
        finally:
            conn.close()

    def run_migrations(self) -> int:
        """
        Run all pending migrations.

        Each file is applied and recorded in the same transaction.

        Returns:
            Number of migrations applied
        """
        migration_files = self._get_migration_files()
        if not migration_files:
            logger.info("No migration files found")
            return 0

        conn = psycopg2.connect(self.database_url)
        try:
            self._create_migrations_table(conn)
            applied = self._applied_migrations(conn)

            applied_count = 0
            for migration_file in migration_files:
                migration_name = migration_file.name
                if migration_name in applied:
                    logger.info(f"Migration {migration_name} already applied, skipping")
                    continue

                logger.info(f"Applying migration: {migration_name}")
                with conn.cursor() as cur:
                    cur.execute(migration_file.read_text())
                    cur.execute(
                        "INSERT INTO schema_migrations (migration_name) VALUES (%s)",
                        (migration_name,)
                    )
                conn.commit()
                applied_count += 1

                logger.info(f"Successfully applied migration: {migration_name}")

            logger.info(f"Applied {applied_count} migrations")
            return applied_count

        except Exception as e:
            conn.rollback()
            logger.error(f"Migration failed: {e}")
            raise
        finally:
            conn.close()
