"""
Database migration runner for the clientes schema.
"""

import os
import sys
import logging
from pathlib import Path
from typing import List

from customer_ingest.database.connection import DatabaseManager

logger = logging.getLogger(__name__)


class MigrationManager:
    """Runs the SQL migration files against Postgres, in file name order."""

    def __init__(self, db_manager: DatabaseManager, migrations_dir: Path = None):
        self.db = db_manager
        self.migrations_dir = migrations_dir or Path(__file__).parent / "migrations"

    def list_migrations(self) -> List[str]:
        if not self.migrations_dir.exists():
            logger.warning(f"Migrations directory not found: {self.migrations_dir}")
            return []

        return sorted(f for f in os.listdir(self.migrations_dir) if f.endswith('.sql'))

    @staticmethod
    def split_statements(migration_sql: str) -> List[str]:
        """Split a migration into statements, dropping comment-only lines."""
        lines = [line for line in migration_sql.splitlines() if not line.strip().startswith('--')]
        return [stmt.strip() for stmt in "\n".join(lines).split(';') if stmt.strip()]

    def run_migration(self, migration_file: str) -> None:
        """Run a single migration file."""
        migration_path = self.migrations_dir / migration_file

        if not migration_path.exists():
            raise FileNotFoundError(f"Migration file not found: {migration_path}")

        logger.info(f"Running migration: {migration_file}")

        with open(migration_path, 'r', encoding='utf-8') as f:
            migration_sql = f.read()

        try:
            for statement in self.split_statements(migration_sql):
                self.db.execute_query(statement, fetch=False)

            logger.info(f"Migration completed successfully: {migration_file}")

        except Exception as e:
            logger.error(f"Migration failed: {migration_file} - {e}")
            raise

    def run_all_migrations(self) -> int:
        """Run all migration files in order. Returns how many ran."""
        migration_files = self.list_migrations()

        if not migration_files:
            logger.info("No migration files found")
            return 0

        logger.info(f"Found {len(migration_files)} migration files")

        for migration_file in migration_files:
            self.run_migration(migration_file)

        logger.info("All migrations completed successfully")
        return len(migration_files)


def main() -> int:
    """Main entry point for running migrations."""
    from dotenv import load_dotenv

    from customer_ingest.monitoring.logger_config import IngestionLogger

    load_dotenv()
    IngestionLogger.setup_logging()

    db_manager = None
    try:
        db_manager = DatabaseManager()
        db_manager.initialize_pool(min_connections=1, max_connections=1)
        MigrationManager(db_manager).run_all_migrations()
        print("✅ Database migrations completed successfully")
        return 0

    except Exception as e:
        logger.error(f"Migration failed: {e}")
        print(f"❌ Migration failed: {e}")
        return 1
    finally:
        if db_manager:
            db_manager.close_all_connections()


if __name__ == "__main__":
    sys.exit(main())
