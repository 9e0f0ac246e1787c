"""Database schema management module.

This module handles database schema versioning and migrations for the voucher
tables. Schema versions are plain dicts in database/schema/vN.py describing
tables, unique constraints, check constraints, foreign keys and indexes.
"""
import importlib
import logging
from pathlib import Path
from typing import Dict, Any, Optional

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / 'schema'

class SchemaManager:
    """Manages database schema versioning and migrations."""

    def __init__(self, pool, schema_dir: Optional[Path] = None) -> None:
        """Initialize schema manager.

        Args:
            pool: Database connection pool
            schema_dir: Directory containing schema version files
        """
        self.pool = pool
        self._schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR
        self.current_version = 0
        self._schema_files: Dict[int, Dict[str, Any]] = {}

    async def initialize(self) -> None:
        """Initialize schema management.

        Creates schema version table if it doesn't exist and runs any pending migrations.

        Raises:
            DatabaseSchemaError: If schema initialization fails or no valid schema files are found
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute('''
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INT8 PRIMARY KEY,
                        applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                ''')

                row = await conn.fetchrow(
                    'SELECT version FROM schema_version ORDER BY version DESC LIMIT 1'
                )
                self.current_version = row['version'] if row else 0

            schema_files = self.load_schema_files()
            if not schema_files:
                raise DatabaseSchemaError("No valid schema files found in schema directory")

            await self._apply_migrations(schema_files)

        except DatabaseSchemaError:
            raise
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise DatabaseSchemaError(f"Failed to initialize schema: {e}") from e

    def load_schema_files(self) -> Dict[int, Dict[str, Any]]:
        """Load all schema version files.

        Returns:
            Dict mapping version numbers to schema definitions, sorted by version
        """
        schema_files = {}

        if not self._schema_dir.exists():
            return schema_files

        for file in self._schema_dir.glob('v*.py'):
            try:
                version = int(file.stem[1:])  # Extract number from vX.py
            except ValueError:
                logger.warning(f"Invalid schema filename: {file}")
                continue

            module = importlib.import_module(f"database.schema.{file.stem}")

            if not hasattr(module, 'schema'):
                raise DatabaseSchemaError(
                    f"Schema file {file} missing 'schema' definition"
                )

            schema = module.schema
            if schema['version'] != version:
                raise DatabaseSchemaError(
                    f"Schema version mismatch in {file}: "
                    f"Expected v{version}, got v{schema['version']}"
                )

            schema_files[version] = schema

        self._schema_files = dict(sorted(schema_files.items()))
        return self._schema_files

    async def _apply_migrations(self, schema_files: Dict[int, Dict[str, Any]]) -> None:
        """Apply any pending schema migrations.

        Args:
            schema_files: Dict mapping version numbers to schema definitions
        """
        latest_version = max(schema_files.keys())
        if self.current_version >= latest_version:
            logger.info("Schema is up to date")
            return

        logger.info(
            f"Updating schema from version {self.current_version} to {latest_version}"
        )

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if self.current_version == 0:
                    await self._create_fresh_schema(conn, schema_files[latest_version])
                else:
                    await self._run_migrations(conn, schema_files, latest_version)

        self.current_version = latest_version

    async def _run_migrations(
        self,
        conn,
        schema_files: Dict[int, Dict[str, Any]],
        latest_version: int
    ) -> None:
        """Run each pending version's migration statements in order."""
        for version in range(self.current_version + 1, latest_version + 1):
            if version not in schema_files:
                continue
            for migration in schema_files[version].get('migrations', []):
                await conn.execute(migration)
            await conn.execute(
                'INSERT INTO schema_version (version) VALUES ($1)',
                version
            )
            logger.info(f"Successfully migrated to version {version}")

    async def _create_fresh_schema(self, conn, schema: Dict[str, Any]) -> None:
        """Create a fresh schema installation.

        Args:
            conn: Database connection
            schema: Latest schema definition
        """
        # Tables first, in declaration order, so foreign keys can resolve
        for table in schema.get('tables', []):
            await conn.execute(build_create_table(table))
            logger.info(f"Created table {table['name']}")

        for table in schema.get('tables', []):
            for idx in table.get('indexes', []):
                await conn.execute(build_create_index(table['name'], idx))
                logger.info(f"Created index {idx['name']} on {table['name']}")

        await conn.execute(
            'INSERT INTO schema_version (version) VALUES ($1)',
            schema['version']
        )
        logger.info(f"Successfully created fresh schema version {schema['version']}")

def build_create_table(table: Dict[str, Any]) -> str:
    """Render CREATE TABLE for a table definition.

    Args:
        table: Table definition dictionary

    Returns:
        The SQL statement
    """
    columns = []
    constraints = []

    for col in table['columns']:
        col_def = f"{col['name']} {col['type']}"

        if col.get('primary_key'):
            constraints.append(f"PRIMARY KEY ({col['name']})")
        elif col.get('unique'):
            constraints.append(
                f"CONSTRAINT uq_{table['name']}_{col['name']} UNIQUE ({col['name']})"
            )

        if 'default' in col:
            col_def += f" DEFAULT {col['default']}"

        if col.get('nullable') is False:
            col_def += " NOT NULL"

        if 'check' in col:
            constraints.append(
                f"CONSTRAINT ck_{table['name']}_{col['name']} CHECK ({col['check']})"
            )

        columns.append(col_def)

    for fk in table.get('foreign_keys', []):
        constraints.append(
            f"CONSTRAINT fk_{table['name']}_{fk['columns'][0]} "
            f"FOREIGN KEY ({', '.join(fk['columns'])}) REFERENCES {fk['references']}"
        )

    table_def = ',\n    '.join(columns + constraints)
    return f"CREATE TABLE IF NOT EXISTS {table['name']} (\n    {table_def}\n)"

def build_create_index(table_name: str, idx: Dict[str, Any]) -> str:
    """Render CREATE INDEX for an index definition.

    Args:
        table_name: Table the index belongs to
        idx: Index definition dictionary

    Returns:
        The SQL statement
    """
    unique = 'UNIQUE ' if idx.get('unique') else ''
    where = f" WHERE {idx['where']}" if 'where' in idx else ''
    return (
        f"CREATE {unique}INDEX IF NOT EXISTS {idx['name']} "
        f"ON {table_name}({', '.join(idx['columns'])}){where}"
    )
