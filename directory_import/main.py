"""
Main entry point for Directory Import.

``UserImportService`` runs the organization unit phase followed by the user
phase and converts any failure into an ``ImportFailure`` result after logging
it. ``ImportRunner`` wires configuration, logging, the directory client and
the database together for command line use.
"""

import sys
import json
import time
import signal
import asyncio
import logging
import argparse
import contextlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from directory_import.cancellation import CancellationToken, ensure_token
from directory_import.config import ConfigurationError, ImportSettings, load_config
from directory_import.google_client import GoogleDirectoryClient
from directory_import.importers import OrgUnitImporter, UserImporter
from directory_import.logging_setup import setup_logging
from directory_import.store import DirectoryStore, create_db_engine, create_schema, create_session_factory

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNHEALTHY = 1
EXIT_CONFIGURATION_ERROR = 2


@dataclass(frozen=True)
class ImportSuccess:
    org_unit_changes: int
    user_changes: int

    @property
    def succeeded(self) -> bool:
        return True


@dataclass(frozen=True)
class ImportFailure:
    cause: Exception

    @property
    def succeeded(self) -> bool:
        return False


ImportResult = Union[ImportSuccess, ImportFailure]


class UserImportService:
    """Imports organization units and then users from the directory."""

    def __init__(self, directory, store, settings: Optional[ImportSettings] = None):
        self.store = store
        self.org_unit_importer = OrgUnitImporter(directory, store, settings)
        self.user_importer = UserImporter(directory, store, settings)

    async def import_users(self, token: Optional[CancellationToken] = None) -> ImportResult:
        """
        Run both import phases sequentially.

        Failures are logged and returned, never raised. Changes committed by
        the organization unit phase stay in place if the user phase fails.
        """
        token = ensure_token(token)

        try:
            org_unit_changes = await self.org_unit_importer.import_org_units(token)
            user_changes = await self.user_importer.import_users(token)
        except Exception as e:
            logger.warning("Failed to import users from Google.", exc_info=True)
            self._discard_staged_changes()
            return ImportFailure(e)

        return ImportSuccess(org_unit_changes, user_changes)

    def _discard_staged_changes(self):
        try:
            self.store.rollback()
        except SQLAlchemyError as e:
            logger.warning(f"Rollback after failed import also failed: {e}")


class ImportRunner:
    """
    Runs one import from the command line.

    Args:
        config_path: Path to configuration file
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config = None
        self.config_path = config_path
        self.token = CancellationToken()
        self.engine = None

    def run(self) -> int:
        """
        Run a complete import.

        Returns:
            Exit code. Import failures are only logged, so anything past
            configuration loading exits with 0.
        """
        try:
            self._load_configuration()
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION_ERROR

        setup_logging(self.config.get('logging', {}))
        logger.info("Starting directory import")

        start_time = time.monotonic()
        result = self._run_import()
        runtime = time.monotonic() - start_time

        self._log_summary(result, runtime)
        return EXIT_OK

    def _load_configuration(self):
        """Load and validate configuration."""
        try:
            self.config = load_config(self.config_path)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def _create_engine(self):
        if self.engine is None:
            self.engine = create_db_engine(self.config['database'])
        return self.engine

    def _run_import(self) -> ImportResult:
        try:
            engine = self._create_engine()
            if self.config['database'].get('create_schema', True):
                create_schema(engine)

            directory = GoogleDirectoryClient(self.config['google'])
        except Exception as e:
            logger.warning("Failed to import users from Google.", exc_info=True)
            return ImportFailure(e)

        settings = ImportSettings.from_config(self.config)
        session_factory = create_session_factory(engine)

        with directory, DirectoryStore(session_factory()) as store:
            service = UserImportService(directory, store, settings)
            with self._cancel_on_signals():
                return asyncio.run(service.import_users(self.token))

    @contextlib.contextmanager
    def _cancel_on_signals(self):
        """Turn SIGINT and SIGTERM into a cooperative cancellation."""
        def handle(signum, frame):
            logger.info(f"Received signal {signum}, cancelling import")
            self.token.cancel()

        previous = {signum: signal.signal(signum, handle) for signum in (signal.SIGINT, signal.SIGTERM)}
        try:
            yield self.token
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

    def _log_summary(self, result: ImportResult, runtime: float):
        logger.info("=== Import Summary ===")
        logger.info(f"Total runtime: {runtime:.2f} seconds")
        if result.succeeded:
            logger.info(f"Organization unit changes: {result.org_unit_changes}")
            logger.info(f"User changes: {result.user_changes}")
        else:
            logger.info(f"Import failed: {type(result.cause).__name__}: {result.cause}")

    def init_db(self) -> int:
        """Create the database tables and exit."""
        try:
            self._load_configuration()
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION_ERROR

        setup_logging(self.config.get('logging', {}))
        create_schema(self._create_engine())
        return EXIT_OK

    def health_check(self) -> Dict[str, Any]:
        """
        Check configuration, database connectivity and directory credentials.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        try:
            session_factory = create_session_factory(self._create_engine())
            with DirectoryStore(session_factory()) as store:
                store.ping()
            health_status['checks']['database'] = {
                'status': 'pass',
                'message': 'Database connection successful'
            }
        except Exception as e:
            health_status['checks']['database'] = {
                'status': 'fail',
                'message': f'Database connection failed: {e}'
            }
            health_status['status'] = 'unhealthy'

        try:
            with GoogleDirectoryClient(self.config['google']) as directory:
                if not directory.authenticate():
                    raise ConnectionError("token endpoint rejected the credentials")
            health_status['checks']['directory'] = {
                'status': 'pass',
                'message': 'Directory credentials accepted'
            }
        except Exception as e:
            health_status['checks']['directory'] = {
                'status': 'fail',
                'message': f'Directory authentication failed: {e}'
            }
            health_status['status'] = 'unhealthy'

        return health_status


def main():
    """Main entry point for the application."""
    parser = argparse.ArgumentParser(description='Google directory to database import')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of import')
    parser.add_argument('--init-db', action='store_true',
                        help='Create database tables and exit')

    args = parser.parse_args()

    runner = ImportRunner(config_path=args.config)

    if args.health_check:
        health_status = runner.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(EXIT_OK if health_status['status'] == 'healthy' else EXIT_UNHEALTHY)

    elif args.init_db:
        sys.exit(runner.init_db())

    else:
        sys.exit(runner.run())


if __name__ == "__main__":
    main()
