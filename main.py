#!/usr/bin/env python3
"""
Main entry point for the volume-copy database refresh.

This script is responsible for:
- Loading and validating configuration.
- Building the array, database engine and remote host collaborators.
- Running one refresh through the orchestrator.
- Mapping the outcome to a process exit code.
"""

import argparse
import getpass
import os
import signal
import sys
from pathlib import Path
from typing import List, NoReturn, Optional

from pydantic import ValidationError

from dbrefresh.config import constants
from dbrefresh.config.settings import Settings
from dbrefresh.core.orchestrator import RefreshOrchestrator
from dbrefresh.domain.enums import RefreshOutcome
from dbrefresh.domain.errors import ConfigurationError
from dbrefresh.domain.models import RefreshReport, RefreshRequest
from dbrefresh.infrastructure.logging_handler import LoggerFactory, StructuredLogger
from dbrefresh.ui.display import ProgressDisplay
from dbrefresh.utils.session_context import make_array_connector, open_collaborators


class RefreshApplication:
    """Application controller for one refresh invocation."""

    def __init__(self, settings: Settings, display: Optional[ProgressDisplay] = None):
        """Initializes the RefreshApplication instance.

        Args:
            settings (Settings): Validated application settings.
            display (Optional[ProgressDisplay]): Console renderer for progress and report.
        """
        self.settings = settings
        self.display = display or ProgressDisplay()
        self.logger: Optional[StructuredLogger] = None
        self.orchestrator: Optional[RefreshOrchestrator] = None
        self._cancel_requested = False

    def initialize_logging(self) -> None:
        """Initializes the structured logging for the application."""
        LoggerFactory.configure(self.settings)
        self.logger = LoggerFactory.get_logger("dbrefresh")

    def build_request(self, args: argparse.Namespace) -> RefreshRequest:
        """Combines command-line arguments, config defaults and the array secret."""
        array_config = self.settings.get_array_config()
        endpoint = args.array or array_config.get("endpoint")
        username = args.array_user or array_config.get("username")
        if not endpoint or not username:
            raise ConfigurationError("Array endpoint and username must be given "
                                     "on the command line or in the config file")

        password = os.environ.get(args.array_password_env)
        if not password:
            password = getpass.getpass(f"Password for {username}@{endpoint}: ")
        if not password:
            raise ConfigurationError("No array password supplied")

        return RefreshRequest(
            database_name=args.database,
            source_instance=args.source,
            destination_instance=args.destination,
            array_endpoint=endpoint,
            array_username=username,
            array_password=password,
        )

    def run(self, request: RefreshRequest) -> RefreshReport:
        """Runs the refresh and renders the report."""
        with open_collaborators(self.settings, self.logger) as (engine, executor):
            self.orchestrator = RefreshOrchestrator(
                request=request,
                array_connector=make_array_connector(self.settings, self.logger),
                engine=engine,
                executor=executor,
                logger=self.logger,
                refresh_config=self.settings.get_refresh_config(),
                listener=self.display,
            )
            if self._cancel_requested:
                self.orchestrator.request_cancel()
            report = self.orchestrator.run()
        self.display.render_report(report)
        return report

    def cancel(self) -> None:
        self._cancel_requested = True
        if self.orchestrator is not None:
            self.orchestrator.request_cancel()


def exit_code_for(report: RefreshReport) -> int:
    if report.outcome is RefreshOutcome.SUCCEEDED:
        return constants.EXIT_SUCCESS
    if report.outcome is RefreshOutcome.UNSAFE:
        return constants.EXIT_UNSAFE
    return constants.EXIT_FAILED


def setup_signal_handlers(app: RefreshApplication) -> None:
    """Turns SIGINT/SIGTERM into a cancellation request.

    The orchestrator honours it only before the destination is modified;
    afterwards the refresh runs to completion or failure.
    """
    def signal_handler(signum, frame):
        if app.logger:
            app.logger.warning(f"Received signal {signum}")
        app.cancel()
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


class UsageArgumentParser(argparse.ArgumentParser):
    """ArgumentParser whose usage errors exit with EXIT_USAGE rather than 2."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(constants.EXIT_USAGE, f"{self.prog}: error: {message}\n")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = UsageArgumentParser(
        prog="dbrefresh",
        description="Refresh a database by overwriting its storage volume with "
                    "a copy of a source database's volume.")
    parser.add_argument("--database", required=True, help="Database name on both instances")
    parser.add_argument("--source", required=True, help="Source instance address")
    parser.add_argument("--destination", required=True, help="Destination instance address")
    parser.add_argument("--array", help="Array management endpoint (defaults to config)")
    parser.add_argument("--array-user", help="Array username (defaults to config)")
    parser.add_argument("--array-password-env", default=constants.DEFAULT_PASSWORD_ENV,
                        help="Environment variable holding the array password "
                             "(prompted for when unset)")
    parser.add_argument("--config", type=Path, default=Path("config/config.yaml"),
                        help="Path to the YAML configuration file")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> NoReturn:
    """The main entry point of the application."""
    args = parse_args(argv)
    try:
        settings = Settings(args.config)
    except (ValidationError, ConfigurationError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(constants.EXIT_USAGE)

    app = RefreshApplication(settings)
    app.initialize_logging()
    try:
        request = app.build_request(args)
    except ConfigurationError as e:
        app.logger.error("Invalid invocation", {"error": e.message})
        print(e.message, file=sys.stderr)
        sys.exit(constants.EXIT_USAGE)

    setup_signal_handlers(app)
    report = app.run(request)
    sys.exit(exit_code_for(report))


if __name__ == "__main__":
    main()
