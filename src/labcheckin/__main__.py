"""Start the lab check-in kiosk or run its background tasks."""
import argparse
import asyncio
import pathlib
import sys

import rich

from labcheckin import config, logs
from labcheckin.model import heartbeat, results, service
import labcheckin.view.main_app


def build_parser() -> argparse.ArgumentParser:
    """Define command line arguments."""
    parser = argparse.ArgumentParser(prog="labcheckin")
    parser.set_defaults(func=None)
    subparsers = parser.add_subparsers()

    # Options shared by every subcommand.
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-c", "--config_path",
        help="Path to config file",
        type=pathlib.Path,
        default=None
    )
    common.add_argument(
        "-d", "--data_dir",
        help="Folder for the offline cache and the log file",
        type=pathlib.Path,
        default=None
    )

    app_parser = subparsers.add_parser(
        "app",
        parents=[common],
        help="Run the check-in kiosk application."
    )
    app_parser.set_defaults(func=run_app)

    sync_parser = subparsers.add_parser(
        "sync",
        parents=[common],
        help="Push cached records to the central database and refresh the cache."
    )
    sync_parser.set_defaults(func=sync_data)

    watch_parser = subparsers.add_parser(
        "watch",
        parents=[common],
        help="Run the health check loop without the kiosk screen."
    )
    watch_parser.set_defaults(func=watch)
    watch_parser.add_argument(
        "-n", "--iterations",
        help="Stop after this many health checks",
        type=int,
        default=None
    )

    status_parser = subparsers.add_parser(
        "status",
        parents=[common],
        help="Try to connect and report online or local mode."
    )
    status_parser.set_defaults(func=show_status)
    return parser


def load_settings(args: argparse.Namespace) -> config.Settings:
    """Apply the config file and command line to the module-level settings."""
    config.settings.update_from_args(args)
    return config.settings


def run_app(args: argparse.Namespace) -> None:
    """Run the check-in TUI application."""
    settings = load_settings(args)
    logs.setup_logging(settings, console="textual")
    app = labcheckin.view.main_app.KioskApp(settings)
    app.run()


def sync_data(args: argparse.Namespace) -> None:
    """Connect once, reconcile cached records and refresh the cache."""
    settings = load_settings(args)
    logs.setup_logging(settings)

    async def _sync() -> results.SyncResult:
        async with service.CheckinService(settings) as checkin:
            return await checkin.sync_pending()

    result = asyncio.run(_sync())
    rich.print(result.to_dict())
    if not result.success:
        sys.exit(1)


def watch(args: argparse.Namespace) -> None:
    """Keep the cache and central database in step without a screen."""
    settings = load_settings(args)
    logs.setup_logging(settings)

    async def _watch() -> None:
        async with service.CheckinService(settings) as checkin:
            monitor = heartbeat.HealthMonitor(checkin, settings.health_interval)
            await monitor.run(args.iterations)

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        rich.print("Stopped.")


def show_status(args: argparse.Namespace) -> None:
    """Print the connection status."""
    settings = load_settings(args)
    logs.setup_logging(settings)

    async def _status() -> None:
        async with service.CheckinService(settings) as checkin:
            await checkin.startup()
            status = checkin.connection_status()
        if status.connected:
            rich.print(f"[green]Online[/] via {status.endpoint}")
        else:
            rich.print(f"[red]Local mode[/], cache in {settings.data_dir}")

    asyncio.run(_status())


def main() -> None:
    """Function to run the app, used for the console script entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if args.func is None:
        parser.print_help()
        return
    try:
        args.func(args)
    except config.ConfigError as err:
        rich.print(f"[red]{err}[/]")
        sys.exit(2)


if __name__ == "__main__":
    main()
