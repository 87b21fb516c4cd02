import argparse
import time

from disc_archiver.app.context import AppContext
from disc_archiver.app.session import ArchiveSession
from disc_archiver.config import settings
from disc_archiver.logging import LoggerFactory, setup_logging
from disc_archiver.storage.exceptions import DiskInfoError, describe_disk_info_error
from disc_archiver.web import server


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Archive every disc put into the attached optical drives"
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output (very verbose)")
    parser.add_argument("-o", "--output-dir", help="Directory that receives finished images")
    parser.add_argument(
        "--poll-interval",
        type=float,
        help="Seconds between disc presence checks",
    )
    parser.add_argument("--host", help="Address the operator web server listens on")
    parser.add_argument("--port", type=int, help="Port the operator web server listens on")
    parser.add_argument(
        "--no-web", action="store_true", help="Do not start the operator web server"
    )
    return parser


def _apply_overrides(args: argparse.Namespace) -> None:
    if args.output_dir is not None:
        settings.set_setting("output_dir", args.output_dir)
    if args.poll_interval is not None:
        settings.set_setting("presence_poll_interval", args.poll_interval)
        settings.set_setting("name_poll_interval", args.poll_interval)
    if args.host is not None:
        settings.set_setting("web_host", args.host)
    if args.port is not None:
        settings.set_setting("web_port", args.port)
    if args.no_web:
        settings.set_setting("web_server_enabled", False)


def _wait_for_interrupt() -> None:
    while True:
        time.sleep(1.0)


def main(argv=None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    app_context = AppContext()
    setup_logging(app_context, debug=args.debug, trace=args.trace)
    log = LoggerFactory.for_system()

    settings.load_settings()
    _apply_overrides(args)

    session = ArchiveSession(
        output_dir=settings.get_setting("output_dir", "."),
        poll_interval=settings.get_float(
            "presence_poll_interval", settings.DEFAULT_POLL_INTERVAL
        ),
        app_context=app_context,
    )
    try:
        drives = session.discover()
    except DiskInfoError as error:
        log.error(describe_disk_info_error(error))
        return 1

    log.info(f"Press Ctrl+C to quit. Found {len(drives)} disc drives.")
    for index, drive in enumerate(drives):
        log.info(f"  [{index}] {drive.device_path}")

    web_started = False
    try:
        session.start()
        if settings.get_bool("web_server_enabled", True):
            try:
                server.start_server(
                    session,
                    host=settings.get_setting("web_host", settings.DEFAULT_WEB_HOST),
                    port=settings.get_int("web_port", settings.DEFAULT_WEB_PORT),
                    app_context=app_context,
                )
                web_started = True
            except (OSError, TimeoutError) as error:
                log.error(f"Operator web server failed to start: {error}")
        _wait_for_interrupt()
    except KeyboardInterrupt:
        log.info("Interrupted, shutting down")
    finally:
        if web_started:
            server.stop_server()
        session.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
