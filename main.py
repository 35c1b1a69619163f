"""Entry point for the Meetup to Discord event sync bot."""
import argparse
import json
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass
from typing import List, Optional

from processor.errors import SyncError
from processor.models import Registration
from processor.reconciler import normalize_start_time
from publisher.discord_client import DiscordClient
from scheduler.registration_scheduler import RegistrationScheduler, RegistrationService
from scheduler.sync_runner import SyncRunner
from scraper.meetup_client import MeetupClient
from storage.registration_store import RegistrationStore

logger = logging.getLogger(__name__)

EXTRA_LOG_FIELDS = (
    'meetup_group',
    'guild_id',
    'error_type',
    'events_created',
    'events_skipped',
    'events_failed',
    'registrations',
    'duration_seconds',
)


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name,
            'thread': record.threadName
        }

        for name in EXTRA_LOG_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class Settings:
    discord_token: str
    table_name: str
    log_level: str
    meetup_endpoint: str
    meetup_token: Optional[str]
    timeout_seconds: int
    sync_interval_seconds: int
    max_initial_jitter_seconds: int


def load_settings() -> Settings:
    """Read configuration from environment variables."""
    return Settings(
        discord_token=os.environ.get('DISCORD_TOKEN', ''),
        table_name=os.environ.get('TABLE_NAME', 'meetup-discord-syncs'),
        log_level=os.environ.get('LOG_LEVEL', 'INFO'),
        meetup_endpoint=os.environ.get('MEETUP_ENDPOINT', MeetupClient.BASE_URL),
        meetup_token=os.environ.get('MEETUP_TOKEN') or None,
        timeout_seconds=int(os.environ.get('TIMEOUT_SECONDS', '30')),
        sync_interval_seconds=int(os.environ.get('SYNC_INTERVAL_SECONDS', '900')),
        max_initial_jitter_seconds=int(os.environ.get('MAX_INITIAL_JITTER_SECONDS', '765'))
    )


def build_runner(settings: Settings) -> SyncRunner:
    """
    Wire the Meetup and Discord clients into a SyncRunner.

    Args:
        settings: Loaded settings

    Returns:
        SyncRunner ready to run passes

    Raises:
        SystemExit: If no Discord bot token is configured
    """
    if not settings.discord_token:
        raise SystemExit("DISCORD_TOKEN is not set")

    source = MeetupClient(
        endpoint=settings.meetup_endpoint,
        token=settings.meetup_token,
        timeout=settings.timeout_seconds
    )
    target = DiscordClient(token=settings.discord_token, timeout=settings.timeout_seconds)
    return SyncRunner(source, target)


def run(settings: Settings) -> int:
    """
    Sync every stored registration until SIGINT or SIGTERM.

    Args:
        settings: Loaded settings

    Returns:
        Process exit code
    """
    scheduler = RegistrationScheduler(
        build_runner(settings),
        interval=settings.sync_interval_seconds,
        max_jitter=settings.max_initial_jitter_seconds
    )
    service = RegistrationService(RegistrationStore(settings.table_name), scheduler)

    stop_requested = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        stop_requested.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    count = service.start_all()
    logger.info("Sync bot started", extra={'registrations': count})

    while not stop_requested.wait(1):
        pass

    scheduler.shutdown(timeout=settings.timeout_seconds)
    return 0


def register(settings: Settings, args: argparse.Namespace) -> int:
    """
    Store a new registration.

    Args:
        settings: Loaded settings
        args: Parsed register arguments

    Returns:
        0 when stored, 1 if the guild already follows the group,
        2 if the registration is invalid
    """
    registration = Registration(
        meetup_group=args.group,
        guild_id=args.guild_id,
        voice_channel_id=args.voice_channel_id,
        server_name=args.server_name,
        number_of_events=args.events
    )
    store = RegistrationStore(settings.table_name)
    try:
        inserted = store.insert(registration)
    except ValueError as e:
        print(f"Invalid registration: {e}")
        return 2

    if not inserted:
        print(f"Guild {args.guild_id} already follows {args.group}")
        return 1

    print(f"Following the meetup.com group {args.group}; events appear after the next restart")
    return 0


def sync_once(settings: Settings, args: argparse.Namespace) -> int:
    """
    Run a single pass for one group and print the summary.

    Args:
        settings: Loaded settings
        args: Parsed sync arguments

    Returns:
        0 on success, 1 if the pass failed
    """
    registration = Registration(
        meetup_group=args.group,
        guild_id=args.guild_id,
        voice_channel_id=args.voice_channel_id,
        number_of_events=args.events
    )
    try:
        result = build_runner(settings).run_pass(registration)
    except SyncError as e:
        logger.error(
            f"Sync failed: {e}",
            extra={'meetup_group': args.group, 'error_type': type(e).__name__}
        )
        print(f"Sync failed: {e}")
        return 1

    print(
        f"{result.created} created, {len(result.skipped)} already existing, "
        f"{result.failed} failed"
    )
    for error in result.errors:
        print(f"  {error}")
    return 0


def list_meetings(settings: Settings, args: argparse.Namespace) -> int:
    """Print the upcoming meetings of a group without touching Discord."""
    client = MeetupClient(
        endpoint=settings.meetup_endpoint,
        token=settings.meetup_token,
        timeout=settings.timeout_seconds
    )
    try:
        meetings = client.fetch_meetings(args.group, args.events)
    except SyncError as e:
        print(f"Listing failed: {e}")
        return 1

    for meeting in meetings:
        try:
            start = normalize_start_time(meeting.date_time).isoformat()
        except SyncError:
            start = meeting.date_time
        kind = 'online' if meeting.is_online else 'in person'
        print(f"{start}  {meeting.title} ({kind}, {meeting.status})  {meeting.event_url}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(description="Mirror Meetup events into Discord")
    commands = parser.add_subparsers(dest='command')

    commands.add_parser('run', help="sync all registrations forever")

    register_parser = commands.add_parser('register', help="follow a Meetup group")
    register_parser.add_argument('group')
    register_parser.add_argument('guild_id')
    register_parser.add_argument('voice_channel_id')
    register_parser.add_argument('--events', type=int, default=2)
    register_parser.add_argument('--server-name')

    sync_parser = commands.add_parser('sync', help="run a single sync pass")
    sync_parser.add_argument('group')
    sync_parser.add_argument('guild_id')
    sync_parser.add_argument('voice_channel_id')
    sync_parser.add_argument('--events', type=int, default=2)

    list_parser = commands.add_parser('list', help="show upcoming Meetup events")
    list_parser.add_argument('group')
    list_parser.add_argument('--events', type=int, default=3)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point of the command line.

    Args:
        argv: Arguments without the program name (default: sys.argv)

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    settings = load_settings()
    setup_logging(settings.log_level)

    if args.command == 'register':
        return register(settings, args)
    if args.command == 'sync':
        return sync_once(settings, args)
    if args.command == 'list':
        return list_meetings(settings, args)
    return run(settings)


if __name__ == '__main__':
    sys.exit(main())
