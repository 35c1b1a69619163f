"""Reconciler deciding which Meetup events still need a Discord counterpart."""
import logging
import re
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from processor.errors import EventRejected, TargetUnavailable, TimestampParseFailure
from processor.models import (
    ENTITY_TYPE_EXTERNAL,
    ENTITY_TYPE_VOICE,
    CreationOutcome,
    Meeting,
    MirroredEvent,
    Registration,
    ScheduledEventDraft,
    SyncResult,
)

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 300
ELLIPSIS = '…'
EVENT_DURATION = timedelta(hours=2)

# Meetup sends e.g. "2024-06-01T18:00+02:00" or "2024-06-01T18:00+02"
_MEETUP_TIMESTAMP = re.compile(
    r'^(?P<local>\d{4}-\d{2}-\d{2}T\d{2}:\d{2})'
    r'(?P<seconds>:\d{2}(?:\.\d+)?)?'
    r'(?:(?P<utc>Z)|(?P<sign>[+-])(?P<hours>\d{2})(?::?(?P<minutes>\d{2}))?)$'
)


def is_already_mirrored(existing: Sequence[MirroredEvent], event_url: str) -> bool:
    """
    Check whether some Discord event already carries the Meetup URL.

    The URL is embedded in the description of every event we create, so a
    plain substring search is enough to recognise earlier mirrors.

    Args:
        existing: Scheduled events currently present in the guild
        event_url: Canonical Meetup event URL

    Returns:
        True if any description contains the URL, False otherwise
    """
    return any(
        event.description is not None and event_url in event.description
        for event in existing
    )


def normalize_start_time(date_time: str) -> datetime:
    """
    Parse a Meetup start time into an aware datetime.

    Meetup omits the seconds before the offset and may shorten the offset
    to hours only, both of which are filled in before parsing.

    Args:
        date_time: Start time as sent by Meetup (e.g. "2024-06-01T18:00+02")

    Returns:
        Timezone aware datetime

    Raises:
        TimestampParseFailure: If the value is malformed or has no offset
    """
    match = _MEETUP_TIMESTAMP.match(date_time.strip()) if date_time else None
    if not match:
        raise TimestampParseFailure(date_time)

    seconds = match.group('seconds') or ':00'
    if match.group('utc'):
        offset = '+00:00'
    else:
        offset = f"{match.group('sign')}{match.group('hours')}:{match.group('minutes') or '00'}"

    try:
        return datetime.fromisoformat(f"{match.group('local')}{seconds}{offset}")
    except ValueError as e:
        raise TimestampParseFailure(date_time) from e


def format_description(meeting: Meeting) -> str:
    """Truncate the Meetup description and append the source marker."""
    return (
        f"{meeting.description[:MAX_DESCRIPTION_LENGTH]}{ELLIPSIS}\n"
        f"(source: {meeting.event_url})"
    )


def build_event_draft(meeting: Meeting, voice_channel_id: str) -> ScheduledEventDraft:
    """
    Map a Meeting onto the scheduled event that mirrors it.

    Online meetings are attached to the registration's voice channel,
    in-person meetings become external events pointing at the Meetup page.
    The Meetup duration is ignored and every event lasts two hours.

    Args:
        meeting: Meeting fetched from Meetup
        voice_channel_id: Voice channel used for online meetings

    Returns:
        ScheduledEventDraft ready to be created

    Raises:
        TimestampParseFailure: If the start time cannot be parsed
    """
    start = normalize_start_time(meeting.date_time)

    draft = ScheduledEventDraft(
        name=meeting.title,
        description=format_description(meeting),
        start=start,
        end=start + EVENT_DURATION,
        entity_type=ENTITY_TYPE_EXTERNAL,
    )

    if meeting.is_online:
        draft.entity_type = ENTITY_TYPE_VOICE
        draft.channel_id = voice_channel_id
    else:
        draft.location = meeting.event_url

    return draft


class Reconciler:
    """Creates the Discord events missing for a registration."""

    def __init__(
        self,
        target_client,
        mirrored_check: Callable[[Sequence[MirroredEvent], str], bool] = is_already_mirrored
    ):
        """
        Initialize the reconciler.

        Args:
            target_client: Client exposing create_event(guild_id, draft)
            mirrored_check: Strategy deciding whether a URL is already mirrored
        """
        self.target_client = target_client
        self.mirrored_check = mirrored_check

    def find_new_meetings(
        self,
        fetched: Sequence[Meeting],
        existing: Sequence[MirroredEvent]
    ) -> List[Meeting]:
        """Return the fetched meetings without a mirror, in fetch order."""
        return [
            meeting for meeting in fetched
            if not self.mirrored_check(existing, meeting.event_url)
        ]

    def reconcile(
        self,
        registration: Registration,
        fetched: Sequence[Meeting],
        existing: Sequence[MirroredEvent],
        guild_id: Optional[str] = None,
        voice_channel_id: Optional[str] = None
    ) -> SyncResult:
        """
        Create one scheduled event per fetched meeting not yet mirrored.

        A meeting with an unparseable start time, or one Discord refuses with
        a client error, is recorded as failed and the remaining meetings are
        still processed. Any other target error aborts the pass.

        Args:
            registration: Registration being synced
            fetched: Meetings returned by Meetup
            existing: Scheduled events currently present in the guild
            guild_id: Resolved guild id (defaults to the registration's)
            voice_channel_id: Resolved voice channel (defaults to the registration's)

        Returns:
            SyncResult with one outcome per meeting that needed creating

        Raises:
            TargetUnavailable: If Discord cannot create events
        """
        guild_id = guild_id or registration.guild_id
        voice_channel_id = voice_channel_id or registration.voice_channel_id
        result = SyncResult()

        for meeting in fetched:
            if self.mirrored_check(existing, meeting.event_url):
                logger.info(f"Event {meeting.event_url} already existing")
                result.skipped.append(meeting.event_url)
                continue

            try:
                draft = build_event_draft(meeting, voice_channel_id)
            except TimestampParseFailure as e:
                logger.warning(
                    f"Skipping meeting '{meeting.title}': {e}",
                    extra={'meetup_group': registration.meetup_group, 'error_type': type(e).__name__}
                )
                result.outcomes.append(CreationOutcome(meeting=meeting, error=str(e)))
                continue

            logger.info(
                f"Creating meeting '{meeting.title}' in server {registration.display_name}"
            )
            try:
                event = self.target_client.create_event(guild_id, draft)
            except EventRejected as e:
                logger.warning(
                    f"Discord refused meeting '{meeting.title}': {e}",
                    extra={'meetup_group': registration.meetup_group, 'error_type': type(e).__name__}
                )
                result.outcomes.append(CreationOutcome(meeting=meeting, error=str(e)))
                continue
            except TargetUnavailable as e:
                logger.error(
                    f"Aborting sync of {registration.meetup_group} after "
                    f"{result.created} created, {len(result.skipped)} already existing, "
                    f"{result.failed} failed: {e}",
                    extra={
                        'meetup_group': registration.meetup_group,
                        'guild_id': guild_id,
                        'error_type': type(e).__name__,
                        'events_created': result.created,
                        'events_failed': result.failed
                    }
                )
                raise

            logger.info(f"Event created: {event.name} ({event.id})")
            result.outcomes.append(CreationOutcome(meeting=meeting, event=event))

        return result
