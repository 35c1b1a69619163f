"""One reconciliation pass for a single registration."""
import logging
import time

from processor.models import Registration, SyncResult
from processor.reconciler import Reconciler

logger = logging.getLogger(__name__)


class SyncRunner:
    """Fetches, diffs and creates events for one registration at a time."""

    def __init__(self, source_client, target_client, reconciler: Reconciler = None):
        """
        Initialize the runner.

        Args:
            source_client: Client exposing fetch_meetings(group_name, count)
            target_client: Client exposing resolve_guild, resolve_channel,
                list_events and create_event
            reconciler: Reconciler to use (default: one built on target_client)
        """
        self.source_client = source_client
        self.target_client = target_client
        self.reconciler = reconciler or Reconciler(target_client)

    def run_pass(self, registration: Registration) -> SyncResult:
        """
        Run one fetch, diff and create cycle.

        Guild and channel ids are resolved again on every pass so that
        recreated channels are picked up.

        Args:
            registration: Registration to sync

        Returns:
            SyncResult of the pass

        Raises:
            IdentifierResolutionFailure: If the guild or channel is gone
            SourceError: If Meetup cannot deliver the events
            TargetUnavailable: If Discord cannot list or create events
        """
        start_time = time.time()
        extra = {'meetup_group': registration.meetup_group, 'guild_id': registration.guild_id}

        guild_id = self.target_client.resolve_guild(registration.guild_id)
        voice_channel_id = self.target_client.resolve_channel(registration.voice_channel_id)

        meetings = self.source_client.fetch_meetings(
            registration.meetup_group,
            registration.number_of_events
        )
        existing = self.target_client.list_events(guild_id)

        result = self.reconciler.reconcile(
            registration,
            meetings,
            existing,
            guild_id=guild_id,
            voice_channel_id=voice_channel_id
        )

        logger.info(
            f"Synced {registration.meetup_group} into {registration.display_name}: "
            f"{result.created} created, {len(result.skipped)} already existing, "
            f"{result.failed} failed",
            extra={
                **extra,
                'events_created': result.created,
                'events_skipped': len(result.skipped),
                'events_failed': result.failed,
                'duration_seconds': round(time.time() - start_time, 2)
            }
        )
        return result
