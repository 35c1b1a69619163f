"""Discord REST client for guild scheduled events."""
import logging
from typing import Any, Dict, List, Optional

import requests

from processor.errors import EventRejected, IdentifierResolutionFailure, TargetUnavailable
from processor.models import (
    DISCORD_ENTITY_TYPES,
    ENTITY_TYPE_STAGE,
    MirroredEvent,
    ScheduledEventDraft,
)

logger = logging.getLogger(__name__)


class DiscordClient:
    """Thin client for the parts of the Discord API the sync needs."""

    BASE_URL = "https://discord.com/api/v10"

    def __init__(
        self,
        token: str,
        timeout: int = 30,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the Discord client.

        Args:
            token: Bot token
            timeout: HTTP request timeout in seconds (default: 30)
            base_url: API root (default: Discord v10)
            session: Optional requests session to reuse connections
        """
        self.timeout = timeout
        self.base_url = (base_url or self.BASE_URL).rstrip('/')
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f"Bot {token}",
            'User-Agent': 'DiscordBot (meetup-discord-sync, 1.0)',
        })

    def list_events(self, guild_id: str) -> List[MirroredEvent]:
        """
        List the scheduled events of a guild.

        Args:
            guild_id: Discord guild id

        Returns:
            List of MirroredEvent objects

        Raises:
            TargetUnavailable: If Discord cannot be reached or refuses the request
        """
        items = self._request('GET', f"/guilds/{guild_id}/scheduled-events")
        if not isinstance(items, list):
            raise TargetUnavailable("Discord returned an unexpected event list")

        events = [self._item_to_mirrored_event(item) for item in items]
        logger.debug(f"Retrieved {len(events)} scheduled events for guild {guild_id}")
        return events

    def create_event(self, guild_id: str, draft: ScheduledEventDraft) -> MirroredEvent:
        """
        Create a scheduled event in a guild.

        Args:
            guild_id: Discord guild id
            draft: Event to create

        Returns:
            The MirroredEvent Discord created

        Raises:
            EventRejected: If Discord refuses this particular event (HTTP 400)
            TargetUnavailable: If the creation request fails
        """
        item = self._request(
            'POST',
            f"/guilds/{guild_id}/scheduled-events",
            json=draft.to_payload()
        )
        return self._item_to_mirrored_event(item)

    def resolve_guild(self, guild_id: str) -> str:
        """
        Look up a guild and return the id Discord reports for it.

        Raises:
            IdentifierResolutionFailure: If the guild is unknown or not visible
            TargetUnavailable: If Discord cannot be reached
        """
        return self._resolve('guild', guild_id, f"/guilds/{guild_id}")

    def resolve_channel(self, channel_id: str) -> str:
        """
        Look up a channel and return the id Discord reports for it.

        Raises:
            IdentifierResolutionFailure: If the channel is unknown or not visible
            TargetUnavailable: If Discord cannot be reached
        """
        return self._resolve('channel', channel_id, f"/channels/{channel_id}")

    def _resolve(self, kind: str, identifier: str, path: str) -> str:
        if not str(identifier).isdigit():
            raise IdentifierResolutionFailure(kind, identifier, 'not a snowflake')

        try:
            item = self._request('GET', path)
        except _NotFound as e:
            raise IdentifierResolutionFailure(kind, identifier, str(e)) from e

        try:
            return str(item['id'])
        except (KeyError, TypeError) as e:
            raise IdentifierResolutionFailure(kind, identifier, 'malformed response') from e

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send a request to the Discord API.

        Args:
            method: HTTP method
            path: Route below the API root
            json: Optional JSON body

        Returns:
            Decoded JSON response body

        Raises:
            EventRejected: If Discord refuses the request body (HTTP 400)
            TargetUnavailable: On transport errors or unexpected status codes
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=json, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Discord request {method} {path} failed: {e}")
            raise TargetUnavailable(f"Discord request failed: {e}") from e

        if response.status_code in (403, 404):
            logger.error(f"Discord request {method} {path} returned {response.status_code}")
            raise _NotFound(f"HTTP {response.status_code} for {method} {path}")

        if response.status_code >= 400:
            logger.error(
                f"Discord request {method} {path} returned {response.status_code}: "
                f"{response.text[:200]}"
            )
            error_class = EventRejected if response.status_code == 400 else TargetUnavailable
            raise error_class(
                f"Discord returned HTTP {response.status_code} for {method} {path}: "
                f"{response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise TargetUnavailable(f"Discord returned a non JSON body for {method} {path}") from e

    def _item_to_mirrored_event(self, item: Dict[str, Any]) -> MirroredEvent:
        """
        Convert a Discord scheduled event object to a MirroredEvent.

        Args:
            item: Scheduled event object from the API

        Returns:
            MirroredEvent object

        Raises:
            TargetUnavailable: If required fields are missing
        """
        try:
            metadata = item.get('entity_metadata') or {}
            channel_id = item.get('channel_id')
            return MirroredEvent(
                id=str(item['id']),
                name=item['name'],
                description=item.get('description'),
                scheduled_start_time=item['scheduled_start_time'],
                scheduled_end_time=item.get('scheduled_end_time'),
                entity_type=DISCORD_ENTITY_TYPES.get(item.get('entity_type'), ENTITY_TYPE_STAGE),
                channel_id=str(channel_id) if channel_id else None,
                location=metadata.get('location')
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise TargetUnavailable(f"Malformed scheduled event from Discord: {e}") from e


class _NotFound(TargetUnavailable):
    """Discord answered 403 or 404."""
