"""Data models for Meetup to Discord event syncing."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


MAX_EVENTS_PER_SYNC = 20

ENTITY_TYPE_STAGE = 'stage'
ENTITY_TYPE_VOICE = 'voice'
ENTITY_TYPE_EXTERNAL = 'external'

# Discord's numeric entity_type values
DISCORD_ENTITY_TYPES = {
    1: ENTITY_TYPE_STAGE,
    2: ENTITY_TYPE_VOICE,
    3: ENTITY_TYPE_EXTERNAL,
}
DISCORD_ENTITY_TYPE_IDS = {name: code for code, name in DISCORD_ENTITY_TYPES.items()}

GUILD_ONLY_PRIVACY_LEVEL = 2


@dataclass
class Registration:
    """A Meetup group followed by a Discord guild."""
    meetup_group: str
    guild_id: str
    voice_channel_id: str
    server_name: Optional[str] = None
    number_of_events: int = 2

    @property
    def display_name(self) -> str:
        return self.server_name or 'No name'


@dataclass
class Meeting:
    """Upcoming event as published by Meetup."""
    title: str
    event_url: str
    description: str
    status: str
    date_time: str
    duration: Optional[str]
    id: str
    is_online: bool


@dataclass
class MirroredEvent:
    """Scheduled event that already exists in a Discord guild."""
    id: str
    name: str
    description: Optional[str]
    scheduled_start_time: str
    scheduled_end_time: Optional[str]
    entity_type: str
    channel_id: Optional[str] = None
    location: Optional[str] = None


@dataclass
class ScheduledEventDraft:
    """Scheduled event about to be created in Discord."""
    name: str
    description: str
    start: datetime
    end: datetime
    entity_type: str
    channel_id: Optional[str] = None
    location: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """
        Build the JSON body for Discord's create-scheduled-event route.

        Returns:
            Dictionary ready to be sent as the request body
        """
        payload = {
            'name': self.name,
            'description': self.description,
            'scheduled_start_time': self.start.isoformat(),
            'scheduled_end_time': self.end.isoformat(),
            'privacy_level': GUILD_ONLY_PRIVACY_LEVEL,
            'entity_type': DISCORD_ENTITY_TYPE_IDS[self.entity_type],
        }

        if self.channel_id:
            payload['channel_id'] = self.channel_id
        if self.location:
            payload['entity_metadata'] = {'location': self.location}

        return payload


@dataclass
class CreationOutcome:
    """Result of trying to mirror one Meeting."""
    meeting: Meeting
    event: Optional[MirroredEvent] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.event is not None


@dataclass
class SyncResult:
    """Result of one reconciliation pass."""
    outcomes: List[CreationOutcome] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.succeeded)

    @property
    def errors(self) -> List[str]:
        return [outcome.error for outcome in self.outcomes if outcome.error]
