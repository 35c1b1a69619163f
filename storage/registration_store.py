"""DynamoDB store for Meetup group registrations."""
import logging
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import MAX_EVENTS_PER_SYNC, Registration

logger = logging.getLogger(__name__)


class RegistrationStore:
    """Keyed store of registrations, one item per (guild, Meetup group)."""

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized RegistrationStore for table: {table_name}")

    def list_all(self) -> List[Registration]:
        """
        Retrieve every registration using a Scan operation.

        Returns:
            List of Registration objects
        """
        logger.info("Scanning DynamoDB table for registrations")

        try:
            response = self.table.scan()
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise

        registrations = []
        for item in items:
            registration = self._item_to_registration(item)
            if registration:
                registrations.append(registration)

        logger.info(f"Retrieved {len(registrations)} registrations from DynamoDB")
        return registrations

    def insert(self, registration: Registration) -> bool:
        """
        Store a new registration.

        Args:
            registration: Registration to store

        Returns:
            True if stored, False if the guild already follows that group

        Raises:
            ValueError: If number_of_events is out of range
            ClientError: On any other DynamoDB failure
        """
        if not 1 <= registration.number_of_events <= MAX_EVENTS_PER_SYNC:
            raise ValueError(
                f"number_of_events must be between 1 and {MAX_EVENTS_PER_SYNC}"
            )

        try:
            self.table.put_item(
                Item=self._registration_to_item(registration),
                ConditionExpression='attribute_not_exists(guild_id)'
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.info(
                    f"Guild {registration.guild_id} already follows {registration.meetup_group}"
                )
                return False
            logger.error(f"Error writing registration: {e}")
            raise

        logger.info(
            f"Inserted registration of {registration.meetup_group} for guild {registration.guild_id}"
        )
        return True

    def _item_to_registration(self, item: dict) -> Optional[Registration]:
        """
        Convert DynamoDB item to Registration object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Registration object or None if conversion fails
        """
        try:
            return Registration(
                meetup_group=item['meetup_group'],
                guild_id=item['guild_id'],
                voice_channel_id=item['voice_channel_id'],
                server_name=item.get('server_name'),
                number_of_events=int(item['number_of_events'])
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to Registration: {e}")
            return None

    def _registration_to_item(self, registration: Registration) -> dict:
        """
        Convert Registration object to DynamoDB item.

        Args:
            registration: Registration object

        Returns:
            DynamoDB item dictionary
        """
        item = {
            'guild_id': registration.guild_id,
            'meetup_group': registration.meetup_group,
            'voice_channel_id': registration.voice_channel_id,
            'number_of_events': registration.number_of_events
        }

        if registration.server_name:
            item['server_name'] = registration.server_name

        return item
