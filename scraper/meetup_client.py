"""GraphQL client for upcoming Meetup group events."""
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from processor.errors import GroupNotFound, SourceSchemaMismatch, SourceUnavailable
from processor.models import MAX_EVENTS_PER_SYNC, Meeting

logger = logging.getLogger(__name__)

UPCOMING_EVENTS_QUERY = """
query ($urlname: String!, $first: Int!) {
  groupByUrlname(urlname: $urlname) {
    name
    city
    upcomingEvents(input: {first: $first, last: 10}) {
      count
      edges {
        node {
          title
          description
          eventUrl
          status
          dateTime
          duration
          id
          isOnline
        }
      }
    }
  }
}
"""


class MeetupClient:
    """Client for Meetup's GraphQL API."""

    BASE_URL = "https://api.meetup.com/gql"

    def __init__(
        self,
        endpoint: Optional[str] = None,
        token: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the Meetup client.

        Args:
            endpoint: GraphQL endpoint (default: Meetup's public endpoint)
            token: Optional OAuth bearer token
            timeout: HTTP request timeout in seconds (default: 30)
            session: Optional requests session to reuse connections
        """
        self.endpoint = endpoint or self.BASE_URL
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_meetings(self, group_name: str, count: int) -> List[Meeting]:
        """
        Fetch the next upcoming events of a Meetup group.

        Args:
            group_name: Meetup url name of the group
            count: Number of upcoming events to request (1-20)

        Returns:
            List of Meeting objects in the order Meetup returned them

        Raises:
            ValueError: If count is out of range
            SourceUnavailable: If Meetup cannot be reached
            SourceSchemaMismatch: If the response cannot be decoded
            GroupNotFound: If Meetup knows no group with that name
        """
        if not 1 <= count <= MAX_EVENTS_PER_SYNC:
            raise ValueError(
                f"count must be between 1 and {MAX_EVENTS_PER_SYNC}, got {count}"
            )

        logger.info(f"Fetching {count} upcoming events for {group_name}")

        payload = self._post_query(group_name, count)
        meetings = self._parse_meetings(group_name, payload)

        logger.info(f"Successfully fetched {len(meetings)} events for {group_name}")
        return meetings

    def _post_query(self, group_name: str, count: int) -> Dict[str, Any]:
        """
        Send the upcoming events query with retry logic.

        Args:
            group_name: Meetup url name of the group
            count: Number of upcoming events to request

        Returns:
            Decoded JSON response body

        Raises:
            SourceUnavailable: If all retry attempts fail
            SourceSchemaMismatch: If the body is not JSON
        """
        body = {
            'query': UPCOMING_EVENTS_QUERY,
            'variables': {'urlname': group_name, 'first': count},
        }
        headers = {}
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"

        max_retries = 3
        base_delay = 1  # seconds

        for attempt in range(max_retries):
            try:
                logger.debug(f"Querying Meetup (attempt {attempt + 1}/{max_retries})")
                response = self.session.post(
                    self.endpoint,
                    json=body,
                    headers=headers,
                    timeout=self.timeout
                )
                response.raise_for_status()
                break

            except requests.RequestException as e:
                if attempt < max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise SourceUnavailable(f"Meetup request failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise SourceSchemaMismatch(f"Meetup response is not JSON: {e}") from e

    def _parse_meetings(self, group_name: str, payload: Dict[str, Any]) -> List[Meeting]:
        """
        Map the GraphQL response onto Meeting objects.

        Args:
            group_name: Meetup url name of the group
            payload: Decoded JSON response body

        Returns:
            List of Meeting objects

        Raises:
            SourceUnavailable: If Meetup answered with errors only
            SourceSchemaMismatch: If the payload has an unexpected shape
            GroupNotFound: If the group does not exist
        """
        if not isinstance(payload, dict):
            raise SourceSchemaMismatch("Meetup response is not an object")

        data = payload.get('data')
        if data is None:
            errors = payload.get('errors')
            if errors:
                if not isinstance(errors, list) or not all(isinstance(error, dict) for error in errors):
                    raise SourceSchemaMismatch(f"Meetup returned malformed errors: {errors!r}")
                messages = '; '.join(str(error.get('message', error)) for error in errors)
                raise SourceUnavailable(f"Meetup rejected the query: {messages}")
            raise SourceSchemaMismatch("Meetup response has no data")

        if not isinstance(data, dict) or 'groupByUrlname' not in data:
            raise SourceSchemaMismatch("Meetup response has no groupByUrlname field")

        community = data['groupByUrlname']
        if community is None:
            raise GroupNotFound(group_name)

        try:
            edges = community['upcomingEvents']['edges']
            return [self._parse_node(edge['node']) for edge in edges]
        except (KeyError, TypeError) as e:
            raise SourceSchemaMismatch(
                f"Unexpected Meetup response shape: {type(e).__name__}: {e}"
            ) from e

    def _parse_node(self, node: Dict[str, Any]) -> Meeting:
        """
        Parse a single event node.

        Args:
            node: Event node from the GraphQL response

        Returns:
            Meeting object
        """
        return Meeting(
            title=node['title'],
            event_url=node['eventUrl'],
            description=node.get('description') or '',
            status=node['status'],
            date_time=node['dateTime'],
            duration=node.get('duration'),
            id=str(node['id']),
            is_online=bool(node['isOnline'])
        )
