"""Integration tests for the command line entry point."""
import json
import logging
import os
from unittest.mock import Mock, patch

import pytest

from main import JsonFormatter, load_settings, main, setup_logging
from processor.errors import GroupNotFound, IdentifierResolutionFailure
from processor.models import CreationOutcome, MirroredEvent, SyncResult
from tests.fake_clients import make_meeting


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'DISCORD_TOKEN': 'bot-token',
        'TABLE_NAME': 'test-meetup-syncs',
        'LOG_LEVEL': 'INFO',
        'TIMEOUT_SECONDS': '10',
        'SYNC_INTERVAL_SECONDS': '600',
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


class TestSettings:
    """Test cases for environment configuration."""

    def test_defaults(self):
        """Test default settings with an empty environment."""
        with patch.dict(os.environ, {}, clear=True):
            settings = load_settings()

        assert settings.table_name == 'meetup-discord-syncs'
        assert settings.meetup_endpoint == 'https://api.meetup.com/gql'
        assert settings.meetup_token is None
        assert settings.sync_interval_seconds == 900
        assert settings.max_initial_jitter_seconds == 765

    def test_overrides(self, mock_env):
        """Test settings read from environment variables."""
        settings = load_settings()

        assert settings.discord_token == 'bot-token'
        assert settings.table_name == 'test-meetup-syncs'
        assert settings.timeout_seconds == 10
        assert settings.sync_interval_seconds == 600


class TestLogging:
    """Test cases for JSON logging."""

    def test_json_formatter_includes_extra_fields(self):
        """Test that selected extra fields land in the JSON record."""
        record = logging.LogRecord('sync', logging.ERROR, __file__, 1, "Sync failed", None, None)
        record.meetup_group = 'rust-community-stuttgart'
        record.error_type = 'SourceUnavailable'

        data = json.loads(JsonFormatter().format(record))

        assert data['level'] == 'ERROR'
        assert data['message'] == 'Sync failed'
        assert data['meetup_group'] == 'rust-community-stuttgart'
        assert data['error_type'] == 'SourceUnavailable'
        assert 'exception' not in data

    def test_setup_logging_replaces_handlers(self):
        """Test that setup_logging installs a single JSON handler."""
        root_logger = logging.getLogger()
        saved = root_logger.handlers[:], root_logger.level
        try:
            setup_logging('debug')

            assert len(root_logger.handlers) == 1
            assert isinstance(root_logger.handlers[0].formatter, JsonFormatter)
            assert root_logger.level == logging.DEBUG
        finally:
            root_logger.handlers[:] = saved[0]
            root_logger.setLevel(saved[1])


@patch('main.setup_logging')
class TestCommands:
    """Test cases for the sub-commands."""

    @patch('main.RegistrationStore')
    def test_register_inserts_registration(self, mock_store_class, mock_logging, mock_env, capsys):
        """Test that register stores the registration."""
        mock_store_class.return_value.insert.return_value = True

        code = main(['register', 'rust-community-stuttgart', '100', '200', '--events', '3'])

        assert code == 0
        mock_store_class.assert_called_once_with('test-meetup-syncs')
        registration = mock_store_class.return_value.insert.call_args[0][0]
        assert registration.meetup_group == 'rust-community-stuttgart'
        assert registration.guild_id == '100'
        assert registration.voice_channel_id == '200'
        assert registration.number_of_events == 3
        assert 'rust-community-stuttgart' in capsys.readouterr().out

    @patch('main.RegistrationStore')
    def test_register_existing_fails(self, mock_store_class, mock_logging, mock_env):
        """Test that registering twice exits with 1."""
        mock_store_class.return_value.insert.return_value = False

        assert main(['register', 'rust-community-stuttgart', '100', '200']) == 1

    @patch('main.RegistrationStore')
    def test_register_invalid_count(self, mock_store_class, mock_logging, mock_env):
        """Test that an out of range event count exits with 2."""
        mock_store_class.return_value.insert.side_effect = ValueError("out of range")

        assert main(['register', 'rust-community-stuttgart', '100', '200', '--events', '50']) == 2

    @patch('main.build_runner')
    def test_sync_prints_summary(self, mock_build_runner, mock_logging, mock_env, capsys):
        """Test the summary printed after a single pass."""
        meeting = make_meeting('a')
        event = MirroredEvent('1', meeting.title, 'x', '2024-06-01T16:00:00+00:00', None, 'external')
        mock_build_runner.return_value.run_pass.return_value = SyncResult(
            outcomes=[
                CreationOutcome(meeting=meeting, event=event),
                CreationOutcome(meeting=make_meeting('b'), error="Unparseable start time: 'x'"),
            ],
            skipped=['https://www.meetup.com/rust-community-stuttgart/events/c/']
        )

        code = main(['sync', 'rust-community-stuttgart', '100', '200'])

        assert code == 0
        out = capsys.readouterr().out
        assert '1 created, 1 already existing, 1 failed' in out
        assert "Unparseable start time" in out
        registration = mock_build_runner.return_value.run_pass.call_args[0][0]
        assert registration.number_of_events == 2

    @patch('main.build_runner')
    def test_sync_failure_returns_error(self, mock_build_runner, mock_logging, mock_env):
        """Test that a failed pass exits with 1."""
        mock_build_runner.return_value.run_pass.side_effect = IdentifierResolutionFailure('guild', '100')

        assert main(['sync', 'rust-community-stuttgart', '100', '200']) == 1

    @patch('main.MeetupClient')
    def test_list_prints_meetings(self, mock_client_class, mock_logging, mock_env, capsys):
        """Test listing upcoming meetings."""
        mock_client_class.return_value.fetch_meetings.return_value = [
            make_meeting('a'),
            make_meeting('b', is_online=True, date_time='garbled'),
        ]

        code = main(['list', 'rust-community-stuttgart'])

        assert code == 0
        mock_client_class.return_value.fetch_meetings.assert_called_once_with(
            'rust-community-stuttgart', 3
        )
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith('2024-06-01T18:00:00+02:00  Meetup a (in person')
        assert lines[1].startswith('garbled  Meetup b (online')

    @patch('main.MeetupClient')
    def test_list_unknown_group(self, mock_client_class, mock_logging, mock_env):
        """Test that an unknown group exits with 1."""
        mock_client_class.return_value.fetch_meetings.side_effect = GroupNotFound('nope')

        assert main(['list', 'nope']) == 1

    @patch('main.signal.signal')
    @patch('main.RegistrationStore')
    @patch('main.RegistrationScheduler')
    @patch('main.build_runner')
    def test_run_schedules_stored_registrations(
        self,
        mock_build_runner,
        mock_scheduler_class,
        mock_store_class,
        mock_signal,
        mock_logging,
        mock_env
    ):
        """Test that run schedules stored registrations and shuts down."""
        mock_store_class.return_value.list_all.return_value = []

        with patch('main.threading.Event') as mock_event_class:
            mock_event_class.return_value.wait.return_value = True
            code = main(['run'])

        assert code == 0
        mock_scheduler_class.assert_called_once_with(
            mock_build_runner.return_value,
            interval=600,
            max_jitter=765
        )
        mock_store_class.return_value.list_all.assert_called_once()
        mock_scheduler_class.return_value.shutdown.assert_called_once_with(timeout=10)
        assert mock_signal.call_count == 2

    def test_missing_token_exits(self, mock_logging):
        """Test that a missing bot token stops the process."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(SystemExit):
                main(['sync', 'rust-community-stuttgart', '100', '200'])
