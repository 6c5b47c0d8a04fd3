"""
Unit tests for settings -> run configuration
"""

import json

import pytest

from core.config import (
    DEFAULT_ACTION_TAGS,
    ClubContext,
    Settings,
    SyncConfig,
    load_club_contexts,
    select_clubs,
)
from core.exceptions import ConfigurationError


def make_settings(**overrides) -> Settings:
    values = {
        "SOURCE_APP_ID": "app",
        "SOURCE_APP_KEY": "key",
        "DEFAULT_CLUB_NUMBER": "1234",
        "DEFAULT_LOCATION_ID": "loc_1",
        "DEFAULT_TARGET_API_KEY": "pit_1",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestSyncConfig:

    def test_from_settings(self):
        config = SyncConfig.from_settings(make_settings(
            PAGE_SIZE=100,
            WRITE_DELAY_SECONDS=0.5,
            ACTION_TAGS={"new_members": "new sale"},
        ))

        assert config.page_size == 100
        assert config.write_delay == 0.5
        assert config.excluded_types == frozenset({"NON-MEMBER", "Employee"})
        assert config.action_tags["new_members"] == "new sale"
        assert config.action_tags["past_due_members"] == DEFAULT_ACTION_TAGS["past_due_members"]
        assert "member_id" in config.custom_field_maps["new_members"]

    def test_missing_source_credentials(self):
        with pytest.raises(ConfigurationError):
            SyncConfig.from_settings(make_settings(SOURCE_APP_KEY=None))

    def test_invalid_lookup_mode(self):
        with pytest.raises(ValueError):
            SyncConfig.from_settings(make_settings(LOOKUP_MODE="fuzzy"))

    def test_secrets_not_in_repr(self):
        config = SyncConfig.from_settings(make_settings(SOURCE_APP_KEY="s3cr3t-app-key"))
        assert "s3cr3t-app-key" not in repr(config)

    def test_config_is_immutable(self):
        config = SyncConfig.from_settings(make_settings())
        with pytest.raises(Exception):
            config.page_size = 1


class TestClubContexts:

    def test_default_single_club(self):
        clubs = load_club_contexts(make_settings(DEFAULT_CLUB_NAME="Downtown"))

        assert len(clubs) == 1
        assert clubs[0].club_number == "1234"
        assert clubs[0].location_id == "loc_1"
        assert clubs[0].label == "Downtown (1234)"

    def test_clubs_file(self, tmp_path):
        clubs_file = tmp_path / "clubs.json"
        clubs_file.write_text(json.dumps([
            {"club_number": 1234, "location_id": "loc_1", "target_api_key": "pit_1", "name": "Downtown"},
            {"club_number": "5678", "location_id": "loc_2", "target_api_key": "pit_2",
             "custom_field_maps": {"new_members": {"member_id": "identity"}}},
        ]))

        clubs = load_club_contexts(make_settings(CLUBS_FILE=str(clubs_file)))

        assert [c.club_number for c in clubs] == ["1234", "5678"]
        assert clubs[1].custom_field_maps == {"new_members": {"member_id": "identity"}}

    def test_duplicate_club_numbers(self, tmp_path):
        clubs_file = tmp_path / "clubs.json"
        clubs_file.write_text(json.dumps([
            {"club_number": "1234", "location_id": "loc_1", "target_api_key": "pit_1"},
            {"club_number": "1234", "location_id": "loc_2", "target_api_key": "pit_2"},
        ]))

        with pytest.raises(ConfigurationError, match="Duplicate club numbers"):
            load_club_contexts(make_settings(CLUBS_FILE=str(clubs_file)))

    def test_missing_clubs_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Clubs file not found"):
            load_club_contexts(make_settings(CLUBS_FILE=str(tmp_path / "missing.json")))

    def test_invalid_clubs_file(self, tmp_path):
        clubs_file = tmp_path / "clubs.json"
        clubs_file.write_text("[{\"club_number\": \"1\"}]")

        with pytest.raises(ConfigurationError, match="Invalid clubs file"):
            load_club_contexts(make_settings(CLUBS_FILE=str(clubs_file)))

    def test_nothing_configured(self):
        with pytest.raises(ConfigurationError, match="No clubs configured"):
            load_club_contexts(make_settings(DEFAULT_CLUB_NUMBER=None))

    def test_api_key_not_in_repr(self):
        club = ClubContext(club_number="1", location_id="loc", target_api_key="pit_secret")
        assert "pit_secret" not in repr(club)


class TestSelectClubs:

    clubs = [
        ClubContext(club_number="1234", location_id="loc_1", target_api_key="pit_1"),
        ClubContext(club_number="5678", location_id="loc_2", target_api_key="pit_2"),
    ]

    def test_all_when_none_given(self):
        assert select_clubs(self.clubs, None) == self.clubs

    def test_one_club(self):
        assert [c.location_id for c in select_clubs(self.clubs, "5678")] == ["loc_2"]

    def test_unknown_club(self):
        with pytest.raises(ConfigurationError, match="Unknown club number"):
            select_clubs(self.clubs, "9999")
