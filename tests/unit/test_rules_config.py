"""Unit tests for rule configuration loading."""

from datetime import date

import pytest

from app.config.rules import (
    AgeBandPolicy,
    AgeCutoffPolicy,
    MultiPrizePolicy,
    PriorityMode,
    RuleConfig,
    TieBreakField,
    resolve_reference_date,
)
from app.config.settings import Settings


class TestFromMapping:
    """Test tolerant parsing of organizer rule config."""

    def test_empty_mapping_gives_defaults(self):
        """No mapping means built-in defaults."""
        assert RuleConfig.from_mapping(None) == RuleConfig()
        assert RuleConfig.from_mapping({}) == RuleConfig()

    def test_enum_values(self):
        """Enum fields parse from their string values."""
        rules = RuleConfig.from_mapping({
            "age_band_policy": "overlapping",
            "main_vs_side_priority_mode": "value_first",
            "multi_prize_policy": "main_plus_one_side",
            "age_cutoff_policy": "TOURNAMENT_START_DATE",
        })
        assert rules.age_band_policy is AgeBandPolicy.OVERLAPPING
        assert rules.main_vs_side_priority_mode is PriorityMode.VALUE_FIRST
        assert rules.multi_prize_policy is MultiPrizePolicy.MAIN_PLUS_ONE_SIDE
        assert rules.age_cutoff_policy is AgeCutoffPolicy.TOURNAMENT_START_DATE

    def test_invalid_values_fall_back_to_defaults(self):
        """Malformed values fall back to the built-in default."""
        rules = RuleConfig.from_mapping({
            "multi_prize_policy": "two_please",
            "strict_age": "maybe",
            "age_cutoff_date": "not-a-date",
        })
        assert rules == RuleConfig()

    @pytest.mark.parametrize("raw, expected", [
        ("true", True), ("No", False), (1, True), (0, False), ("", False),
    ])
    def test_boolean_coercion(self, raw, expected):
        """Common boolean spellings are accepted."""
        assert RuleConfig.from_mapping({"allow_unrated_in_rating": raw}).allow_unrated_in_rating is expected

    def test_tie_break_fields_from_string(self):
        """A comma separated string is accepted."""
        rules = RuleConfig.from_mapping({"tie_break_fields": "name, younger"})
        assert rules.tie_break_fields == (TieBreakField.NAME, TieBreakField.YOUNGER)

    def test_unknown_keys_are_ignored(self):
        """Keys the engine does not know are dropped."""
        assert RuleConfig.from_mapping({"colour": "blue"}) == RuleConfig()

    def test_null_values_keep_defaults(self):
        """None is treated as not set."""
        assert RuleConfig.from_mapping({"strict_age": None}).strict_age is True

    def test_merged(self):
        """Overrides layer on top of the receiver."""
        base = RuleConfig(multi_prize_policy=MultiPrizePolicy.UNLIMITED)
        merged = base.merged({"strict_age": False})
        assert merged.multi_prize_policy is MultiPrizePolicy.UNLIMITED
        assert merged.strict_age is False
        assert base.merged(None) is base

    def test_merged_invalid_values_keep_base(self):
        """A malformed override keeps the layered value, not the built-in default."""
        base = RuleConfig(multi_prize_policy=MultiPrizePolicy.MAIN_PLUS_ONE_SIDE, strict_age=False)
        merged = base.merged({"multi_prize_policy": "bogus", "strict_age": "maybe"})
        assert merged.multi_prize_policy is MultiPrizePolicy.MAIN_PLUS_ONE_SIDE
        assert merged.strict_age is False
        assert merged == base

    def test_from_mapping_with_base(self):
        """Missing keys come from the base config."""
        base = RuleConfig(age_band_policy=AgeBandPolicy.OVERLAPPING)
        rules = RuleConfig.from_mapping({"strict_age": "no"}, base=base)
        assert rules.age_band_policy is AgeBandPolicy.OVERLAPPING
        assert rules.strict_age is False
        assert RuleConfig.from_mapping(None, base=base) is base

    def test_to_dict_is_json_friendly(self):
        """to_dict output parses back to the same config."""
        data = RuleConfig(age_cutoff_date=date(2026, 4, 1)).to_dict()
        assert data["multi_prize_policy"] == "single"
        assert data["tie_break_fields"] == ["rating", "name"]
        assert data["age_cutoff_date"] == "2026-04-01"
        assert RuleConfig.from_mapping(data) == RuleConfig(age_cutoff_date=date(2026, 4, 1))


class TestReferenceDate:
    """Test the age cutoff date."""

    def setup_method(self):
        self.start = date(2026, 3, 14)

    def test_jan1_of_tournament_year(self):
        """Default cutoff is 1 January of the tournament year."""
        assert resolve_reference_date(RuleConfig(), self.start) == date(2026, 1, 1)

    def test_tournament_start(self):
        """Cutoff can be the tournament start date."""
        rules = RuleConfig(age_cutoff_policy=AgeCutoffPolicy.TOURNAMENT_START_DATE)
        assert resolve_reference_date(rules, self.start) == self.start

    def test_custom_date(self):
        """Cutoff can be a fixed organizer date."""
        rules = RuleConfig(
            age_cutoff_policy=AgeCutoffPolicy.CUSTOM_DATE,
            age_cutoff_date=date(2025, 9, 1),
        )
        assert resolve_reference_date(rules, self.start) == date(2025, 9, 1)

    def test_custom_policy_without_date(self):
        """Custom policy without a date falls back to the start date."""
        rules = RuleConfig(age_cutoff_policy=AgeCutoffPolicy.CUSTOM_DATE)
        assert resolve_reference_date(rules, self.start) == self.start


class TestSettings:
    """Test defaults.yaml loading."""

    def test_bundled_defaults_match_builtin(self):
        """The shipped defaults.yaml matches RuleConfig()."""
        assert Settings().default_rule_config() == RuleConfig()

    def test_custom_defaults_file(self, tmp_path):
        """A custom YAML file overrides rule defaults."""
        config = tmp_path / "defaults.yaml"
        config.write_text(
            "allocation:\n"
            "  rules:\n"
            "    multi_prize_policy: unlimited\n"
            "    prefer_main_on_equal_value: false\n"
        )
        rules = Settings(config_path=config).default_rule_config()
        assert rules.multi_prize_policy is MultiPrizePolicy.UNLIMITED
        assert rules.prefer_main_on_equal_value is False

    def test_missing_file_uses_builtin(self, tmp_path):
        """A missing YAML file is not an error."""
        settings = Settings(config_path=tmp_path / "absent.yaml")
        assert settings.default_rule_config() == RuleConfig()

    def test_verbose_logs_flag(self):
        """The settings flag forces verbose logs on."""
        assert Settings(allocation_verbose_logs=True).default_rule_config().verbose_logs

    def test_app_settings_from_environment(self, monkeypatch):
        """DEBUG and LOG_LEVEL are read from the environment."""
        monkeypatch.setenv("DEBUG", "true")
        monkeypatch.setenv("LOG_LEVEL", "warning")
        settings = Settings()
        assert settings.debug is True
        assert settings.log_level == "warning"
