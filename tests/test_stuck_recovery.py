"""
Tests for stuck recovery (stuck_recovery.py).
"""

import inspect
import re

import pytest

from blueprint_flow import stuck_recovery
from blueprint_flow.stuck_recovery import (
    RecoveryRecommendation,
    StuckRecoveryConfig,
    StuckSignals,
    StuckTracker,
    recommend,
)


class TestStuckRecoveryConfig:
    """Threshold profiles"""

    def test_default_values(self):
        """Default thresholds"""
        config = StuckRecoveryConfig.default()
        assert config.empty_input_threshold == 2
        assert config.invalid_input_threshold == 3
        assert config.idle_threshold_ms == 120000
        assert config.restart_threshold == 6

    def test_new_user_is_more_sensitive(self):
        """A new user gets help sooner"""
        default = StuckRecoveryConfig.default()
        new_user = StuckRecoveryConfig.new_user()
        assert new_user.invalid_input_threshold < default.invalid_input_threshold
        assert new_user.idle_threshold_ms < default.idle_threshold_ms

    def test_expert_is_less_sensitive(self):
        """An expert is interrupted less"""
        default = StuckRecoveryConfig.default()
        expert = StuckRecoveryConfig.expert()
        assert expert.restart_threshold > default.restart_threshold
        assert expert.idle_threshold_ms > default.idle_threshold_ms

    def test_from_settings_profile(self):
        """Profile loaded from settings"""
        assert StuckRecoveryConfig.from_settings("expert") == StuckRecoveryConfig.expert()
        assert StuckRecoveryConfig.from_settings("new_user") == StuckRecoveryConfig.new_user()

    def test_from_settings_active_profile(self):
        """Without an argument stuck_recovery.profile is used"""
        assert StuckRecoveryConfig.from_settings() == StuckRecoveryConfig.default()

    def test_from_settings_unknown_profile(self):
        """Unknown profile falls back to the defaults"""
        assert StuckRecoveryConfig.from_settings("nonexistent") == StuckRecoveryConfig.default()


class TestRecommend:
    """Recommendation ladder"""

    def test_no_signals(self):
        """No signals, no recommendation"""
        assert recommend(StuckSignals()) == RecoveryRecommendation.NONE

    def test_empty_inputs_offer_examples(self):
        """Empty answers offer examples"""
        assert recommend(StuckSignals(empty_input_attempts=1)) == RecoveryRecommendation.NONE
        assert recommend(StuckSignals(empty_input_attempts=2)) == RecoveryRecommendation.OFFER_EXAMPLES

    def test_invalid_inputs_offer_help(self):
        """Invalid answers on a required step offer help"""
        signals = StuckSignals(invalid_input_attempts=3, step_skippable=False)
        assert recommend(signals) == RecoveryRecommendation.OFFER_HELP

    def test_invalid_inputs_offer_skip(self):
        """Invalid answers on an optional step offer skip"""
        signals = StuckSignals(invalid_input_attempts=3, step_skippable=True)
        assert recommend(signals) == RecoveryRecommendation.OFFER_SKIP

    def test_idle_offers_help(self):
        """A long idle period offers help"""
        assert recommend(StuckSignals(idle_ms=120000)) == RecoveryRecommendation.NONE
        assert recommend(StuckSignals(idle_ms=120001)) == RecoveryRecommendation.OFFER_HELP

    def test_restart_has_highest_priority(self):
        """Too many failed attempts offer restart"""
        signals = StuckSignals(empty_input_attempts=3, invalid_input_attempts=3, step_skippable=True)
        assert recommend(signals) == RecoveryRecommendation.OFFER_RESTART

    def test_invalid_beats_empty(self):
        """Invalid answers outrank empty ones"""
        signals = StuckSignals(empty_input_attempts=2, invalid_input_attempts=3)
        assert recommend(signals) == RecoveryRecommendation.OFFER_HELP

    def test_custom_config(self):
        """Thresholds come from the given config"""
        config = StuckRecoveryConfig.expert()
        assert recommend(StuckSignals(empty_input_attempts=2), config) == RecoveryRecommendation.NONE
        assert recommend(StuckSignals(empty_input_attempts=3), config) == RecoveryRecommendation.OFFER_EXAMPLES

    def test_recommendation_values(self):
        """String values for the UI"""
        assert RecoveryRecommendation.OFFER_SKIP.value == "offer-skip"
        assert RecoveryRecommendation("offer-restart") is RecoveryRecommendation.OFFER_RESTART


class TestStuckTracker:
    """Session counters"""

    def test_counts(self):
        tracker = StuckTracker()
        tracker.record_empty()
        tracker.record_invalid()
        tracker.record_invalid()
        signals = tracker.signals(now=0.0, step_skippable=False)
        assert signals.empty_input_attempts == 1
        assert signals.invalid_input_attempts == 2
        assert signals.failed_attempts == 3

    def test_progress_resets(self):
        """Accepted input resets the counters"""
        tracker = StuckTracker()
        tracker.record_empty()
        tracker.record_invalid()
        tracker.record_progress()
        assert tracker.signals(now=0.0, step_skippable=False).failed_attempts == 0

    def test_idle_ms(self):
        """Idle time counts from the last interaction"""
        tracker = StuckTracker()
        assert tracker.idle_ms(100.0) == 0
        tracker.touch(100.0)
        assert tracker.idle_ms(102.5) == 2500
        assert tracker.idle_ms(99.0) == 0

    def test_to_dict(self):
        tracker = StuckTracker()
        tracker.touch(5.0)
        assert tracker.to_dict() == {
            "empty_input_attempts": 0,
            "invalid_input_attempts": 0,
            "last_interaction_at": 5.0,
        }


class TestDocumentationLanguage:
    """Flow-layer modules are documented in English"""

    CYRILLIC = re.compile("[\u0400-\u04ff]")

    def test_docstrings_are_english(self):
        documented = [stuck_recovery] + [
            obj for _, obj in inspect.getmembers(stuck_recovery)
            if getattr(obj, "__module__", None) == stuck_recovery.__name__
        ]
        for obj in documented:
            assert not self.CYRILLIC.search(inspect.getdoc(obj) or ""), obj

    def test_source_is_english(self):
        assert not self.CYRILLIC.search(inspect.getsource(stuck_recovery))
