"""Tests for network condition presets and change tracking."""

from debug_agent.recording.network import (
    DEFAULT_PRESET,
    NETWORK_PRESETS,
    NetworkConditions,
    NetworkConditionTracker,
    get_preset,
    match_preset,
    presets_as_dict,
)


class TestNetworkConditions:
    """Tests for NetworkConditions."""

    def test_round_trip_wire_form(self):
        """Test conditions convert to and from the CDP form."""
        wire = {"offline": False, "downloadThroughput": 1024, "uploadThroughput": 512, "latency": 40}
        conditions = NetworkConditions.from_dict(wire)

        assert conditions.download_throughput == 1024
        assert conditions.to_dict() == wire

    def test_defaults_are_unthrottled(self):
        """Test default conditions equal no throttling."""
        assert NetworkConditions() == NETWORK_PRESETS[DEFAULT_PRESET]

    def test_latency_tolerance(self):
        """Test conditions match only within the latency tolerance."""
        base = NETWORK_PRESETS["Fast 4G"]
        assert base.matches(NetworkConditions(False, 400 * 1024, 400 * 1024, 29.9))
        assert not base.matches(NetworkConditions(False, 400 * 1024, 400 * 1024, 30))


class TestPresets:
    """Tests for the preset table."""

    def test_preset_values(self):
        """Test the preset table values."""
        fast_3g = NETWORK_PRESETS["Fast 3G"]
        assert fast_3g.download_throughput == 153600
        assert fast_3g.upload_throughput == 76800
        assert fast_3g.latency == 562.5
        assert NETWORK_PRESETS["Slow 3G"].latency == 2000
        assert NETWORK_PRESETS["Offline"].offline is True
        assert NETWORK_PRESETS["No throttling"].download_throughput == -1

    def test_get_preset(self):
        """Test preset lookup by name."""
        assert get_preset("Slow 3G") is NETWORK_PRESETS["Slow 3G"]
        assert get_preset("Dial-up") is None

    def test_presets_as_dict(self):
        """Test presets are exported in wire form."""
        presets = presets_as_dict()
        assert set(presets) == {"Fast 3G", "Slow 3G", "Fast 4G", "Offline", "No throttling"}
        assert presets["Offline"]["offline"] is True


class TestMatchPreset:
    """Tests for preset matching."""

    def test_latency_within_tolerance_matches(self):
        """Test near-preset latency matches the preset name."""
        conditions = NetworkConditions(False, 153600, 76800, 560)
        assert match_preset(conditions) == "Fast 3G"

    def test_far_latency_is_custom(self):
        """Test distant latency gets a custom label."""
        conditions = NetworkConditions(False, 153600, 76800, 9999)
        assert match_preset(conditions) == "Custom (Online, ↓150kb/s, ↑75kb/s, 9999ms)"

    def test_offline_custom_label(self):
        """Test offline custom conditions are labelled offline."""
        conditions = NetworkConditions(True, 1024, 1024, 5)
        assert match_preset(conditions) == "Custom (Offline, ↓1kb/s, ↑1kb/s, 5ms)"

    def test_fractional_latency_in_label(self):
        """Test fractional latency is shown in the label."""
        conditions = NetworkConditions(False, 2048, 2048, 12.5)
        assert match_preset(conditions).endswith("12.5ms)")


class TestNetworkConditionTracker:
    """Tests for NetworkConditionTracker."""

    def test_first_observation_is_initial(self):
        """Test the first observation is the initial state."""
        tracker = NetworkConditionTracker()
        observation = tracker.observe(NETWORK_PRESETS[DEFAULT_PRESET])

        assert observation.event_type == "network_conditions_initial"
        assert observation.preset_name == "No throttling"

    def test_unchanged_state_yields_nothing(self):
        """Test an unchanged state yields no observation."""
        tracker = NetworkConditionTracker()
        tracker.observe(NETWORK_PRESETS[DEFAULT_PRESET])
        assert tracker.observe(NetworkConditions()) is None

    def test_change_is_reported_with_matched_name(self):
        """Test a change carries the matched preset name."""
        tracker = NetworkConditionTracker()
        tracker.observe(NETWORK_PRESETS[DEFAULT_PRESET])
        observation = tracker.observe(NetworkConditions(False, 50 * 1024, 50 * 1024, 1995))

        assert observation.event_type == "network_conditions_change"
        assert observation.preset_name == "Slow 3G"
        assert tracker.current_preset == "Slow 3G"

    def test_explicit_preset_name_wins(self):
        """Test an explicit preset name overrides matching."""
        tracker = NetworkConditionTracker()
        observation = tracker.observe(NETWORK_PRESETS["Fast 3G"], "My profile")
        assert observation.preset_name == "My profile"

    def test_event_data(self):
        """Test observation event data."""
        tracker = NetworkConditionTracker()
        data = tracker.observe(NETWORK_PRESETS["Offline"]).to_event_data("page_1")

        assert data["presetName"] == "Offline"
        assert data["pageId"] == "page_1"
        assert data["conditions"]["offline"] is True
