"""Unit tests for the bridge topic layout."""

import pytest

from smartfriends_mqtt.mqtt.topics import BridgeTopics


class TestTopicLayout:
    def test_default_prefix(self):
        topics = BridgeTopics()
        assert topics.status("5") == "schellenberg/device/value/5"

    def test_topics_for_device(self, topics):
        assert topics.status("1002") == "schellenberg/device/value/1002"
        assert topics.current("1002") == "schellenberg/device/value/current/1002"
        assert topics.update("1001") == "schellenberg/device/value/update/1001"

    def test_subscription_and_availability(self, topics):
        assert topics.subscription == "schellenberg/device/value/#"
        assert topics.availability == "schellenberg/bridge/status"

    def test_custom_prefix_trailing_slash_stripped(self):
        topics = BridgeTopics("home/sf/")
        assert topics.update("7") == "home/sf/device/value/update/7"


class TestParseUpdate:
    """Tests for BridgeTopics.parse_update()."""

    def test_numeric_id(self, topics):
        assert topics.parse_update("schellenberg/device/value/update/1001") == "1001"

    @pytest.mark.parametrize(
        "topic",
        [
            "schellenberg/device/value/update/abc",
            "schellenberg/device/value/update/",
            "schellenberg/device/value/update/1e3",
            "schellenberg/device/value/update/-1",
            "schellenberg/device/value/update/12/extra",
            "schellenberg/device/value/1001",
            "schellenberg/device/value/current/1001",
            "other/device/value/update/1001",
        ],
    )
    def test_rejected_topics(self, topics, topic):
        assert topics.parse_update(topic) is None
