"""
Unit tests for instance ids and drop targets.
"""

import pytest

from studytrail.trail.addressing import (
    DropTarget,
    InstanceAddress,
    day_drop_zone_id,
    decode_instance_id,
    encode_instance_id,
    instance_ids,
    resolve_drop_target,
)
from studytrail.trail.models import DayId, empty_week


class TestInstanceIds:
    def test_encode_decode(self):
        assert encode_instance_id(DayId.TUE, 3) == "tue__3"
        assert decode_instance_id("tue__3") == InstanceAddress(DayId.TUE, 3)

    def test_encode_rejects_bad_input(self):
        with pytest.raises(ValueError):
            encode_instance_id("funday", 0)
        with pytest.raises(ValueError):
            encode_instance_id(DayId.MON, -1)

    @pytest.mark.parametrize(
        "value",
        [None, 42, "", "mon", "mon__", "mon__x", "xyz__1", "mon__-1", "mon__1.5", "mon__²", "__0"],
    )
    def test_malformed_ids_decode_to_none(self, value):
        assert decode_instance_id(value) is None

    def test_instance_ids_follow_live_sequence(self, make_topic):
        trail = empty_week()
        trail[DayId.WED] = [make_topic("a"), make_topic("b")]
        assert instance_ids(trail, DayId.WED) == ["wed__0", "wed__1"]
        assert instance_ids(trail, DayId.THU) == []


class TestDropTargets:
    def test_day_drop_zone(self):
        assert day_drop_zone_id(DayId.FRI) == "droppable-fri"
        assert resolve_drop_target("droppable-fri") == DropTarget(DayId.FRI, None)

    def test_day_id_is_a_drop_zone(self):
        assert resolve_drop_target(DayId.SAT) == DropTarget(DayId.SAT, None)

    def test_card_target(self):
        assert resolve_drop_target("mon__2") == DropTarget(DayId.MON, 2)

    @pytest.mark.parametrize("value", ["droppable-xyz", "garbage", None])
    def test_unresolvable_targets(self, value):
        assert resolve_drop_target(value) is None
