"""Tests for Vec3 and coordinate parsing."""

import pytest

from warden.geometry import Vec3, is_number, nearest, parse_points


class TestVec3:
    def test_arithmetic(self):
        assert Vec3(1, 2, 3) + Vec3(1, 1, 1) == Vec3(2, 3, 4)
        assert Vec3(1, 2, 3) - Vec3(1, 1, 1) == Vec3(0, 1, 2)
        assert Vec3(1, 2, 3).scale(2) == Vec3(2, 4, 6)
        assert Vec3(1, 2, 3).offset(dy=1) == Vec3(1, 3, 3)

    def test_distances(self):
        assert Vec3(0, 0, 0).distance_to(Vec3(3, 4, 0)) == 5.0
        assert Vec3(0, 0, 0).horizontal_distance_to(Vec3(3, 100, 4)) == 5.0

    def test_normalized(self):
        assert Vec3(0, 0, 5).normalized() == Vec3(0, 0, 1)
        assert Vec3(0, 0, 0).normalized() == Vec3(0, 0, 0)

    def test_key_and_str(self):
        assert Vec3(1.4, 63.6, -0.4).key() == "1,64,0"
        assert str(Vec3(1, 64.5, -3)) == "(1, 64.5, -3)"

    def test_hashable(self):
        assert {Vec3(1, 2, 3): "a"}[Vec3(1.0, 2.0, 3.0)] == "a"

    @pytest.mark.parametrize("value", [
        [1, 2, 3],
        (1, 2, 3),
        {"x": 1, "y": 2, "z": 3},
        "1, 2, 3",
        "(1 2 3)",
        Vec3(1, 2, 3),
    ])
    def test_from_any(self, value):
        assert Vec3.from_any(value) == Vec3(1, 2, 3)

    @pytest.mark.parametrize("value", [[1, 2], {"x": 1, "y": 2}, "1,2", 42])
    def test_from_any_invalid(self, value):
        with pytest.raises(ValueError):
            Vec3.from_any(value)


class TestParsing:
    def test_is_number(self):
        assert is_number("-3.5")
        assert not is_number("3e5")
        assert not is_number("x")

    def test_parse_points_mixed(self):
        assert parse_points(["0", "0", "0", "(10,64,10)"]) == [Vec3(0, 0, 0), Vec3(10, 64, 10)]

    def test_parse_points_rejects_words(self):
        with pytest.raises(ValueError, match="not a coordinate"):
            parse_points(["base"])

    def test_parse_points_dangling(self):
        with pytest.raises(ValueError, match="triples"):
            parse_points(["1", "2", "3", "4"])

    def test_nearest(self):
        points = [Vec3(10, 0, 0), Vec3(-2, 0, 0), Vec3(5, 0, 0)]
        assert nearest(Vec3(0, 0, 0), points) == Vec3(-2, 0, 0)
        assert nearest(Vec3(0, 0, 0), []) is None
