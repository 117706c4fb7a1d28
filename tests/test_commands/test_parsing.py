"""Tests for command text parsing and movement argument helpers."""

import pytest

from warden.commands.auth import TrustLevel
from warden.commands.parsing import (
    is_command,
    parse_command,
    parse_goto_args,
    parse_guard_args,
    parse_patrol_args,
)
from warden.errors import InvalidCommand
from warden.geometry import Vec3

AGENTS = ["Guard1", "Scout1"]


class TestParseCommand:
    def test_verb_and_args(self):
        cmd = parse_command("#goto 1 2 3", "Steve", TrustLevel.TRUSTED, "#", AGENTS)
        assert cmd.verb == "goto"
        assert cmd.target_agent_id is None
        assert cmd.args == ["1", "2", "3"]
        assert cmd.sender_id == "Steve"
        assert cmd.sender_trust_level is TrustLevel.TRUSTED

    def test_target_agent_case_insensitive(self):
        cmd = parse_command("#GUARD guard1 Steve", "Steve", TrustLevel.OWNER, "#", AGENTS)
        assert cmd.verb == "guard"
        assert cmd.target_agent_id == "Guard1"
        assert cmd.args == ["Steve"]

    def test_first_arg_not_an_agent(self):
        cmd = parse_command("#guard Steve", "Steve", TrustLevel.OWNER, "#", AGENTS)
        assert cmd.target_agent_id is None
        assert cmd.args == ["Steve"]

    def test_missing_marker(self):
        with pytest.raises(InvalidCommand) as exc:
            parse_command("hello there", "Steve", TrustLevel.GUEST)
        assert exc.value.code == "NOT_A_COMMAND"

    def test_empty_command(self):
        with pytest.raises(InvalidCommand) as exc:
            parse_command("#   ", "Steve", TrustLevel.GUEST)
        assert exc.value.code == "INVALID_COMMAND"

    def test_custom_marker(self):
        assert is_command("  !stop", "!")
        assert not is_command("#stop", "!")
        assert parse_command("!stop", "Steve", TrustLevel.TRUSTED, "!").verb == "stop"

    def test_aggro_alias(self):
        cmd = parse_command("#aggro Guard1 high", "Steve", TrustLevel.TRUSTED, "#", AGENTS)
        assert cmd.verb == "aggression"
        assert cmd.target_agent_id == "Guard1"
        assert cmd.args == ["high"]


class TestGotoArgs:
    def test_no_args_means_sender(self):
        assert parse_goto_args([]).is_sender

    def test_point(self):
        assert parse_goto_args(["1", "64", "-3.5"]).point == Vec3(1, 64, -3.5)

    def test_grouped_point(self):
        assert parse_goto_args(["(1,64,3)"]).point == Vec3(1, 64, 3)

    def test_named(self):
        dest = parse_goto_args(["base"])
        assert dest.ref == "base"
        assert not dest.is_sender

    @pytest.mark.parametrize("args", [["1", "2"], ["1", "2", "3", "4", "5", "6"], ["to", "base"]])
    def test_invalid(self, args):
        with pytest.raises(InvalidCommand):
            parse_goto_args(args)


class TestGuardArgs:
    def test_player(self):
        assert parse_guard_args(["Steve"], 16.0) == (None, "Steve", 16.0)

    def test_player_with_radius(self):
        assert parse_guard_args(["Steve", "8"], 16.0) == (None, "Steve", 8.0)

    def test_position(self):
        assert parse_guard_args(["0", "64", "0"], 16.0) == (Vec3(0, 64, 0), None, 16.0)

    def test_position_with_radius(self):
        assert parse_guard_args(["(0,64,0)", "4"], 16.0) == (Vec3(0, 64, 0), None, 4.0)

    @pytest.mark.parametrize("args", [[], ["1", "2"], ["Steve", "near", "me"], ["1", "2", "3", "Steve"]])
    def test_invalid(self, args):
        with pytest.raises(InvalidCommand):
            parse_guard_args(args, 16.0)


class TestPatrolArgs:
    def test_triples(self):
        points, radius = parse_patrol_args(["0", "0", "0", "10", "0", "10"], 5.0)
        assert points == [Vec3(0, 0, 0), Vec3(10, 0, 10)]
        assert radius == 5.0

    def test_groups_and_radius(self):
        points, radius = parse_patrol_args(["(0,0,0)", "(1,0,1)", "(2,0,2)", "radius=4"], 5.0)
        assert len(points) == 3
        assert radius == 4.0

    def test_named_places(self):
        named = {"gate": Vec3(5, 0, 5)}.get
        points, _ = parse_patrol_args(["gate", "0", "0", "0"], 5.0, named=named)
        assert points == [Vec3(5, 0, 5), Vec3(0, 0, 0)]

    def test_unknown_place(self):
        with pytest.raises(InvalidCommand):
            parse_patrol_args(["nowhere", "0", "0", "0"], 5.0, named={}.get)

    @pytest.mark.parametrize("args", [["0", "0", "0"], ["0", "0", "0", "1", "1"]])
    def test_invalid(self, args):
        with pytest.raises(InvalidCommand):
            parse_patrol_args(args, 5.0)
