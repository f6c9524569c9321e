"""
Test suite for the ball-by-ball scoring state machine
Tests engine/match.py (MatchScoringSession)
"""

import pytest

from engine.errors import InvariantViolation, PreconditionError, ValidationError
from engine.match import MatchScoringSession, SessionState


def deliver(session, runs):
    """Score *runs* and, when an over ends, hand the ball to the first eligible bowler."""
    session.add_runs(runs)
    if session.state == SessionState.AWAITING_BOWLER_SELECTION:
        session.select_next_bowler(session.eligible_bowlers()[0])


def batter(session, name):
    return next(row for row in session.snapshot()["matchData"]["battingStats"] if row["name"] == name)


def bowler(session, name):
    return next(row for row in session.snapshot()["matchData"]["bowlingStats"] if row["name"] == name)


class TestStartMatch:
    """Opening the innings."""

    def test_not_started_state(self, session):
        assert session.state == SessionState.NOT_STARTED
        with pytest.raises(PreconditionError) as exc:
            session.add_runs(1)
        assert exc.value.code == "match_not_started"

    def test_start_registers_openers(self, live_session):
        data = live_session.snapshot()["matchData"]
        assert live_session.state == SessionState.AWAITING_DELIVERY
        assert data["currentPlayers"] == {"striker": "S1", "nonStriker": "S2", "bowler": "B1"}
        assert [row["name"] for row in data["battingStats"]] == ["S1", "S2"]
        assert data["ballByBall"] == ["Over 1: B1 to bowl"]

    def test_openers_must_differ(self, session):
        with pytest.raises(ValidationError):
            session.start_match("S1", "S1", "B1")
        assert session.live is False

    def test_bowler_must_be_fielding(self, session):
        with pytest.raises(ValidationError) as exc:
            session.start_match("S1", "S2", "S3")
        assert exc.value.code == "not_in_roster"

    def test_batter_must_be_batting_side(self, session):
        with pytest.raises(ValidationError):
            session.start_match("B2", "S2", "B1")

    def test_start_twice(self, live_session):
        with pytest.raises(PreconditionError) as exc:
            live_session.start_match("S3", "S4", "B2")
        assert exc.value.code == "already_started"


class TestAddRuns:
    """Runs off the bat and strike rotation."""

    def test_single_rotates_strike(self, live_session):
        live_session.add_runs(1)
        assert live_session.striker == "S2"
        assert live_session.non_striker == "S1"
        s1 = batter(live_session, "S1")
        assert (s1["runs"], s1["balls"], s1["strikeRate"]) == (1, 1, 100.0)
        assert live_session.snapshot()["team1Score"] == {"runs": 1, "wickets": 0, "overs": "0.1"}
        assert bowler(live_session, "B1")["runsConceded"] == 1

    def test_even_runs_keep_strike(self, live_session):
        live_session.add_runs(4)
        assert live_session.striker == "S1"
        assert batter(live_session, "S1")["fours"] == 1

    def test_two_on_last_ball_rotates_and_awaits_bowler(self, live_session):
        for _ in range(5):
            live_session.add_runs(0)
        live_session.add_runs(2)
        assert live_session.striker == "S2"
        assert live_session.non_striker == "S1"
        assert live_session.state == SessionState.AWAITING_BOWLER_SELECTION
        assert "Over 1 completed by B1" in live_session.ball_by_ball
        assert live_session.snapshot()["team1Score"]["overs"] == "1.0"

    def test_single_on_last_ball_keeps_strike(self, live_session):
        for _ in range(5):
            live_session.add_runs(0)
        live_session.add_runs(1)
        assert live_session.striker == "S1"

    def test_maiden_over(self, live_session):
        for _ in range(6):
            live_session.add_runs(0)
        assert bowler(live_session, "B1")["maidenOvers"] == 1
        assert batter(live_session, "S1")["dots"] == 6

    @pytest.mark.parametrize("runs", [-1, 7, "4", None, True, 2.0])
    def test_invalid_runs(self, live_session, runs):
        with pytest.raises(ValidationError):
            live_session.add_runs(runs)
        assert live_session.clock.runs[1] == 0

    def test_rejection_leaves_state_untouched(self, live_session):
        live_session.add_runs(1)
        before = live_session.snapshot()
        with pytest.raises(ValidationError):
            live_session.add_runs(9)
        assert live_session.snapshot() == before


class TestBowlerSelection:
    """New over, new bowler."""

    @pytest.fixture
    def end_of_over(self, live_session):
        for _ in range(6):
            live_session.add_runs(0)
        return live_session

    def test_delivery_blocked_until_selection(self, end_of_over):
        with pytest.raises(PreconditionError) as exc:
            end_of_over.add_runs(1)
        assert exc.value.code == "bowler_selection_pending"

    def test_previous_bowler_not_eligible(self, end_of_over):
        assert "B1" not in end_of_over.eligible_bowlers()
        with pytest.raises(ValidationError) as exc:
            end_of_over.select_next_bowler("B1")
        assert exc.value.code == "bowler_ineligible"

    def test_bowler_from_batting_side_rejected(self, end_of_over):
        with pytest.raises(ValidationError) as exc:
            end_of_over.select_next_bowler("S5")
        assert exc.value.code == "not_in_roster"

    def test_select_next_bowler(self, end_of_over):
        end_of_over.select_next_bowler("B2")
        assert end_of_over.bowler == "B2"
        assert end_of_over.state == SessionState.AWAITING_DELIVERY
        assert end_of_over.ball_by_ball[-1] == "Over 2: B2 to bowl"

    def test_selection_only_when_pending(self, live_session):
        with pytest.raises(PreconditionError) as exc:
            live_session.select_next_bowler("B2")
        assert exc.value.code == "no_selection_pending"

    def test_quota_applies_when_configured(self, make_session):
        session = make_session(overs=4, max_bowler_overs=1)
        session.start_match("S1", "S2", "B1")
        for _ in range(6):
            session.add_runs(0)
        session.select_next_bowler("B2")
        for _ in range(6):
            session.add_runs(0)
        assert "B1" not in session.eligible_bowlers()
        assert "B2" not in session.eligible_bowlers()
        with pytest.raises(ValidationError):
            session.select_next_bowler("B1")


class TestWickets:
    """Dismissals, credit and crease changes."""

    def test_bowled_with_next_batsman(self, live_session):
        live_session.add_wicket("bowled", next_batsman="S3")
        s1 = batter(live_session, "S1")
        assert s1["isDismissed"] is True
        assert s1["dismissalType"] == "bowled"
        assert s1["bowlerOut"] == "B1"
        assert s1["balls"] == 1
        assert live_session.striker == "S3"
        assert bowler(live_session, "B1")["wickets"] == 1
        assert live_session.ball_by_ball[-1] == "Bowled! | S3 in"
        assert live_session.snapshot()["team1Score"]["wickets"] == 1

    def test_caught_records_fielder(self, live_session):
        live_session.add_wicket("caught", fielder="F1", next_batsman="S3")
        s1 = batter(live_session, "S1")
        assert s1["fielderOut"] == "F1"
        assert live_session.ball_by_ball[-1] == "Caught by F1 | S3 in"

    def test_stump_out_label(self, live_session):
        live_session.add_wicket("stump-out", fielder="F2", next_batsman="S3")
        assert batter(live_session, "S1")["dismissalType"] == "stumped"

    def test_run_out_non_striker_with_chosen_ends(self, live_session):
        live_session.add_wicket("run-out", fielder="F1", next_batsman="S3",
                                dismissed_batter="non-striker", extra_runs=1, new_striker="S1")
        s2 = batter(live_session, "S2")
        s1 = batter(live_session, "S1")
        assert s2["isDismissed"] is True
        assert s2["dismissalType"] == "run-out"
        assert s2["balls"] == 0
        assert (s1["runs"], s1["balls"]) == (1, 1)
        assert live_session.striker == "S1"
        assert live_session.non_striker == "S3"
        b1 = bowler(live_session, "B1")
        assert b1["wickets"] == 0
        assert b1["runsConceded"] == 0
        assert live_session.snapshot()["team1Score"] == {"runs": 1, "wickets": 1, "overs": "0.1"}
        assert live_session.ball_by_ball[-1] == "Run out by F1 (1 run) | S3 in"

    def test_run_out_runs_keep_a_maiden(self, live_session):
        for _ in range(5):
            live_session.add_runs(0)
        live_session.add_wicket("run-out", fielder="F1", next_batsman="S3",
                                dismissed_batter="non-striker", extra_runs=1)
        b1 = bowler(live_session, "B1")
        assert b1["runsConceded"] == 0
        assert b1["maidenOvers"] == 1
        assert live_session.clock.runs[1] == 1

    def test_run_out_new_batsman_takes_strike(self, live_session):
        live_session.add_wicket("run-out", next_batsman="S3", new_striker="S3")
        assert live_session.striker == "S3"
        assert live_session.non_striker == "S2"

    def test_new_striker_must_be_at_crease(self, live_session):
        with pytest.raises(ValidationError):
            live_session.add_wicket("run-out", next_batsman="S3", new_striker="S4")

    def test_new_striker_not_allowed_for_bowled(self, live_session):
        with pytest.raises(ValidationError):
            live_session.add_wicket("bowled", next_batsman="S3", new_striker="S3")

    def test_runs_not_allowed_for_caught(self, live_session):
        with pytest.raises(ValidationError):
            live_session.add_wicket("caught", fielder="F1", next_batsman="S3", extra_runs=2)
        assert live_session.clock.wickets[1] == 0

    def test_wide_wicket(self, live_session):
        live_session.add_wicket("wide-wicket", fielder="F1", next_batsman="S3")
        assert live_session.clock.legal_balls() == 0
        assert live_session.clock.runs[1] == 1
        assert live_session.extras[1]["wides"] == 1
        s1 = batter(live_session, "S1")
        assert s1["dismissalType"] == "stumped"
        assert s1["balls"] == 0
        b1 = bowler(live_session, "B1")
        assert (b1["wickets"], b1["wides"], b1["runsConceded"], b1["balls"]) == (1, 1, 1, 0)

    def test_no_ball_wicket_not_credited_to_bowler(self, live_session):
        live_session.add_wicket("no-ball-wicket", next_batsman="S3", extra_runs=2)
        b1 = bowler(live_session, "B1")
        assert b1["wickets"] == 0
        assert b1["noBalls"] == 1
        assert batter(live_session, "S1")["dismissalType"] == "run-out"
        assert live_session.extras[1]["noBalls"] == 2
        assert live_session.clock.legal_balls() == 0

    def test_bye_wicket_is_legal(self, live_session):
        live_session.add_wicket("bye-wicket", next_batsman="S3",
                                dismissed_batter="non-striker", extra_runs=1)
        assert live_session.clock.legal_balls() == 1
        assert live_session.extras[1]["byes"] == 1
        assert batter(live_session, "S1")["balls"] == 1
        assert batter(live_session, "S1")["runs"] == 0
        assert bowler(live_session, "B1")["runsConceded"] == 0

    def test_striker_out_on_last_ball(self, live_session):
        for _ in range(5):
            live_session.add_runs(0)
        live_session.add_wicket("bowled", next_batsman="S3")
        assert live_session.striker == "S2"
        assert live_session.non_striker == "S3"
        assert live_session.state == SessionState.AWAITING_BOWLER_SELECTION

    def test_unknown_wicket_type(self, live_session):
        with pytest.raises(ValidationError):
            live_session.add_wicket("obstructing")


class TestBatsmanReplacement:
    """Wicket without an incoming batter."""

    @pytest.fixture
    def awaiting(self, live_session):
        live_session.add_wicket("bowled")
        return live_session

    def test_waits_for_replacement(self, awaiting):
        assert awaiting.state == SessionState.AWAITING_BATSMAN_REPLACEMENT
        with pytest.raises(PreconditionError) as exc:
            awaiting.add_runs(1)
        assert exc.value.code == "batsman_replacement_pending"

    def test_dismissed_batter_rejected(self, awaiting):
        with pytest.raises(ValidationError) as exc:
            awaiting.replace_batsman("S1")
        assert exc.value.code == "already_dismissed"

    def test_batter_at_crease_rejected(self, awaiting):
        with pytest.raises(ValidationError) as exc:
            awaiting.replace_batsman("S2")
        assert exc.value.code == "already_batting"

    def test_replace(self, awaiting):
        awaiting.replace_batsman("S3")
        assert awaiting.striker == "S3"
        assert awaiting.state == SessionState.AWAITING_DELIVERY
        assert awaiting.ball_by_ball[-1] == "S3 comes in to bat replacing S1"
        assert "S3" not in awaiting.batting_roster()

    def test_replace_when_nothing_pending(self, live_session):
        with pytest.raises(PreconditionError) as exc:
            live_session.replace_batsman("S3")
        assert exc.value.code == "no_replacement_pending"


class TestExtras:
    """Wides, no-balls, byes and leg-byes."""

    def test_wide(self, live_session):
        live_session.add_extra("wide")
        assert live_session.clock.runs[1] == 1
        assert live_session.clock.legal_balls() == 0
        assert live_session.extras[1]["wides"] == 1
        assert live_session.striker == "S1"
        b1 = bowler(live_session, "B1")
        assert (b1["runsConceded"], b1["wides"], b1["balls"], b1["totalBalls"]) == (1, 1, 0, 1)
        assert live_session.ball_by_ball[-1] == "Wide +0"

    def test_wide_with_run_rotates(self, live_session):
        live_session.add_extra("wide", 2)
        assert live_session.striker == "S2"
        assert live_session.extras[1]["wides"] == 2

    def test_no_ball_with_boundary(self, live_session):
        live_session.add_extra("no-ball", 5)
        s1 = batter(live_session, "S1")
        assert (s1["runs"], s1["balls"], s1["fours"]) == (4, 0, 1)
        assert live_session.extras[1]["noBalls"] == 1
        assert live_session.clock.runs[1] == 5
        assert bowler(live_session, "B1")["runsConceded"] == 5
        assert live_session.striker == "S1"
        assert live_session.ball_by_ball[-1] == "No Ball +4"

    def test_bye(self, live_session):
        live_session.add_extra("bye", 1)
        s1 = batter(live_session, "S1")
        assert (s1["runs"], s1["balls"]) == (0, 1)
        assert live_session.extras[1]["byes"] == 1
        assert live_session.clock.legal_balls() == 1
        assert bowler(live_session, "B1")["runsConceded"] == 0
        assert live_session.striker == "S2"

    def test_leg_bye_on_last_ball(self, live_session):
        for _ in range(5):
            live_session.add_runs(0)
        live_session.add_extra("leg-bye", 1)
        assert live_session.striker == "S1"
        assert live_session.extras[1]["legByes"] == 1
        assert live_session.state == SessionState.AWAITING_BOWLER_SELECTION

    def test_extra_over_does_not_count_balls(self, live_session):
        for _ in range(5):
            live_session.add_runs(0)
        live_session.add_extra("wide")
        live_session.add_extra("no-ball")
        assert live_session.clock.current_ball == 5
        assert live_session.state == SessionState.AWAITING_DELIVERY

    @pytest.mark.parametrize("extra_type,runs", [("penalty", 1), ("wide", 0), ("bye", 8)])
    def test_invalid_extras(self, live_session, extra_type, runs):
        with pytest.raises(ValidationError):
            live_session.add_extra(extra_type, runs)

    def test_run_conservation(self, live_session):
        live_session.add_runs(4)
        live_session.add_extra("wide", 3)
        live_session.add_extra("no-ball", 2)
        live_session.add_extra("leg-bye", 2)
        live_session.add_wicket("run-out", next_batsman="S3", extra_runs=2)
        team = live_session.clock.runs[1]
        bat = sum(row["runs"] for row in live_session.snapshot()["matchData"]["battingStats"])
        assert team == bat + sum(live_session.extras[1].values())
        assert team == 13


class TestInningsTransitions:
    """Innings break, chase and result."""

    def test_overs_exhausted_ends_first_innings(self, make_session):
        session = make_session(overs=1)
        session.start_match("S1", "S2", "B1")
        for _ in range(6):
            session.add_runs(1)
        assert session.first_innings_complete is True
        assert session.state == SessionState.INNINGS_BREAK
        assert session.ball_by_ball[-1] == "Innings complete: Strikers 6/0 (1.0 ov)"
        with pytest.raises(PreconditionError) as exc:
            session.add_runs(1)
        assert exc.value.code == "first_innings_complete"

    def test_all_out(self, make_session):
        session = make_session(overs=20)
        session.start_match("S1", "S2", "B1")
        for incoming in [f"S{i}" for i in range(3, 12)]:
            session.add_wicket("bowled", next_batsman=incoming)
            if session.state == SessionState.AWAITING_BOWLER_SELECTION:
                session.select_next_bowler(session.eligible_bowlers()[0])
        session.add_wicket("bowled")
        assert session.clock.wickets[1] == 10
        assert session.state == SessionState.INNINGS_BREAK
        assert session.target is None
        assert session.switch_innings("B1", "B2", "S1") == 1

    def test_switch_innings(self, make_session):
        session = make_session(overs=1)
        session.start_match("S1", "S2", "B1")
        for _ in range(6):
            session.add_runs(1)
        target = session.switch_innings("B1", "B2", "S1")
        assert target == 7
        assert session.current_inning == 2
        assert session.state == SessionState.AWAITING_DELIVERY
        data = session.snapshot()["matchData"]
        assert data["target"] == 7
        assert data["ballByBall"] == ["Over 1: S1 to bowl"]
        assert [row["name"] for row in data["battingStats"]] == ["B1", "B2"]
        assert data["inningsData"][0]["finalScore"]["runs"] == 6
        assert len(session.undo_log) == 0

    def test_switch_innings_validates_sides(self, make_session):
        session = make_session(overs=1)
        session.start_match("S1", "S2", "B1")
        for _ in range(6):
            session.add_runs(0)
        with pytest.raises(ValidationError):
            session.switch_innings("S1", "S2", "B1")
        assert session.current_inning == 1

    def test_switch_innings_too_early(self, live_session):
        with pytest.raises(PreconditionError) as exc:
            live_session.switch_innings("B1", "B2", "S1")
        assert exc.value.code == "innings_in_progress"

    def test_chase_ends_on_winning_runs(self, make_session):
        session = make_session(overs=5)
        session.start_match("S1", "S2", "B1")
        for runs in [6] * 25 + [0] * 5:
            deliver(session, runs)
        assert session.clock.runs[1] == 150
        assert session.switch_innings("B1", "B2", "S1") == 151

        for runs in [6] * 24 + [4, 1]:
            deliver(session, runs)
        assert session.clock.runs[2] == 149
        session.add_runs(4)

        assert session.completed is True
        assert session.state == SessionState.MATCH_COMPLETE
        assert session.result.result_type == "won-by-wickets"
        assert session.result.description == "Titans won by 10 wickets"
        assert "🎯 TARGET REACHED!" in session.ball_by_ball
        snap = session.snapshot()
        assert snap["team2Score"]["runs"] == 153
        assert snap["matchData"]["isMatchCompleted"] is True
        assert snap["matchData"]["matchResult"] == "Titans won by 10 wickets"
        with pytest.raises(PreconditionError) as exc:
            session.add_runs(1)
        assert exc.value.code == "match_complete"

    def test_defending_side_wins_by_runs(self, make_session):
        session = make_session(overs=1)
        session.start_match("S1", "S2", "B1")
        for _ in range(6):
            session.add_runs(1)
        session.switch_innings("B1", "B2", "S1")
        for _ in range(6):
            session.add_runs(0)
        assert session.result.description == "Strikers won by 6 runs"
        assert session.result.margin_runs == 6

    def test_tie(self, make_session):
        session = make_session(overs=1)
        session.start_match("S1", "S2", "B1")
        for _ in range(6):
            session.add_runs(1)
        session.switch_innings("B1", "B2", "S1")
        for _ in range(6):
            session.add_runs(1)
        assert session.result.result_type == "tied"
        assert session.result.description == "Match tied"


class TestManOfTheMatch:
    """Award selection after the result."""

    def test_not_before_completion(self, live_session):
        with pytest.raises(PreconditionError):
            live_session.set_man_of_the_match("S1")

    def test_set_after_completion(self, make_session):
        session = make_session(overs=1)
        session.start_match("S1", "S2", "B1")
        for _ in range(6):
            session.add_runs(1)
        session.switch_innings("B1", "B2", "S1")
        for _ in range(6):
            session.add_runs(0)
        with pytest.raises(ValidationError):
            session.set_man_of_the_match("Nobody")
        session.set_man_of_the_match("S1")
        assert session.snapshot()["matchData"]["manOfTheMatch"] == "S1"


class TestListenersAndRecovery:
    """Snapshot emission, checkpoints and faults."""

    def test_snapshot_per_accepted_command(self, session):
        seen = []
        session.subscribe(seen.append)
        session.start_match("S1", "S2", "B1")
        session.add_runs(1)
        with pytest.raises(ValidationError):
            session.add_runs(8)
        session.add_runs(2)
        assert len(seen) == 3
        assert [s["team1Score"]["runs"] for s in seen] == [0, 1, 3]

    def test_failing_listener_does_not_block(self, live_session):
        seen = []

        def broken(snapshot):
            raise RuntimeError("socket closed")

        live_session.subscribe(broken)
        live_session.subscribe(seen.append)
        live_session.add_runs(1)
        assert len(seen) == 1

    def test_checkpoint_at_innings_end(self, make_session):
        session = make_session(overs=1)
        checkpoints = []
        session.on_checkpoint(checkpoints.append)
        session.start_match("S1", "S2", "B1")
        for _ in range(5):
            session.add_runs(1)
        assert checkpoints == []
        session.add_runs(1)
        assert len(checkpoints) == 1
        assert checkpoints[0]["first_innings_complete"] is True

        restored = MatchScoringSession.from_dict(checkpoints[0])
        assert restored.snapshot() == session.snapshot()
        assert restored.state == SessionState.INNINGS_BREAK

    def test_invariant_violation_faults_session(self, live_session):
        live_session.clock.runs[1] += 5
        with pytest.raises(InvariantViolation):
            live_session.add_runs(1)
        assert live_session.faulted is True
        with pytest.raises(PreconditionError) as exc:
            live_session.add_runs(1)
        assert exc.value.code == "session_faulted"
