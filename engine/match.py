"""
engine/match.py
===============

MatchScoringSession: the ball-by-ball scoring state machine for one match.

Every mutation goes through a command method.  A command validates first,
then pushes an undo snapshot, then mutates; a rejected command raises a
ScoringError and leaves the session exactly as it was.  After every accepted
command the session re-derives its SessionState, re-checks its invariants and
emits a full score snapshot to its listeners, in command order.
"""

import logging
from enum import Enum

from engine.batting_ledger import BattingLedger
from engine.bowler_manager import BowlerManager
from engine.bowling_ledger import BowlingLedger
from engine.commentary_engine import CommentaryEngine
from engine.completion import InningsSnapshot, MatchCompletionResolver, MatchResult
from engine.errors import InvariantViolation, NoHistoryError, PreconditionError, ValidationError
from engine.format_config import FormatConfig, get_format
from engine.innings_clock import InningsClock
from engine.team import MatchRosters, TEAM_KEYS
from engine.undo_log import DEFAULT_UNDO_DEPTH, UndoLog

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    AWAITING_DELIVERY = "awaiting_delivery"
    AWAITING_BOWLER_SELECTION = "awaiting_bowler_selection"
    AWAITING_BATSMAN_REPLACEMENT = "awaiting_batsman_replacement"
    INNINGS_BREAK = "innings_break"
    MATCH_COMPLETE = "match_complete"


WICKET_TYPES = (
    "bowled", "caught", "run-out", "hit-wicket", "stump-out",
    "wide-wicket", "no-ball-wicket", "leg-bye-wicket", "bye-wicket",
)
# Extra deliveries that also produce a wicket, mapped to their extra type
COMBINATION_WICKETS = {
    "wide-wicket": "wide",
    "no-ball-wicket": "no-ball",
    "leg-bye-wicket": "leg-bye",
    "bye-wicket": "bye",
}
# Wickets where the scorer picks who is out and who takes strike afterwards
ENDS_CHOSEN_WICKETS = ("run-out",) + tuple(COMBINATION_WICKETS)
BOWLER_CREDITED_WICKETS = ("bowled", "caught", "hit-wicket", "stump-out", "wide-wicket")
DISMISSAL_LABELS = {
    "stump-out": "stumped",
    "wide-wicket": "stumped",
    "no-ball-wicket": "run-out",
    "leg-bye-wicket": "run-out",
    "bye-wicket": "run-out",
}

EXTRA_TYPES = ("wide", "no-ball", "bye", "leg-bye")
EXTRA_KEYS = {"wide": "wides", "no-ball": "noBalls", "bye": "byes", "leg-bye": "legByes"}
MAX_EXTRA_RUNS = 7


def _empty_extras():
    return {"wides": 0, "noBalls": 0, "byes": 0, "legByes": 0}


def _clean(name):
    return (name or "").strip()


def _is_count(value):
    return isinstance(value, int) and not isinstance(value, bool)


class MatchScoringSession:
    def __init__(self, match_id, rosters: MatchRosters, fmt: FormatConfig = None,
                 commentary: CommentaryEngine = None, undo_depth=DEFAULT_UNDO_DEPTH):
        self.match_id = match_id
        self.rosters = rosters
        self.fmt = fmt or get_format()
        self.commentary = commentary or CommentaryEngine()
        self.undo_log = UndoLog(undo_depth)

        self.clock = InningsClock(self.fmt)
        self.batting = BattingLedger()
        self.bowling = BowlingLedger(self.fmt.balls_per_over)
        self.bowler_manager = BowlerManager(self.fmt)
        self.resolver = MatchCompletionResolver(self.fmt.max_wickets)
        self.dismissed = set()

        self.striker = None
        self.non_striker = None
        self.bowler = None
        # Over number the current bowler was picked for; lags current_over
        # while a new bowler is awaited.
        self.bowler_over = None
        self.over_runs_conceded = 0
        self.extras = {1: _empty_extras(), 2: _empty_extras()}
        self.ball_by_ball = []

        self.live = False
        self.first_innings_complete = False
        self.completed = False
        self.result = None
        self.man_of_the_match = None
        self.completion_persisted = False
        self.faulted = False
        self.state = SessionState.NOT_STARTED

        self._listeners = []
        self._checkpoint_listeners = []

    # ------------------------------------------------------------------ #
    # Listeners                                                            #
    # ------------------------------------------------------------------ #

    def subscribe(self, callback):
        """Register a callable receiving every score snapshot."""
        self._listeners.append(callback)

    def on_checkpoint(self, callback):
        """Register a callable receiving the serialised session at innings and match end."""
        self._checkpoint_listeners.append(callback)

    def _emit(self):
        snapshot = self.snapshot()
        for callback in self._listeners:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"[Match {self.match_id}] snapshot listener failed: {e}", exc_info=True)

    def _checkpoint(self):
        if not self._checkpoint_listeners:
            return
        data = self.to_dict()
        for callback in self._checkpoint_listeners:
            try:
                callback(data)
            except Exception as e:
                logger.error(f"[Match {self.match_id}] checkpoint listener failed: {e}", exc_info=True)

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    @property
    def current_inning(self):
        return self.clock.current_inning

    @property
    def target(self):
        return self.clock.target if self.clock.current_inning == 2 else None

    def batting_roster(self):
        return self.rosters.batting_roster(
            self.current_inning, dismissed=self.dismissed,
            at_crease=[n for n in (self.striker, self.non_striker) if n])

    def fielding_roster(self):
        return self.rosters.fielding_roster(self.current_inning)

    def eligible_bowlers(self):
        return self.bowler_manager.eligible(self.fielding_roster(), innings=self.current_inning)

    def _replacement_pending(self):
        for name in (self.striker, self.non_striker):
            if not name or name in self.dismissed:
                return True
        return False

    def _bowler_selection_pending(self):
        return self.bowler_over != self.clock.current_over

    def _team_innings(self, team_key):
        return 1 if self.rosters.batting_team_key(1) == team_key else 2

    def snapshot(self):
        """Full score projection in the shape the broadcast channel consumes."""
        inn = self.current_inning
        scores = {}
        for key in TEAM_KEYS:
            scores[f"{key}Score"] = self.clock.score(self._team_innings(key))

        return {
            "matchId": self.match_id,
            **scores,
            "matchData": {
                "currentInning": inn,
                "ballByBall": list(self.ball_by_ball),
                "lastBall": self.ball_by_ball[-1] if self.ball_by_ball else None,
                "currentPlayers": {
                    "striker": self.striker,
                    "nonStriker": self.non_striker,
                    "bowler": self.bowler,
                },
                "battingStats": self.batting.to_list(),
                "bowlingStats": self.bowling.to_list(inn),
                "state": self.state.value,
                "target": self.target,
                "extras": dict(self.extras[inn]),
                "firstInningsComplete": self.first_innings_complete,
                "isMatchCompleted": self.completed,
                "matchResult": self.result.description if self.result else None,
                "inningsData": self.resolver.to_dict(),
                "manOfTheMatch": self.man_of_the_match,
            },
        }

    # ------------------------------------------------------------------ #
    # Command plumbing                                                     #
    # ------------------------------------------------------------------ #

    def _reject(self, exc_class, message, code=None):
        logger.info(f"[Match {self.match_id}] rejected: {message}")
        if code:
            return exc_class(message, code=code)
        return exc_class(message)

    def _ensure_usable(self):
        if self.faulted:
            raise self._reject(PreconditionError,
                               "Scoring session is faulted and must be reloaded", "session_faulted")

    def _check_can_deliver(self, is_legal):
        """Preconditions shared by runs, wickets and extras, in reporting order."""
        self._ensure_usable()
        if not self.live:
            raise self._reject(PreconditionError, "Match has not started", "match_not_started")
        if self.completed:
            raise self._reject(PreconditionError, "Match is already completed", "match_complete")
        if self.current_inning == 1 and self.first_innings_complete:
            raise self._reject(PreconditionError,
                               "First innings complete. Start the second innings to continue.",
                               "first_innings_complete")
        if self._bowler_selection_pending():
            raise self._reject(PreconditionError,
                               "Select a bowler for the next over before continuing.",
                               "bowler_selection_pending")
        if not self.bowler:
            raise self._reject(PreconditionError, "Bowler required", "bowler_required")
        if not self.striker or not self.non_striker or self.striker == self.non_striker:
            raise self._reject(PreconditionError,
                               "Two different batsmen must be at the crease", "batsmen_required")
        if self._replacement_pending():
            raise self._reject(PreconditionError,
                               "Replace the dismissed batsman before the next delivery",
                               "batsman_replacement_pending")
        if self.clock.overs_exhausted() or self.clock.all_out():
            self._resolve_innings_end()
            self._finish_command()
            raise self._reject(PreconditionError, "Innings complete", "innings_complete")
        if is_legal and self.clock.current_ball >= self.fmt.balls_per_over:
            raise self._reject(PreconditionError,
                               "A bowler cannot bowl more than six legal balls in an over",
                               "over_complete")

    def _push_undo(self):
        self.undo_log.snapshot(self._state_dict())

    def _append(self, line):
        self.ball_by_ball.append(line)

    def _swap_strike(self):
        self.striker, self.non_striker = self.non_striker, self.striker

    def _rotate_for_runs(self, runs, last_ball):
        # Last ball of an over: even runs rotate, because the ends change too.
        if last_ball:
            rotate = runs % 2 == 0
        else:
            rotate = runs % 2 == 1
        if rotate:
            self._swap_strike()

    def _after_delivery(self, over_completed):
        if self.clock.target_reached():
            self._resolve_innings_end()
            return
        if over_completed:
            self._complete_over()
        if self.clock.is_innings_over():
            self._resolve_innings_end()

    def _complete_over(self):
        inn = self.current_inning
        overs_done = self.clock.current_over
        self.bowler_manager.record_over_completion(inn, overs_done, self.bowler)
        if self.over_runs_conceded == 0:
            self.bowling.record_maiden(inn, self.bowler)
        self.over_runs_conceded = 0
        self._append(self.commentary.line("over_complete", over=overs_done, bowler=self.bowler))
        logger.debug(f"[Match {self.match_id}] over {overs_done} complete, bowler {self.bowler}")

    def _settle_state(self):
        if not self.live:
            state = SessionState.NOT_STARTED
        elif self.completed:
            state = SessionState.MATCH_COMPLETE
        elif self.first_innings_complete and self.current_inning == 1:
            state = SessionState.INNINGS_BREAK
        elif self._replacement_pending():
            state = SessionState.AWAITING_BATSMAN_REPLACEMENT
        elif self._bowler_selection_pending():
            state = SessionState.AWAITING_BOWLER_SELECTION
        else:
            state = SessionState.AWAITING_DELIVERY
        self.state = state

    def check_invariants(self):
        inn = self.current_inning
        self.clock.check_invariants()
        if self.striker and self.non_striker and self.striker == self.non_striker:
            raise InvariantViolation(f"striker and non-striker are both {self.striker}")
        accounted = self.batting.total_runs() + sum(self.extras[inn].values())
        if accounted != self.clock.runs[inn]:
            raise InvariantViolation(
                f"run conservation broken: team has {self.clock.runs[inn]}, "
                f"batters plus extras give {accounted}")
        if len(self.dismissed) != self.clock.wickets[inn]:
            raise InvariantViolation(
                f"{len(self.dismissed)} dismissed batters but {self.clock.wickets[inn]} wickets")

    def _finish_command(self):
        self._settle_state()
        try:
            self.check_invariants()
        except InvariantViolation as e:
            self.faulted = True
            logger.error(f"[Match {self.match_id}] invariant violation: {e.message}")
            raise
        self._emit()

    # ------------------------------------------------------------------ #
    # Commands                                                             #
    # ------------------------------------------------------------------ #

    def _validate_opening_pair(self, inn, striker, non_striker, bowler):
        if not striker or not non_striker or not bowler:
            raise self._reject(ValidationError, "Striker, non-striker and bowler are required")
        if len({striker, non_striker, bowler}) != 3:
            raise self._reject(ValidationError, "Striker, non-striker and bowler must be different players")
        for name in (striker, non_striker):
            if not self.rosters.is_batting_side(inn, name):
                raise self._reject(ValidationError, f"{name} is not in the batting side", "not_in_roster")
        if not self.rosters.is_fielding_side(inn, bowler):
            raise self._reject(ValidationError, f"{bowler} is not in the fielding side", "not_in_roster")

    def start_match(self, striker, non_striker, bowler):
        """Make the match live with the opening pair and the first bowler."""
        self._ensure_usable()
        if self.live:
            raise self._reject(PreconditionError, "Match has already started", "already_started")
        striker, non_striker, bowler = _clean(striker), _clean(non_striker), _clean(bowler)
        self._validate_opening_pair(1, striker, non_striker, bowler)

        self.live = True
        self.striker, self.non_striker, self.bowler = striker, non_striker, bowler
        self.bowler_over = self.clock.current_over
        self.batting.register(striker)
        self.batting.register(non_striker)
        self._append(self.commentary.line("new_bowler", over=1, bowler=bowler))
        logger.info(f"[Match {self.match_id}] started: {striker} & {non_striker} vs {bowler}")
        self._finish_command()

    def add_runs(self, runs):
        """Record a legal delivery off which the striker scored *runs* (0-6)."""
        if not _is_count(runs) or not 0 <= runs <= 6:
            raise self._reject(ValidationError, f"Runs must be between 0 and 6, got {runs!r}")
        self._check_can_deliver(is_legal=True)
        self._push_undo()

        inn = self.current_inning
        last_ball = self.clock.is_last_ball_of_over
        self.clock.add_runs(runs)
        self.batting.credit(self.striker, runs, counts_as_ball=True, is_dot=runs == 0)
        self.bowling.credit(inn, self.bowler, runs, counts_as_ball=True)
        self.over_runs_conceded += runs
        self._append(self.commentary.get_commentary({"type": "runs", "runs": runs}))

        over_completed = self.clock.advance_ball(True)
        self._rotate_for_runs(runs, last_ball)
        logger.debug(f"[Match {self.match_id}] {runs} run(s) to {self.clock.overs_display()}")
        self._after_delivery(over_completed)
        self._finish_command()

    def add_extra(self, extra_type, runs=1):
        """
        Record a wide, no-ball, bye or leg-bye worth *runs* in total.

        Wides and no-balls are re-bowled and charged to the bowler.  On a
        no-ball every run beyond the penalty is the striker's, off the bat.
        Byes and leg-byes are legal balls: the striker is charged the ball,
        the bowler concedes nothing.
        """
        if extra_type not in EXTRA_TYPES:
            raise self._reject(ValidationError, f"Unknown extra type {extra_type!r}")
        if not _is_count(runs) or not 1 <= runs <= MAX_EXTRA_RUNS:
            raise self._reject(ValidationError,
                               f"Extra runs must be between 1 and {MAX_EXTRA_RUNS}, got {runs!r}")
        is_legal = extra_type in ("bye", "leg-bye")
        self._check_can_deliver(is_legal=is_legal)
        self._push_undo()

        inn = self.current_inning
        last_ball = is_legal and self.clock.is_last_ball_of_over
        self.clock.add_runs(runs)
        over_completed = False

        if extra_type == "wide":
            self.extras[inn]["wides"] += runs
            self.bowling.credit(inn, self.bowler, runs, counts_as_ball=False, extra_type="wide")
            self.over_runs_conceded += runs
            self._rotate_for_runs(runs - 1, False)
        elif extra_type == "no-ball":
            bat_runs = runs - 1
            self.extras[inn]["noBalls"] += 1
            self.batting.credit(self.striker, bat_runs, counts_as_ball=False)
            self.bowling.credit(inn, self.bowler, runs, counts_as_ball=False, extra_type="no-ball")
            self.over_runs_conceded += runs
            self._rotate_for_runs(bat_runs, False)
        else:
            self.extras[inn][EXTRA_KEYS[extra_type]] += runs
            self.batting.credit(self.striker, 0, counts_as_ball=True)
            self.bowling.credit(inn, self.bowler, 0, counts_as_ball=True)
            over_completed = self.clock.advance_ball(True)
            self._rotate_for_runs(runs, last_ball)

        self._append(self.commentary.get_commentary(
            {"type": "extra", "extra_type": extra_type, "runs": runs}))
        logger.debug(f"[Match {self.match_id}] {extra_type} for {runs}")
        self._after_delivery(over_completed)
        self._finish_command()

    def add_wicket(self, wicket_type, fielder=None, next_batsman=None,
                   dismissed_batter="striker", extra_runs=0, new_striker=None):
        """
        Record a dismissal, including the four extra+wicket combinations.

        Only run-outs and combination wickets can remove the non-striker or
        carry runs; for those the scorer may also say who takes strike next
        (``new_striker``).  Without ``next_batsman`` the session waits for
        replace_batsman() unless the innings is over.
        """
        if wicket_type not in WICKET_TYPES:
            raise self._reject(ValidationError, f"Unknown wicket type {wicket_type!r}")
        if dismissed_batter not in ("striker", "non-striker"):
            raise self._reject(ValidationError, f"Unknown dismissed batter {dismissed_batter!r}")
        if not _is_count(extra_runs) or not 0 <= extra_runs <= MAX_EXTRA_RUNS:
            raise self._reject(ValidationError,
                               f"Runs on a wicket must be between 0 and {MAX_EXTRA_RUNS}")
        ends_chosen = wicket_type in ENDS_CHOSEN_WICKETS
        if extra_runs and not ends_chosen:
            raise self._reject(ValidationError,
                               f"Runs cannot be recorded with a {wicket_type} dismissal")

        is_legal = wicket_type not in ("wide-wicket", "no-ball-wicket")
        self._check_can_deliver(is_legal=is_legal)

        inn = self.current_inning
        fielder = _clean(fielder) or None
        next_batsman = _clean(next_batsman) or None
        new_striker = _clean(new_striker) or None
        position = dismissed_batter if ends_chosen else "striker"
        out_name = self.striker if position == "striker" else self.non_striker
        survivor = self.non_striker if position == "striker" else self.striker

        if fielder and not self.rosters.is_fielding_side(inn, fielder):
            raise self._reject(ValidationError, f"{fielder} is not in the fielding side", "not_in_roster")
        if next_batsman:
            self._validate_incoming(next_batsman)
        if new_striker and (not ends_chosen or new_striker not in (survivor, next_batsman)):
            raise self._reject(ValidationError,
                               f"{new_striker} cannot take strike after this dismissal")

        self._push_undo()

        runs = extra_runs
        if wicket_type in ("wide-wicket", "no-ball-wicket"):
            runs = max(1, runs)
        label = DISMISSAL_LABELS.get(wicket_type, wicket_type)
        bowler_credit = wicket_type in BOWLER_CREDITED_WICKETS
        credited_bowler = self.bowler if bowler_credit else None

        self.clock.add_runs(runs)
        self.clock.add_wicket()

        if is_legal:
            striker_runs = runs if wicket_type == "run-out" else 0
            if position == "striker":
                self.batting.credit(self.striker, striker_runs, counts_as_ball=True,
                                    dismissal_type=label, bowler=credited_bowler, fielder=fielder)
            else:
                self.batting.credit(self.striker, striker_runs, counts_as_ball=True)
                self.batting.credit(self.non_striker, 0, counts_as_ball=False,
                                    dismissal_type=label, bowler=credited_bowler, fielder=fielder)
        else:
            self.batting.credit(out_name, 0, counts_as_ball=False,
                                dismissal_type=label, bowler=credited_bowler, fielder=fielder)

        extra_kind = COMBINATION_WICKETS.get(wicket_type)
        if extra_kind:
            self.extras[inn][EXTRA_KEYS[extra_kind]] += runs

        conceded = runs if wicket_type in ("wide-wicket", "no-ball-wicket") else 0
        self.bowling.credit(inn, self.bowler, conceded, is_wicket=bowler_credit,
                            counts_as_ball=is_legal,
                            extra_type=extra_kind if extra_kind in ("wide", "no-ball") else None)
        self.over_runs_conceded += conceded
        self.dismissed.add(out_name)

        if next_batsman:
            self.batting.register(next_batsman)
        incoming = next_batsman or out_name
        if ends_chosen and new_striker:
            if new_striker == next_batsman:
                self.striker, self.non_striker = next_batsman, survivor
            else:
                self.striker, self.non_striker = survivor, incoming
        elif position == "striker":
            self.striker = incoming
        else:
            self.non_striker = incoming

        self._append(self.commentary.get_commentary({
            "type": "wicket", "wicket_type": wicket_type, "runs": runs,
            "fielder": fielder, "next_batsman": next_batsman,
        }))

        over_completed = self.clock.advance_ball(is_legal)
        if over_completed and position == "striker" and not new_striker:
            # Striker out on the last ball: the survivor faces the next over.
            self.striker, self.non_striker = survivor, incoming

        logger.debug(f"[Match {self.match_id}] wicket ({wicket_type}): {out_name}")
        self._after_delivery(over_completed)
        self._finish_command()

    def _validate_incoming(self, name):
        inn = self.current_inning
        if not self.rosters.is_batting_side(inn, name):
            raise self._reject(ValidationError, f"{name} is not in the batting side", "not_in_roster")
        if name in self.dismissed:
            raise self._reject(ValidationError, f"{name} has already been dismissed", "already_dismissed")
        if name in (self.striker, self.non_striker):
            raise self._reject(ValidationError, f"{name} is already batting", "already_batting")

    def select_next_bowler(self, name):
        """Assign the bowler for the over that has just become due."""
        self._ensure_usable()
        if not self.live or self.completed or self.state == SessionState.INNINGS_BREAK \
                or not self._bowler_selection_pending():
            raise self._reject(PreconditionError, "No bowler selection is pending", "no_selection_pending")
        inn = self.current_inning
        name = _clean(name)
        if not self.rosters.is_fielding_side(inn, name):
            raise self._reject(ValidationError, f"{name or 'Bowler'} is not in the fielding side", "not_in_roster")
        reason = self.bowler_manager.restriction_reason(name, innings=inn)
        if reason:
            raise self._reject(ValidationError, f"{name}: {reason}", "bowler_ineligible")

        self.bowler = name
        self.bowler_over = self.clock.current_over
        self.over_runs_conceded = 0
        self._append(self.commentary.line("new_bowler", over=self.clock.current_over + 1, bowler=name))
        logger.debug(f"[Match {self.match_id}] {name} to bowl over {self.clock.current_over + 1}")
        self._finish_command()

    def replace_batsman(self, name):
        """Send *name* in for the dismissed batter still holding a crease position."""
        self._ensure_usable()
        if self.state != SessionState.AWAITING_BATSMAN_REPLACEMENT:
            raise self._reject(PreconditionError, "No batsman replacement is pending", "no_replacement_pending")
        name = _clean(name)
        self._validate_incoming(name)

        if not self.striker or self.striker in self.dismissed:
            replaced, self.striker = self.striker, name
        else:
            replaced, self.non_striker = self.non_striker, name
        self.batting.register(name)
        self._append(self.commentary.line("replacement", batter=name, replaced=replaced or "vacant crease"))
        logger.debug(f"[Match {self.match_id}] {name} replaces {replaced}")
        self._finish_command()

    def switch_innings(self, striker, non_striker, bowler):
        """
        Start the second innings and return the chase target.

        The first innings is re-captured, then over/ball, the batting ledger,
        the dismissed set, commentary and bowling history are reset.  The undo
        log is cleared: the innings break is a checkpoint.
        """
        self._ensure_usable()
        if self.current_inning != 1 or not self.first_innings_complete:
            raise self._reject(PreconditionError, "First innings is not complete", "innings_in_progress")
        striker, non_striker, bowler = _clean(striker), _clean(non_striker), _clean(bowler)
        self._validate_opening_pair(2, striker, non_striker, bowler)

        self.resolver.capture_innings(self._capture_innings(1))
        self.clock.start_innings(2)
        self.batting = BattingLedger()
        self.dismissed = set()
        self.ball_by_ball = []
        self.bowler_manager.reset_innings(2)
        self.undo_log.clear()

        self.striker, self.non_striker, self.bowler = striker, non_striker, bowler
        self.bowler_over = self.clock.current_over
        self.over_runs_conceded = 0
        self.batting.register(striker)
        self.batting.register(non_striker)
        self._append(self.commentary.line("new_bowler", over=1, bowler=bowler))
        logger.info(f"[Match {self.match_id}] second innings started, target {self.clock.target}")
        self._finish_command()
        return self.clock.target

    def undo(self):
        """Roll back the most recent delivery."""
        self._ensure_usable()
        if self.completion_persisted:
            raise self._reject(PreconditionError,
                               "Match result has been recorded and can no longer be undone",
                               "completion_persisted")
        if not len(self.undo_log):
            raise self._reject(NoHistoryError, "No actions to undo.")
        self._restore_state(self.undo_log.undo())
        logger.info(f"[Match {self.match_id}] undo -> {self.clock.score(self.current_inning)}")
        self._finish_command()

    def set_man_of_the_match(self, name):
        self._ensure_usable()
        if not self.completed:
            raise self._reject(PreconditionError, "Match is not completed yet", "match_in_progress")
        name = _clean(name)
        if name not in self.rosters.all_players():
            raise self._reject(ValidationError, f"{name or 'Player'} did not play in this match", "not_in_roster")
        self.man_of_the_match = name
        self._finish_command()

    def mark_completion_persisted(self):
        self.completion_persisted = True

    # ------------------------------------------------------------------ #
    # Innings / match transitions                                          #
    # ------------------------------------------------------------------ #

    def _capture_innings(self, inn):
        team_key = self.rosters.batting_team_key(inn)
        return InningsSnapshot(
            inning=inn,
            batting_team_key=team_key,
            batting_team_name=self.rosters.team_name(team_key),
            runs=self.clock.runs[inn],
            wickets=self.clock.wickets[inn],
            overs=self.clock.overs_display(inn),
            balls=self.clock.legal_balls(inn),
            batsmen=tuple(self.batting.to_list()),
            bowlers=tuple(self.bowling.to_list(inn)),
            ball_by_ball=tuple(self.ball_by_ball),
            extras=dict(self.extras[inn]),
        )

    def _resolve_innings_end(self):
        inn = self.current_inning
        if inn == 2 and self.clock.target_reached():
            self._append(self.commentary.line("target_reached"))

        team = self.rosters.team_name(self.rosters.batting_team_key(inn))
        score = self.clock.score(inn)
        self._append(self.commentary.line("innings_complete", team=team, **score))
        self.resolver.capture_innings(self._capture_innings(inn))

        if inn == 1:
            self.first_innings_complete = True
            logger.info(f"[Match {self.match_id}] first innings complete: "
                        f"{team} {score['runs']}/{score['wickets']}, target {self.clock.target}")
        else:
            self.result = self.resolver.decide_result(self.clock, self.rosters)
            self.completed = True
            logger.info(f"[Match {self.match_id}] match complete: {self.result.description}")
        self._checkpoint()

    # ------------------------------------------------------------------ #
    # Serialisation                                                        #
    # ------------------------------------------------------------------ #

    def _state_dict(self):
        return {
            "clock": self.clock.to_dict(),
            "batting": self.batting.to_dict(),
            "bowling": self.bowling.to_dict(),
            "bowler_manager": self.bowler_manager.to_dict(),
            "dismissed": sorted(self.dismissed),
            "striker": self.striker,
            "non_striker": self.non_striker,
            "bowler": self.bowler,
            "bowler_over": self.bowler_over,
            "over_runs_conceded": self.over_runs_conceded,
            "extras": {str(k): dict(v) for k, v in self.extras.items()},
            "ball_by_ball": list(self.ball_by_ball),
            "live": self.live,
            "first_innings_complete": self.first_innings_complete,
            "completed": self.completed,
            "result": self.result.to_dict() if self.result else None,
            "innings": self.resolver.to_dict(),
            "man_of_the_match": self.man_of_the_match,
        }

    def _restore_state(self, state):
        self.clock = InningsClock.from_dict(self.fmt, state["clock"])
        self.batting = BattingLedger.from_dict(state["batting"])
        self.bowling = BowlingLedger.from_dict(state["bowling"], self.fmt.balls_per_over)
        self.bowler_manager = BowlerManager.from_dict(self.fmt, state["bowler_manager"])
        self.dismissed = set(state["dismissed"])
        self.striker = state["striker"]
        self.non_striker = state["non_striker"]
        self.bowler = state["bowler"]
        self.bowler_over = state["bowler_over"]
        self.over_runs_conceded = state["over_runs_conceded"]
        self.extras = {int(k): dict(v) for k, v in state["extras"].items()}
        self.ball_by_ball = list(state["ball_by_ball"])
        self.live = state["live"]
        self.first_innings_complete = state["first_innings_complete"]
        self.completed = state["completed"]
        self.result = MatchResult.from_dict(state["result"])
        self.resolver = MatchCompletionResolver.from_dict(state["innings"], self.fmt.max_wickets)
        self.man_of_the_match = state["man_of_the_match"]

    def to_dict(self):
        """Serialise the whole session (minus undo history) for checkpoints."""
        data = self._state_dict()
        data.update({
            "match_id": self.match_id,
            "format": self.fmt.to_dict(),
            "rosters": self.rosters.to_dict(),
            "undo_depth": self.undo_log.capacity,
            "completion_persisted": self.completion_persisted,
        })
        return data

    @classmethod
    def from_dict(cls, data, commentary=None):
        session = cls(
            match_id=data.get("match_id"),
            rosters=MatchRosters.from_dict(data["rosters"]),
            fmt=FormatConfig.from_dict(data.get("format", {})),
            commentary=commentary,
            undo_depth=data.get("undo_depth", DEFAULT_UNDO_DEPTH),
        )
        session._restore_state(data)
        session.completion_persisted = bool(data.get("completion_persisted", False))
        session._settle_state()
        session.check_invariants()
        return session
