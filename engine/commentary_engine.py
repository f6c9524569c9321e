import json
import logging
import os

logger = logging.getLogger(__name__)


# Default ball-by-ball lines.  A commentary pack (JSON: {"events": {key: text}})
# can override any of them, e.g. to localise the scorer.
DEFAULT_EVENTS = {
    "runs": "{runs} {run_word}",
    "wide": "Wide +{extra_runs}",
    "noball": "No Ball +{extra_runs}",
    "bye": "Byes {runs}",
    "legbye": "Leg Byes {runs}",
    "wicket_bowled": "Bowled!",
    "wicket_caught": "Caught!",
    "wicket_caught_fielder": "Caught by {fielder}",
    "wicket_run-out": "Run out!{run_note}",
    "wicket_run-out_fielder": "Run out by {fielder}{run_note}",
    "wicket_hit-wicket": "Hit wicket!",
    "wicket_stump-out": "Stumped!",
    "wicket_stump-out_fielder": "Stumped by {fielder}",
    "wicket_wide-wicket": "Wide + Wicket ({runs} runs)",
    "wicket_no-ball-wicket": "No Ball + Wicket ({runs} runs)",
    "wicket_leg-bye-wicket": "Leg Bye + Wicket ({runs} runs)",
    "wicket_bye-wicket": "Bye + Wicket ({runs} runs)",
    "next_batsman": " | {next_batsman} in",
    "target_reached": "🎯 TARGET REACHED!",
    "over_complete": "Over {over} completed by {bowler}",
    "new_bowler": "Over {over}: {bowler} to bowl",
    "replacement": "{batter} comes in to bat replacing {replaced}",
    "innings_complete": "Innings complete: {team} {runs}/{wickets} ({overs} ov)",
}


class CommentaryEngine:
    def __init__(self, data_path=None):
        self.data_path = data_path
        self.events = dict(DEFAULT_EVENTS)
        if data_path:
            self.events.update(self._load_data().get("events", {}))

    def _load_data(self):
        if not os.path.exists(self.data_path):
            logger.warning(f"Commentary pack not found at {self.data_path}, using defaults")
            return {}
        try:
            with open(self.data_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load commentary pack from {self.data_path}: {e}")
            return {}

    def get_commentary(self, ball_context):
        """Generate the ball-by-ball line for one delivery."""
        event_key = self._map_context_to_key(ball_context)
        text = self._render(event_key, ball_context)

        if ball_context.get("type") == "wicket" and ball_context.get("next_batsman"):
            text += self._render("next_batsman", ball_context)
        return text

    def line(self, key, **kwargs):
        """Render one of the non-delivery lines (over complete, new bowler...)."""
        return self._render(key, kwargs)

    def _map_context_to_key(self, context):
        """Map ball context to a template key."""
        outcome_type = context.get("type", "").lower()

        if outcome_type == "wicket":
            wkt_type = context.get("wicket_type", "bowled").lower()
            key = f"wicket_{wkt_type}"
            if context.get("fielder") and f"{key}_fielder" in self.events:
                return f"{key}_fielder"
            return key

        if outcome_type == "extra":
            extra_type = context.get("extra_type", "").lower()
            if extra_type == "wide":
                return "wide"
            if extra_type == "no-ball":
                return "noball"
            if extra_type == "leg-bye":
                return "legbye"
            return "bye"

        return "runs"

    def _render(self, key, context):
        template = self.events.get(key) or DEFAULT_EVENTS.get(key, "")
        runs = context.get("runs", 0)
        run_note = ""
        if context.get("type") == "wicket" and runs > 0:
            run_note = f" ({runs} run{'s' if runs > 1 else ''})"
        values = {
            "runs": runs,
            "run_word": "run" if runs == 1 else "runs",
            "extra_runs": max(0, runs - 1),
            "run_note": run_note,
        }
        values.update({k: v for k, v in context.items() if k not in values})
        try:
            return template.format(**values)
        except (KeyError, IndexError):
            logger.warning(f"Commentary template {key!r} has unknown placeholders")
            return template
