"""Live scoring route registration."""

import json
import uuid

from flask import jsonify, request
from flask_login import current_user, login_required

from engine.commentary_engine import CommentaryEngine
from engine.completion import build_completion_payload
from engine.errors import InvariantViolation, PreconditionError, ScoringError, ValidationError
from engine.format_config import get_format, overs_from_match_type
from engine.match import MatchScoringSession
from engine.team import MatchRosters, TEAM_KEYS


def register_match_routes(
    app,
    *,
    db,
    DBMatch,
    DBTeam,
    archiver,
    broadcaster,
    SCORING_SESSIONS,
    SCORING_SESSIONS_LOCK,
    get_match_lock,
    touch_session,
    scoring_config,
    commentary_pack=None,
):
    commentary = CommentaryEngine(commentary_pack)

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    def _load_owned_match(match_id):
        match = db.session.get(DBMatch, match_id)
        if match is None:
            return None, (jsonify({"error": "Match not found", "code": "not_found"}), 404)
        if match.user_id != current_user.id:
            app.logger.warning(f"[Scoring] {current_user.id} tried to access match {match_id}")
            return None, (jsonify({"error": "Unauthorized", "code": "forbidden"}), 403)
        return match, None

    def _wire(session):
        session.subscribe(broadcaster.listener_for(session.match_id))
        session.on_checkpoint(lambda state: archiver.save_checkpoint(session.match_id, state))
        return session

    def _new_session(match):
        fmt = get_format(match.match_format,
                         overs=match.overs_per_side,
                         max_bowler_overs=scoring_config.get("max_bowler_overs"))
        rosters = MatchRosters.from_dict(json.loads(match.roster_json)) if match.roster_json else \
            MatchRosters(match.team1_name, match.team2_name, batting_first=match.batting_first or "team1")
        return MatchScoringSession(match.id, rosters, fmt=fmt, commentary=commentary,
                                   undo_depth=scoring_config.get("undo_depth", 10))

    def _get_session(match):
        """In-memory session for *match*, rebuilt from its checkpoint when evicted."""
        with SCORING_SESSIONS_LOCK:
            session = SCORING_SESSIONS.get(match.id)
            if session is not None:
                return session

            state = archiver.load_checkpoint(match.id)
            if state:
                session = MatchScoringSession.from_dict(state, commentary=commentary)
                app.logger.info(f"[Scoring] match {match.id} restored from checkpoint")
            else:
                session = _new_session(match)
            SCORING_SESSIONS[match.id] = _wire(session)
            return session

    def _evict(match_id):
        with SCORING_SESSIONS_LOCK:
            SCORING_SESSIONS.pop(match_id, None)
        broadcaster.forget(match_id)

    def _error(exc, status):
        return jsonify(exc.to_dict()), status

    def _run_command(match_id, command):
        """Apply *command(session)* under the match lock and answer with the new snapshot."""
        match, err = _load_owned_match(match_id)
        if err:
            return err

        with get_match_lock(match_id):
            try:
                session = _get_session(match)
                extra = command(session) or {}
                touch_session(match_id)
                body = session.snapshot()
                body.update(extra)
                return jsonify(body)
            except ValidationError as e:
                return _error(e, 400)
            except InvariantViolation as e:
                app.logger.error(f"[Scoring] match {match_id} faulted: {e.message}")
                _evict(match_id)
                return _error(e, 500)
            except PreconditionError as e:
                return _error(e, 409)
            except ScoringError as e:
                return _error(e, 400)
            except Exception as e:
                app.logger.error(f"[Scoring] unexpected error for match {match_id}: {e}", exc_info=True)
                return jsonify({"error": "Internal server error"}), 500

    def _body():
        return request.get_json(silent=True) or {}

    def _roster_from_teams(team1, team2, batting_first):
        players = []
        for key, team in zip(TEAM_KEYS, (team1, team2)):
            for p in team.players:
                players.append({"name": p.name, "team": key, "id": p.id, "role": p.role})
        return MatchRosters(team1.name, team2.name, players=players, batting_first=batting_first)

    # ------------------------------------------------------------------ #
    # Match creation                                                       #
    # ------------------------------------------------------------------ #

    @app.route("/api/matches", methods=["POST"])
    @login_required
    def create_match():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "Invalid or missing JSON body"}), 400

        batting_first = data.get("batting_first", "team1")
        if batting_first not in TEAM_KEYS:
            return jsonify({"error": "batting_first must be 'team1' or 'team2'"}), 400

        try:
            if data.get("overs") is not None:
                overs = int(data["overs"])
            elif data.get("match_type"):
                overs = overs_from_match_type(data["match_type"])
            else:
                overs = scoring_config.get("overs")
            fmt = get_format(data.get("format") or scoring_config.get("format"), overs=overs,
                             max_bowler_overs=scoring_config.get("max_bowler_overs"))
        except (TypeError, ValueError) as e:
            return jsonify({"error": f"Invalid overs: {e}"}), 400

        team1_id, team2_id = data.get("team1_id"), data.get("team2_id")
        if team1_id or team2_id:
            team1 = db.session.get(DBTeam, team1_id) if team1_id else None
            team2 = db.session.get(DBTeam, team2_id) if team2_id else None
            if team1 is None or team2 is None:
                return jsonify({"error": "Invalid team selection"}), 400
            if team1.user_id != current_user.id or team2.user_id != current_user.id:
                return jsonify({"error": "Unauthorized team selection"}), 403
            if team1.id == team2.id:
                return jsonify({"error": "Please select two different teams"}), 400
            rosters = _roster_from_teams(team1, team2, batting_first)
        else:
            team1_name = (data.get("team1_name") or "").strip()
            team2_name = (data.get("team2_name") or "").strip()
            if not team1_name or not team2_name:
                return jsonify({"error": "team1_name and team2_name are required"}), 400
            if team1_name == team2_name:
                return jsonify({"error": "Please select two different teams"}), 400
            try:
                rosters = MatchRosters(team1_name, team2_name, players=data.get("players") or [],
                                       batting_first=batting_first)
            except (AttributeError, TypeError, ValueError) as e:
                return jsonify({"error": f"Invalid players: {e}"}), 400

        match = DBMatch(
            id=str(uuid.uuid4()),
            user_id=current_user.id,
            team1_id=team1_id or None,
            team2_id=team2_id or None,
            team1_name=rosters.team1_name,
            team2_name=rosters.team2_name,
            batting_first=batting_first,
            roster_json=json.dumps(rosters.to_dict()),
            match_format=fmt.name,
            overs_per_side=fmt.overs,
            status="scheduled",
        )
        db.session.add(match)
        db.session.commit()
        app.logger.info(f"[Scoring] match {match.id} created by {current_user.id}: "
                        f"{match.team1_name} vs {match.team2_name}, {fmt.overs} overs")

        with SCORING_SESSIONS_LOCK:
            SCORING_SESSIONS[match.id] = _wire(_new_session(match))
        touch_session(match.id)

        return jsonify({
            "match_id": match.id,
            "team1_name": match.team1_name,
            "team2_name": match.team2_name,
            "overs": fmt.overs,
            "format": fmt.name,
            "batting_first": batting_first,
        }), 201

    # ------------------------------------------------------------------ #
    # Scoring commands                                                     #
    # ------------------------------------------------------------------ #

    @app.route("/api/matches/<match_id>/start", methods=["POST"])
    @login_required
    def start_match(match_id):
        data = _body()

        def command(session):
            session.start_match(data.get("striker"), data.get("non_striker"), data.get("bowler"))
            match = db.session.get(DBMatch, match_id)
            match.status = "live"
            db.session.commit()

        return _run_command(match_id, command)

    @app.route("/api/matches/<match_id>/runs", methods=["POST"])
    @login_required
    def add_runs(match_id):
        data = _body()
        return _run_command(match_id, lambda s: s.add_runs(data.get("runs")))

    @app.route("/api/matches/<match_id>/wicket", methods=["POST"])
    @login_required
    def add_wicket(match_id):
        data = _body()
        return _run_command(match_id, lambda s: s.add_wicket(
            data.get("wicket_type"),
            fielder=data.get("fielder"),
            next_batsman=data.get("next_batsman"),
            dismissed_batter=data.get("dismissed_batter") or "striker",
            extra_runs=data.get("extra_runs") or 0,
            new_striker=data.get("new_striker"),
        ))

    @app.route("/api/matches/<match_id>/extra", methods=["POST"])
    @login_required
    def add_extra(match_id):
        data = _body()
        return _run_command(match_id, lambda s: s.add_extra(data.get("extra_type"), data.get("runs", 1)))

    @app.route("/api/matches/<match_id>/undo", methods=["POST"])
    @login_required
    def undo(match_id):
        return _run_command(match_id, lambda s: s.undo())

    @app.route("/api/matches/<match_id>/next-bowler", methods=["POST"])
    @login_required
    def next_bowler(match_id):
        data = _body()
        return _run_command(match_id, lambda s: s.select_next_bowler(data.get("bowler")))

    @app.route("/api/matches/<match_id>/replace-batsman", methods=["POST"])
    @login_required
    def replace_batsman(match_id):
        data = _body()
        return _run_command(match_id, lambda s: s.replace_batsman(data.get("batsman")))

    @app.route("/api/matches/<match_id>/switch-innings", methods=["POST"])
    @login_required
    def switch_innings(match_id):
        data = _body()

        def command(session):
            target = session.switch_innings(data.get("striker"), data.get("non_striker"), data.get("bowler"))
            return {"target": target}

        return _run_command(match_id, command)

    @app.route("/api/matches/<match_id>/man-of-the-match", methods=["POST"])
    @login_required
    def man_of_the_match(match_id):
        data = _body()
        return _run_command(match_id, lambda s: s.set_man_of_the_match(data.get("player")))

    @app.route("/api/matches/<match_id>/complete", methods=["POST"])
    @login_required
    def complete_match(match_id):
        match, err = _load_owned_match(match_id)
        if err:
            return err

        with get_match_lock(match_id):
            db.session.refresh(match)
            if match.processed:
                app.logger.info(f"[Scoring] completion repeated for match {match_id}")
                return jsonify({
                    "alreadyProcessed": True,
                    "message": "Match already completed",
                    "matchId": match_id,
                    "resultDescription": match.result_description,
                })

            session = _get_session(match)
            if not session.completed:
                return jsonify({"error": "Match is not completed yet", "code": "match_in_progress"}), 409

            payload = build_completion_payload(session)
            try:
                result = archiver.record_completion(match_id, payload)
            except Exception as e:
                app.logger.error(f"[Scoring] completion failed for match {match_id}: {e}", exc_info=True)
                return jsonify({"error": "Could not record match completion"}), 500

            session.mark_completion_persisted()
            if result["alreadyProcessed"]:
                app.logger.info(f"[Scoring] match {match_id} was completed by another request")
                return jsonify(result)

            archiver.save_checkpoint(match_id, session.to_dict())
            touch_session(match_id)
            result["scorecard"] = payload
            return jsonify(result)

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    @app.route("/api/matches/<match_id>/score", methods=["GET"])
    @login_required
    def get_score(match_id):
        match, err = _load_owned_match(match_id)
        if err:
            return err
        with get_match_lock(match_id):
            return jsonify(_get_session(match).snapshot())

    @app.route("/api/matches/<match_id>/eligible-bowlers", methods=["GET"])
    @login_required
    def eligible_bowlers(match_id):
        match, err = _load_owned_match(match_id)
        if err:
            return err
        with get_match_lock(match_id):
            session = _get_session(match)
            inn = session.current_inning
            restrictions = {}
            for name in session.fielding_roster():
                reason = session.bowler_manager.restriction_reason(name, innings=inn)
                if reason:
                    restrictions[name] = reason
            return jsonify({
                "eligible": session.eligible_bowlers(),
                "restrictions": restrictions,
                "lastBowler": session.bowler_manager.last_bowler(inn),
                "state": session.state.value,
            })
