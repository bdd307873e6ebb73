from datetime import datetime
import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

from pongrank import __version__
from pongrank.bracket import TBD_MARKER, is_tbd_name
from pongrank.config import settings
from pongrank.db import repository
from pongrank.db.models import Match, Notification, Player, Tournament
from pongrank.db.session import get_db
from pongrank.errors import ConflictError, NotFoundError, PongRankError, ValidationError
from pongrank.match_statuses import normalize_status_filter
from pongrank.notifications import NotificationOutbox, drain_notifications
from pongrank.rating.levels import recalculate_player_levels
from pongrank.services import (
    create_match,
    create_tournament,
    delete_match,
    delete_tournament,
    edit_tournament,
    generate_knockout,
    recalculate_all,
    submit_game_score,
    submit_single_game_score,
)
from pongrank.services.tournaments import recalculation_notice
from pongrank.web.admin_auth import (
    ADMIN_SESSION_KEY,
    authenticate_admin,
    mark_admin_login,
    require_admin,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="PongRank", version=__version__)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.admin_session_secret,
    max_age=settings.admin_session_max_age_seconds,
)

ERROR_STATUS_CODES = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
}


@app.exception_handler(PongRankError)
async def pongrank_error_handler(request: Request, exc: PongRankError):
    """Map domain errors onto 400/404/409 JSON responses."""
    status_code = 400
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    return JSONResponse({"error": exc.message}, status_code=status_code)


# =============================================================================
# Request bodies
# =============================================================================

class PlayerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    rating: Optional[int] = None
    level: Optional[int] = Field(default=None, ge=1, le=5)


class TournamentCreate(BaseModel):
    name: str
    format: str = "knockout"
    players: List[int]
    rounds: int = 1
    group_count: Optional[int] = None
    advance_count: Optional[int] = None
    status: str = "draft"
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    manual_matches: Optional[List[List[int]]] = None
    group_assignments: Optional[Dict[str, List[int]]] = None


class TournamentUpdate(BaseModel):
    status: Optional[str] = None
    players: Optional[List[int]] = None
    name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class MatchCreate(BaseModel):
    tournament_id: int
    player1_id: Optional[int] = None
    player2_id: Optional[int] = None
    date: Optional[datetime] = None
    round: int = 1
    stage: Optional[str] = None
    group_name: Optional[str] = None
    best_of_three: bool = False
    bracket_position: Optional[int] = None


class ScoreSubmission(BaseModel):
    player1_score: int
    player2_score: int
    status: str = "completed"
    editing_game: Optional[int] = None


class AdminLogin(BaseModel):
    username: str
    password: str


# =============================================================================
# Serialization
# =============================================================================

def _serialize_player(player: Player) -> dict:
    return {
        "id": player.id,
        "name": player.name,
        "rating": player.rating,
        "level": player.level,
        "wins": player.wins,
        "losses": player.losses,
    }


def _serialize_match(match: Match) -> dict:
    """Serialize a Match ORM object to a JSON-friendly dict."""
    return {
        "id": match.id,
        "tournament_id": match.tournament_id,
        "player1_id": match.player1_id,
        "player2_id": match.player2_id,
        "date": match.date.isoformat() if match.date else None,
        "round": match.round,
        "stage": match.stage,
        "group_name": match.group_name,
        "bracket_position": match.bracket_position,
        "status": match.status,
        "player1_score": match.player1_score,
        "player2_score": match.player2_score,
        "best_of_three": match.best_of_three,
        "games": [list(game) for game in match.game_scores()],
        "player1_wins": match.player1_wins,
        "player2_wins": match.player2_wins,
        "current_game": match.current_game,
        "player1_elo_delta": match.player1_elo_delta,
        "player2_elo_delta": match.player2_elo_delta,
        "winner_bonus": match.winner_bonus,
        "winner_id": match.winner_id,
    }


def _serialize_tournament(tournament: Tournament, with_relations: bool = False) -> dict:
    payload: Dict[str, Any] = {
        "id": tournament.id,
        "name": tournament.name,
        "description": tournament.description,
        "format": tournament.format,
        "status": tournament.status,
        "rounds": tournament.rounds,
        "group_count": tournament.group_count,
        "advance_count": tournament.advance_count,
        "start_date": tournament.start_date.isoformat() if tournament.start_date else None,
        "end_date": tournament.end_date.isoformat() if tournament.end_date else None,
        "location": tournament.location,
        "settled_at": tournament.settled_at.isoformat() if tournament.settled_at else None,
    }
    if with_relations:
        payload["players"] = [_serialize_player(p) for p in tournament.players]
        payload["matches"] = [
            _serialize_match(m)
            for m in sorted(
                tournament.matches,
                key=lambda m: (m.round, m.bracket_position or 0, m.date, m.id),
            )
        ]
    return payload


# =============================================================================
# Players
# =============================================================================

@app.get("/api/players")
async def api_players(db: Session = Depends(get_db)):
    players = repository.list_players(db)
    return JSONResponse({"players": [_serialize_player(p) for p in players]})


@app.get("/api/players/{player_id}")
async def api_player(player_id: int, db: Session = Depends(get_db)):
    return JSONResponse({"player": _serialize_player(repository.get_player(db, player_id))})


@app.post("/api/players", dependencies=[Depends(require_admin)], status_code=201)
async def api_create_player(body: PlayerCreate, db: Session = Depends(get_db)):
    name = body.name.strip()
    if not name:
        raise ValidationError("Player name is required")
    if is_tbd_name(name):
        raise ValidationError(
            f'Player names cannot contain "{TBD_MARKER}"; it marks bracket placeholders'
        )
    player = repository.run_transaction(
        db, lambda s: repository.create_player(s, name, body.rating, body.level)
    )
    outbox = NotificationOutbox()
    outbox.add(
        title="New player",
        message=f"{player.name} joined with a rating of {player.rating}",
        type="system",
    )
    drain_notifications(db, outbox)
    return JSONResponse({"player": _serialize_player(player)}, status_code=201)


@app.post("/api/players/recalculate-levels", dependencies=[Depends(require_admin)])
async def api_recalculate_levels(db: Session = Depends(get_db)):
    changed = repository.run_transaction(db, recalculate_player_levels)
    outbox = NotificationOutbox()
    outbox.add(
        title="Player levels recalculated",
        message=f"Levels were recalculated; {changed} players changed level",
        type="system",
    )
    drain_notifications(db, outbox)
    return JSONResponse({"success": True, "changed": changed})


@app.post("/api/players/recalculate-all", dependencies=[Depends(require_admin)])
async def api_recalculate_all(db: Session = Depends(get_db)):
    stats = recalculate_all(db)
    drain_notifications(db, recalculation_notice(stats))
    return JSONResponse({
        "success": True,
        "players_reset": stats.players_reset,
        "matches_replayed": stats.matches_replayed,
        "tournaments_settled": stats.tournaments_settled,
        "levels_changed": stats.levels_changed,
        "errors": stats.errors,
    })


# =============================================================================
# Tournaments
# =============================================================================

@app.get("/api/tournaments")
async def api_tournaments(
    db: Session = Depends(get_db),
    status: Optional[str] = Query(None, description="Tournament status filter"),
):
    query = select(Tournament).order_by(Tournament.start_date.desc(), Tournament.id.desc())
    if status:
        query = query.where(Tournament.status == status.strip().lower())
    tournaments = db.scalars(query).all()
    return JSONResponse({"tournaments": [_serialize_tournament(t) for t in tournaments]})


@app.get("/api/tournaments/{tournament_id}")
async def api_tournament(tournament_id: int, db: Session = Depends(get_db)):
    tournament = repository.get_tournament(db, tournament_id, with_relations=True)
    return JSONResponse({"tournament": _serialize_tournament(tournament, with_relations=True)})


@app.post("/api/tournaments", dependencies=[Depends(require_admin)], status_code=201)
async def api_create_tournament(body: TournamentCreate, db: Session = Depends(get_db)):
    manual = [tuple(pair) for pair in body.manual_matches] if body.manual_matches else None
    if manual and any(len(pair) != 2 for pair in manual):
        raise ValidationError("Each manual match must be a [player1_id, player2_id] pair")
    result = create_tournament(
        db,
        name=body.name,
        format=body.format,
        player_ids=body.players,
        rounds=body.rounds,
        group_count=body.group_count,
        advance_count=body.advance_count,
        status=body.status,
        description=body.description,
        start_date=body.start_date,
        end_date=body.end_date,
        location=body.location,
        manual_matches=manual,
        group_assignments=body.group_assignments,
    )
    drain_notifications(db, result.notifications)
    tournament = repository.get_tournament(db, result.tournament_id, with_relations=True)
    return JSONResponse(
        {"tournament": _serialize_tournament(tournament, with_relations=True)},
        status_code=201,
    )


@app.patch("/api/tournaments/{tournament_id}", dependencies=[Depends(require_admin)])
async def api_update_tournament(
    tournament_id: int,
    body: TournamentUpdate,
    db: Session = Depends(get_db),
):
    details = body.model_dump(exclude_unset=True, exclude={"status", "players"})
    edit = edit_tournament(
        db, tournament_id, status=body.status, player_ids=body.players, **details
    )
    drain_notifications(db, edit.notifications)
    tournament = repository.get_tournament(db, tournament_id, with_relations=True)
    return JSONResponse({
        "tournament": _serialize_tournament(tournament, with_relations=True),
        "settled": edit.settlement is not None,
        "players_added": edit.players_added,
        "players_removed": edit.players_removed,
    })


@app.delete("/api/tournaments/{tournament_id}", dependencies=[Depends(require_admin)])
async def api_delete_tournament(tournament_id: int, db: Session = Depends(get_db)):
    drain_notifications(db, delete_tournament(db, tournament_id))
    return JSONResponse({"success": True})


@app.post(
    "/api/tournaments/{tournament_id}/generate-knockout",
    dependencies=[Depends(require_admin)],
)
async def api_generate_knockout(tournament_id: int, db: Session = Depends(get_db)):
    result = generate_knockout(db, tournament_id)
    drain_notifications(db, result.notifications)
    knockout = repository.list_matches(db, tournament_id=tournament_id, stage="knockout")
    return JSONResponse({
        "success": True,
        "message": f"Created {result.matches_created} knockout stage matches",
        "advanced": result.advanced_player_ids,
        "matches": [_serialize_match(m) for m in knockout],
    })


# =============================================================================
# Matches
# =============================================================================

@app.get("/api/matches")
async def api_matches(
    db: Session = Depends(get_db),
    tournament_id: Optional[int] = Query(None, description="Only matches of this tournament"),
    stage: Optional[str] = Query(None, description="group, knockout or league"),
    status: Optional[str] = Query(None, description="Comma-separated statuses (default: all)"),
):
    raw_statuses = status.split(",") if status else None
    matches = repository.list_matches(
        db,
        tournament_id=tournament_id,
        stage=stage,
        statuses=normalize_status_filter(raw_statuses),
    )
    return JSONResponse({"matches": [_serialize_match(m) for m in matches]})


@app.get("/api/matches/{match_id}")
async def api_match(match_id: str, db: Session = Depends(get_db)):
    return JSONResponse({"match": _serialize_match(repository.get_match(db, match_id))})


@app.post("/api/matches", dependencies=[Depends(require_admin)], status_code=201)
async def api_create_match(body: MatchCreate, db: Session = Depends(get_db)):
    match = create_match(db, **body.model_dump())
    return JSONResponse({"match": _serialize_match(match)}, status_code=201)


@app.patch("/api/matches/{match_id}", dependencies=[Depends(require_admin)])
async def api_submit_score(match_id: str, body: ScoreSubmission, db: Session = Depends(get_db)):
    """
    Submit a score.

    With ``editing_game`` the body is one game of a best-of-three match;
    otherwise it is the final score of a single game.
    """
    if body.editing_game is not None:
        result = submit_game_score(
            db, match_id, body.editing_game, body.player1_score, body.player2_score
        )
    else:
        result = submit_single_game_score(
            db, match_id, body.player1_score, body.player2_score, body.status
        )
    drain_notifications(db, result.notifications)
    payload: Dict[str, Any] = {"match": _serialize_match(repository.get_match(db, match_id))}
    if result.elo is not None:
        payload["rating_change"] = {
            "player1": result.elo.player1_change,
            "player2": result.elo.player2_change,
            "winner_bonus": result.elo.winner_bonus,
        }
    if result.progression is not None:
        payload["tournament_completed"] = result.progression.tournament_completed
    return JSONResponse(payload)


@app.delete("/api/matches/{match_id}", dependencies=[Depends(require_admin)])
async def api_delete_match(match_id: str, db: Session = Depends(get_db)):
    result = delete_match(db, match_id)
    drain_notifications(db, result.notifications)
    return JSONResponse({
        "success": True,
        "tallies_reversed": result.tallies_reversed,
        "rating_reversed": result.rating_reversed,
    })


# =============================================================================
# Notifications
# =============================================================================

@app.get("/api/notifications")
async def api_notifications(
    db: Session = Depends(get_db),
    limit: int = Query(50, ge=1, le=200),
):
    rows = db.scalars(
        select(Notification).order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    ).all()
    return JSONResponse({
        "notifications": [
            {
                "id": n.id,
                "title": n.title,
                "message": n.message,
                "type": n.type,
                "read": n.read,
                "created_at": n.created_at.isoformat() if n.created_at else None,
            }
            for n in rows
        ]
    })


# =============================================================================
# Admin session
# =============================================================================

@app.post("/api/admin/login")
async def api_admin_login(body: AdminLogin, request: Request, db: Session = Depends(get_db)):
    user = authenticate_admin(db, body.username, body.password)
    if not user:
        return JSONResponse({"error": "Invalid username or password."}, status_code=401)

    request.session[ADMIN_SESSION_KEY] = user.id
    mark_admin_login(db, user)
    db.commit()
    logger.info("Admin %s logged in", user.username)
    return JSONResponse({"success": True, "username": user.username})


@app.post("/api/admin/logout")
async def api_admin_logout(request: Request):
    request.session.pop(ADMIN_SESSION_KEY, None)
    return JSONResponse({"success": True})


# Only for debugging
if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=settings.log_level, format=settings.log_format)
    uvicorn.run(
        "pongrank.web.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )
