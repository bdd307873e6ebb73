"""
PongRank - Ping-Pong Tournament Ratings

Rating, ranking and tournament-progression engine for a ping-pong club.

Main components:
- rating: Elo calculator, opponent-strength bonus and percentile levels
- scoring: Single-game and best-of-three match outcome resolution
- bracket: Knockout bracket math (pairing, seeding, best-of-three policy)
- services: Score submission, bracket progression, tournament settlement
- db: SQLAlchemy models, sessions and the persistence helpers
- web: FastAPI JSON API for admins and clients
"""

__version__ = "1.0.0"
