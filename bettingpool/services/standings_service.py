"""
Standings: a read-only fold over every bet row of a competition, real and
synthesized alike, into ranked totals, streaks and form trends. Also awards
season titles for the hall of fame.
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from bettingpool.exceptions import NotFoundError
from bettingpool.utils.performance import PerformanceMonitor

logger = logging.getLogger(__name__)

FORM_WINDOW = 3
FORM_THRESHOLD = 0.1

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class Standing:
    user_id: int
    user_name: str
    rank: int = 0
    total_points: int = 0
    total_wins: int = 0
    predictions: int = 0
    accuracy: float = 0.0
    rounds_played: int = 0
    round_wins: int = 0
    current_streak: int = 0
    best_streak: int = 0
    form_trend: str = "stable"

    def sort_key(self):
        return (self.total_points, self.total_wins, self.round_wins)

    def to_dict(self):
        return asdict(self)


def competition_ranks(keys):
    """
    Ranks for keys already sorted descending: equal keys share a rank and the
    next distinct key ranks at its position ("1, 1, 3").
    """
    ranks = []
    for position, key in enumerate(keys, start=1):
        if ranks and key == keys[position - 2]:
            ranks.append(ranks[-1])
        else:
            ranks.append(position)
    return ranks


def calculate_streaks(outcomes):
    """
    outcomes: correct/incorrect flags, most recent first.
    Returns (current_streak, best_streak).
    """
    current = 0
    for correct in outcomes:
        if not correct:
            break
        current += 1

    best = run = 0
    for correct in outcomes:
        run = run + 1 if correct else 0
        best = max(best, run)

    return current, best


def form_trend(newest_accuracy, oldest_accuracy):
    diff = newest_accuracy - oldest_accuracy
    if diff > FORM_THRESHOLD:
        return "improving"
    if diff < -FORM_THRESHOLD:
        return "declining"
    return "stable"


def _round_recency(bet):
    betting_round = bet.betting_round
    scored_at = betting_round.scored_at if betting_round else None
    if scored_at is not None and scored_at.tzinfo is None:
        scored_at = scored_at.replace(tzinfo=timezone.utc)
    return (scored_at or _EPOCH, bet.betting_round_id)


class StandingsService:
    def __init__(self, gateway):
        self.gateway = gateway

    def calculate_standings(self, competition_id, season_id=None):
        if self.gateway.get_competition(competition_id) is None:
            raise NotFoundError("Competition not found", {"competition_id": competition_id})

        with PerformanceMonitor(f"calculate_standings {competition_id}"):
            bets = self.gateway.get_competition_bets(competition_id, season_id=season_id)
            recent_rounds = self.gateway.get_recent_scored_rounds(
                competition_id, limit=FORM_WINDOW, season_id=season_id
            )
            standings = self._fold(bets, recent_rounds)

        return standings

    def _fold(self, bets, recent_rounds):
        bets_by_user = defaultdict(list)
        round_totals = defaultdict(lambda: defaultdict(int))
        for bet in bets:
            bets_by_user[bet.user_id].append(bet)
            round_totals[bet.betting_round_id][bet.user_id] += bet.points_awarded or 0

        round_winners = defaultdict(int)
        for totals in round_totals.values():
            top = max(totals.values())
            if top <= 0:
                continue
            for user_id, total in totals.items():
                if total == top:
                    round_winners[user_id] += 1

        users = self.gateway.get_users_by_ids(list(bets_by_user))
        trend_rounds = (
            [recent_rounds[0].id, recent_rounds[FORM_WINDOW - 1].id]
            if len(recent_rounds) >= FORM_WINDOW
            else None
        )

        standings = []
        for user_id, user_bets in bets_by_user.items():
            scored = [bet for bet in user_bets if bet.points_awarded is not None]
            wins = sum(1 for bet in scored if bet.points_awarded > 0)

            ordered = sorted(scored, key=lambda b: b.fixture_id)
            ordered.sort(key=_round_recency, reverse=True)
            current_streak, best_streak = calculate_streaks(
                [bet.points_awarded > 0 for bet in ordered]
            )

            trend = "stable"
            if trend_rounds:
                newest, oldest = (
                    self._round_accuracy(scored, round_id) for round_id in trend_rounds
                )
                trend = form_trend(newest, oldest)

            user = users.get(user_id)
            standings.append(
                Standing(
                    user_id=user_id,
                    user_name=user.display_name if user else f"User {user_id}",
                    total_points=sum(bet.points_awarded for bet in scored),
                    total_wins=wins,
                    predictions=len(scored),
                    accuracy=round(wins / len(scored) * 100, 1) if scored else 0.0,
                    rounds_played=len({bet.betting_round_id for bet in user_bets}),
                    round_wins=round_winners[user_id],
                    current_streak=current_streak,
                    best_streak=best_streak,
                    form_trend=trend,
                )
            )

        standings.sort(key=lambda s: s.user_id)
        standings.sort(key=Standing.sort_key, reverse=True)
        ranks = competition_ranks([s.sort_key() for s in standings])
        for standing, rank in zip(standings, ranks):
            standing.rank = rank
        return standings

    @staticmethod
    def _round_accuracy(scored_bets, round_id):
        in_round = [bet for bet in scored_bets if bet.betting_round_id == round_id]
        if not in_round:
            return 0.0
        return sum(1 for bet in in_round if bet.points_awarded > 0) / len(in_round)

    def get_user_standing(self, user_id, competition_id):
        for standing in self.calculate_standings(competition_id):
            if standing.user_id == user_id:
                return standing
        return None

    def determine_season_winners(self, season_id):
        """Store every rank-1 user of the season as champion; safe to rerun"""
        season = self.gateway.get_season(season_id)
        if season is None:
            raise NotFoundError("Season not found", {"season_id": season_id})

        existing = self.gateway.get_season_winners(season_id)
        if existing:
            logger.info(f"Winners for season {season_id} already determined")
            return existing

        standings = self.calculate_standings(season.competition_id, season_id=season_id)
        champions = [s for s in standings if s.rank == 1 and s.total_points > 0]
        if not champions:
            logger.info(f"No scored bets in season {season_id}, no winners")
            return []

        rows = [
            {
                "user_id": s.user_id,
                "rank": 1,
                "is_tied": len(champions) > 1,
                "total_points": s.total_points,
                "total_wins": s.total_wins,
                "accuracy": s.accuracy,
            }
            for s in champions
        ]
        winners = self.gateway.save_season_winners(season_id, rows)
        logger.info(
            f"Season {season_id} winners: {', '.join(str(s.user_id) for s in champions)}"
        )
        return winners

    def get_hall_of_fame(self):
        """Users ranked by titles won, then by points scored in winning seasons"""
        entries = {}
        for winner in self.gateway.get_all_season_winners():
            entry = entries.setdefault(
                winner.user_id,
                {
                    "user_id": winner.user_id,
                    "user_name": winner.user.display_name if winner.user else None,
                    "titles": 0,
                    "total_points": 0,
                    "seasons": [],
                },
            )
            entry["titles"] += 1
            entry["total_points"] += winner.total_points or 0
            entry["seasons"].append(
                {
                    "season_id": winner.season_id,
                    "season_name": winner.season.name if winner.season else None,
                    "is_tied": winner.is_tied,
                }
            )

        hall = sorted(entries.values(), key=lambda e: e["user_id"])
        hall.sort(key=lambda e: (e["titles"], e["total_points"]), reverse=True)

        ranks = competition_ranks([(e["titles"], e["total_points"]) for e in hall])
        for entry, rank in zip(hall, ranks):
            entry["rank"] = rank

        return hall
