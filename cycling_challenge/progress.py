from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List

from .models import Activity, Challenge, ChallengeType, as_utc

TIE = "Tie"

CYCLING_TYPES = frozenset({
    "CYCLING", "MOUNTAIN_BIKING", "ROAD_BIKING", "INDOOR_CYCLING",
    "E_BIKE_FITNESS", "E_BIKE_MOUNTAIN", "GRAVEL_CYCLING",
    "CYCLOCROSS", "TRACK_CYCLING", "BMX",
})


@dataclass(frozen=True)
class ProgressResult:
    creator_value: float
    opponent_value: float
    creator_count: int
    opponent_count: int
    winner_name: str


def is_cycling_activity(activity_type: str | None) -> bool:
    return (activity_type or "").upper() in CYCLING_TYPES


def filter_relevant(
    activities: Iterable[Activity], user_id: int, window_start: datetime, window_end: datetime
) -> List[Activity]:
    """Actividades de ciclismo del usuario dentro de [window_start, window_end] (ambos inclusive)."""
    start, end = as_utc(window_start), as_utc(window_end)
    return [
        a for a in activities
        if a.user_id == user_id
        and start <= as_utc(a.activity_date) <= end
        and is_cycling_activity(a.activity_type)
    ]


def _total_distance(activities: List[Activity]) -> float:
    return sum(a.distance for a in activities)


def _total_climbing(activities: List[Activity]) -> float:
    return sum(a.elevation_gain or 0 for a in activities)


def _mean_speed(activities: List[Activity]) -> float:
    # las que no traen velocidad no cuentan ni en la suma ni en el divisor
    speeds = [a.average_speed for a in activities if a.average_speed is not None]
    if not speeds:
        return 0
    return sum(speeds) / len(speeds)


AGGREGATORS: Dict[ChallengeType, Callable[[List[Activity]], float]] = {
    ChallengeType.DISTANCE: _total_distance,
    ChallengeType.CLIMBING: _total_climbing,
    ChallengeType.AVERAGE_SPEED: _mean_speed,
}


def aggregate(activities: Iterable[Activity], challenge_type: ChallengeType) -> float:
    activities = list(activities)
    if not activities:
        return 0
    try:
        aggregator = AGGREGATORS[ChallengeType(challenge_type)]
    except (ValueError, KeyError):
        return 0
    return aggregator(activities)


def decide_winner(creator_name: str, creator_value: float, opponent_name: str, opponent_value: float) -> str:
    if creator_value > opponent_value:
        return creator_name
    if opponent_value > creator_value:
        return opponent_name
    return TIE


def compute_progress(
    challenge: Challenge,
    creator_activities: Iterable[Activity],
    opponent_activities: Iterable[Activity],
) -> ProgressResult:
    """Resumen del reto: total de cada participante, nº de actividades y ganador provisional."""
    creator = filter_relevant(creator_activities, challenge.creator_id, challenge.start_date, challenge.end_date)
    opponent = filter_relevant(opponent_activities, challenge.opponent_id, challenge.start_date, challenge.end_date)

    creator_value = aggregate(creator, challenge.type)
    opponent_value = aggregate(opponent, challenge.type)

    return ProgressResult(
        creator_value=creator_value,
        opponent_value=opponent_value,
        creator_count=len(creator),
        opponent_count=len(opponent),
        winner_name=decide_winner(challenge.creator.name, creator_value, challenge.opponent.name, opponent_value),
    )
