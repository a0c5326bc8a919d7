"""
League catalogue used by bulk population.

Priority drives population order (high -> medium -> low); region drives the
quick profile, which only covers high-priority South American and European leagues.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List

PRIORITY_ORDER = ("high", "medium", "low")


@dataclass(frozen=True)
class League:
    id: int
    name: str
    priority: str
    region: str


COMPREHENSIVE_LEAGUES: List[League] = [
    # South America
    League(128, "Liga Profesional Argentina", "high", "South America"),
    League(129, "Primera Nacional Argentina", "high", "South America"),
    League(130, "Copa Argentina", "high", "South America"),
    League(71, "Brasileirao Serie A", "high", "South America"),
    League(72, "Brasileirao Serie B", "medium", "South America"),
    League(73, "Copa do Brasil", "high", "South America"),
    League(13, "Copa Libertadores", "high", "South America"),
    League(11, "Copa Sudamericana", "medium", "South America"),
    # Europe
    League(2, "UEFA Champions League", "high", "Europe"),
    League(3, "UEFA Europa League", "high", "Europe"),
    League(848, "UEFA Conference League", "medium", "Europe"),
    League(39, "Premier League", "high", "Europe"),
    League(140, "La Liga", "high", "Europe"),
    League(135, "Serie A", "high", "Europe"),
    League(78, "Bundesliga", "high", "Europe"),
    League(61, "Ligue 1", "high", "Europe"),
    League(144, "Belgian First Division A", "medium", "Europe"),
    League(88, "Eredivisie", "medium", "Europe"),
    League(94, "Primeira Liga", "medium", "Europe"),
    League(203, "Super League Turkey", "medium", "Europe"),
    # International
    League(15, "FIFA Club World Cup", "medium", "International"),
    League(1, "World Cup", "high", "International"),
    League(4, "Euro Championship", "high", "International"),
    League(9, "Copa America", "high", "International"),
    # Rest of world
    League(188, "Chinese Super League", "low", "Asia"),
    League(218, "A-League", "low", "Oceania"),
    League(169, "Saudi Pro League", "low", "Asia"),
]

LEAGUES_BY_ID: Dict[int, League] = {league.id: league for league in COMPREHENSIVE_LEAGUES}


def essential_leagues() -> List[League]:
    return [
        league for league in COMPREHENSIVE_LEAGUES
        if league.priority == "high" and league.region in ("South America", "Europe")
    ]


def resolve_leagues(league_ids: Iterable[int]) -> List[League]:
    """Map ids to catalogue entries; unknown ids become medium-priority placeholders."""
    leagues = []
    for league_id in league_ids:
        league = LEAGUES_BY_ID.get(league_id)
        if league is None:
            league = League(league_id, f"League {league_id}", "medium", "Unknown")
        leagues.append(league)
    return leagues


def by_priority(leagues: Iterable[League]) -> List[League]:
    """Stable sort high -> medium -> low."""
    rank = {p: i for i, p in enumerate(PRIORITY_ORDER)}
    return sorted(leagues, key=lambda league: rank.get(league.priority, len(PRIORITY_ORDER)))
