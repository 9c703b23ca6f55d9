"""Catalog of the online room games, keyed by slug."""
from typing import Dict, List

from engines.base import GameEngine
from engines.battle import battle_engine
from engines.deduction import deduction_engine
from models.api import GameInfo

ENGINES: Dict[str, GameEngine] = {
    battle_engine.slug: battle_engine,
    deduction_engine.slug: deduction_engine,
}


def get_engine(slug: str) -> GameEngine:
    """Raises KeyError for an unknown slug."""
    return ENGINES[slug]


def catalog() -> List[GameInfo]:
    return [
        GameInfo(
            slug=engine.slug,
            name=engine.name,
            description=engine.description,
            min_players=engine.min_players,
            max_players=engine.max_players,
            rules=list(engine.rules),
        )
        for engine in ENGINES.values()
    ]
