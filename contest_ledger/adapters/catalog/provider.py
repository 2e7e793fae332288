"""Catalog provider interface and the static player pool."""

from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from ...core.entities import CatalogPlayer, Slot
from ...core.enums import PlayerRole
from ...core.errors import UnknownPlayerError


class CatalogProvider(Protocol):
    """Read-only source of match players and their prices."""

    async def list_players(self, match_ref: str) -> List[CatalogPlayer]:
        """Return the players selectable for a match."""
        ...


# Default pool offered for every match when no hosted catalog is configured
DEFAULT_PLAYER_POOL: List[CatalogPlayer] = [
    CatalogPlayer(id="rohit-sharma", name="Rohit Sharma", role=PlayerRole.BATSMAN, cost=15),
    CatalogPlayer(id="virat-kohli", name="Virat Kohli", role=PlayerRole.BATSMAN, cost=15),
    CatalogPlayer(id="jasprit-bumrah", name="Jasprit Bumrah", role=PlayerRole.BOWLER, cost=12),
    CatalogPlayer(id="ravindra-jadeja", name="Ravindra Jadeja", role=PlayerRole.ALL_ROUNDER, cost=13),
    CatalogPlayer(id="kl-rahul", name="KL Rahul", role=PlayerRole.WICKET_KEEPER, cost=11),
    CatalogPlayer(id="hardik-pandya", name="Hardik Pandya", role=PlayerRole.ALL_ROUNDER, cost=12),
    CatalogPlayer(id="mohammed-shami", name="Mohammed Shami", role=PlayerRole.BOWLER, cost=10),
    CatalogPlayer(id="shubman-gill", name="Shubman Gill", role=PlayerRole.BATSMAN, cost=11),
    CatalogPlayer(id="rishabh-pant", name="Rishabh Pant", role=PlayerRole.WICKET_KEEPER, cost=12),
    CatalogPlayer(id="ravichandran-ashwin", name="Ravichandran Ashwin", role=PlayerRole.BOWLER, cost=10),
    CatalogPlayer(id="shreyas-iyer", name="Shreyas Iyer", role=PlayerRole.BATSMAN, cost=10),
    CatalogPlayer(id="axar-patel", name="Axar Patel", role=PlayerRole.ALL_ROUNDER, cost=9),
]


class StaticCatalogProvider:
    """Catalog backed by in-process player lists.

    Matches without their own list fall back to the default pool.
    """

    def __init__(
        self,
        players_by_match: Optional[Mapping[str, Sequence[CatalogPlayer]]] = None,
        default_pool: Optional[Sequence[CatalogPlayer]] = None,
    ):
        self._players_by_match: Dict[str, List[CatalogPlayer]] = {
            match_ref: list(players) for match_ref, players in (players_by_match or {}).items()
        }
        self._default_pool = list(DEFAULT_PLAYER_POOL if default_pool is None else default_pool)

    async def list_players(self, match_ref: str) -> List[CatalogPlayer]:
        return list(self._players_by_match.get(match_ref, self._default_pool))


def snapshot_slots(
    players: Sequence[CatalogPlayer],
    selected_ids: Iterable[str],
    match_ref: str = "",
) -> List[Slot]:
    """Copy the selected catalog players into priced slots.

    Selection order is kept and repeated ids are kept as repeated slots, so
    duplicate selections still reach the roster validator.

    Raises:
        UnknownPlayerError: If any selected id is not in the catalog
    """
    by_id = {player.id: player for player in players}
    selected = list(selected_ids)

    unknown = {player_id for player_id in selected if player_id not in by_id}
    if unknown:
        raise UnknownPlayerError(match_ref, unknown)

    return [Slot.from_catalog(by_id[player_id]) for player_id in selected]
