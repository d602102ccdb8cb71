"""
Multi-Player/Team Parser.

Splits free-text player and team fields into ordered (player, team)
pairs. Cards can depict several players, possibly on different teams:

    "Juan Soto / Aaron Judge" + "Mets / Yankees"
        -> (Juan Soto, Mets), (Aaron Judge, Yankees)

Pairing rules:
- Equal segment counts pair positionally
- A single team segment applies to every player
- Any other mismatch keeps every player with team None; which team
  belongs to which player is for an admin to decide
- Players are never dropped; empty segments are not players
"""

from cardledger.config import settings
from cardledger.models.resolution import PlayerTeamPair


def split_segments(raw: str | None, delimiter: str | None = None) -> list[str]:
    """Split on the multi-value delimiter, trimming and dropping empty segments."""
    if not raw:
        return []
    delimiter = delimiter or settings.multi_value_delimiter
    return [segment.strip() for segment in raw.split(delimiter) if segment.strip()]


def parse_player_teams(
    player_names_raw: str | None,
    team_names_raw: str | None,
    delimiter: str | None = None,
) -> list[PlayerTeamPair]:
    """
    Parse raw player/team input into ordered pairs.

    Args:
        player_names_raw: Player field as typed, e.g. "Juan Soto / Aaron Judge"
        team_names_raw: Team field as typed; may be empty
        delimiter: Override for the configured multi-value delimiter

    Returns:
        One pair per player segment, in input order
    """
    players = split_segments(player_names_raw, delimiter)
    teams = split_segments(team_names_raw, delimiter)

    if len(teams) == len(players):
        return [PlayerTeamPair(player, team) for player, team in zip(players, teams, strict=True)]

    if len(teams) == 1:
        return [PlayerTeamPair(player, teams[0]) for player in players]

    return [PlayerTeamPair(player, None) for player in players]
