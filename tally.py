"""Winner resolution over a closed election's per-party tallies."""

import enum
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple


class Outcome(enum.Enum):
    WIN = "WIN"
    TIE = "TIE"
    ABSTAINED = "ABSTAINED"


@dataclass(frozen=True)
class WinnerEntry:
    party: str
    vote_count: int

    def to_dict(self):
        return {"party": self.party, "vote_count": self.vote_count}


@dataclass(frozen=True)
class TallyResult:
    """Outcome of resolving an election.

    ``winners`` holds one entry for an outright win and several for a tie,
    in party registry order. It is empty only for the abstention outcome,
    where no party received a vote.
    """
    election_key: str
    outcome: Outcome
    winners: Tuple[WinnerEntry, ...] = field(default_factory=tuple)
    max_votes: int = 0

    @property
    def is_tie(self) -> bool:
        return self.outcome is Outcome.TIE

    @classmethod
    def from_winners(cls, election_key: str, winners: Sequence[WinnerEntry]) -> "TallyResult":
        winners = tuple(winners)
        if not winners:
            return cls(election_key, Outcome.ABSTAINED)
        outcome = Outcome.WIN if len(winners) == 1 else Outcome.TIE
        return cls(election_key, outcome, winners, winners[0].vote_count)

    def to_dict(self):
        return {
            "election_key": self.election_key,
            "outcome": self.outcome.value,
            "winners": [w.to_dict() for w in self.winners],
            "max_votes": self.max_votes,
        }


def top_parties(parties: Sequence) -> Tuple[int, List]:
    """Select the parties holding the highest vote count.

    :param parties: Objects with a ``vote_count`` attribute, in registry order.
    :returns: The maximum vote count and every party achieving it, keeping
        the input order. An empty input yields ``(0, [])``.
    """
    max_votes = max((p.vote_count for p in parties), default=0)
    return max_votes, [p for p in parties if p.vote_count == max_votes]
