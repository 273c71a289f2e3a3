from types import SimpleNamespace

import pytest

from errors import Unauthorized, Conflict, PreconditionFailed
from tally import Outcome, TallyResult, WinnerEntry, top_parties

from conftest import T0, OWNER, ADMIN, VOTER


def cast(ledger, key, party, n, offset=0):
    for i in range(n):
        ledger.vote(f"0x{offset + i + 1:040x}", key, party, 0)


def test_top_parties():
    parties = [SimpleNamespace(name=n, vote_count=v) for n, v in [('A', 5), ('B', 5), ('C', 3)]]
    max_votes, top = top_parties(parties)
    assert max_votes == 5
    assert [p.name for p in top] == ['A', 'B']


def test_top_parties_empty():
    assert top_parties([]) == (0, [])


def test_result_from_winners():
    assert TallyResult.from_winners('k', [WinnerEntry('A', 3)]).outcome is Outcome.WIN
    tie = TallyResult.from_winners('k', [WinnerEntry('A', 3), WinnerEntry('B', 3)])
    assert tie.is_tie and tie.max_votes == 3
    assert TallyResult.from_winners('k', []).outcome is Outcome.ABSTAINED


def test_end_to_end(ledger, clock):
    e = ledger.create_election(OWNER, "Mayor", "Mayoral election", T0 + 10, T0 + 100, 0)
    ledger.add_party(OWNER, e.key, "PartyX")
    ledger.resume_election(OWNER, e.key)
    clock.now = T0 + 50
    ledger.vote(VOTER, e.key, "PartyX", 0)
    with pytest.raises(Conflict):
        ledger.vote(VOTER, e.key, "PartyX", 0)
    clock.now = T0 + 150
    result = ledger.resolve_winner(OWNER, e.key)
    assert result.outcome is Outcome.WIN
    assert result.winners == (WinnerEntry("PartyX", 1),)
    assert ledger.get_winners(e.key) == result


def test_tie(ledger, open_election, clock):
    ledger.add_party(OWNER, open_election.key, "PartyZ")
    cast(ledger, open_election.key, "PartyX", 5)
    cast(ledger, open_election.key, "PartyY", 5, offset=100)
    cast(ledger, open_election.key, "PartyZ", 3, offset=200)
    clock.now = T0 + 100
    result = ledger.resolve_winner(OWNER, open_election.key)
    assert result.outcome is Outcome.TIE
    assert [w.party for w in result.winners] == ["PartyX", "PartyY"]
    assert result.max_votes == 5


def test_resolve_exactly_once(ledger, open_election, clock):
    cast(ledger, open_election.key, "PartyY", 2)
    clock.now = T0 + 100
    first = ledger.resolve_winner(OWNER, open_election.key)
    with pytest.raises(Conflict) as excinfo:
        ledger.resolve_winner(OWNER, open_election.key)
    assert excinfo.value.winners == first
    declared = [r for r in ledger.audit_records(open_election.key) if r["operation"] == "WinnerDeclared"]
    assert len(declared) == 1


def test_resolve_before_close(ledger, open_election, clock):
    cast(ledger, open_election.key, "PartyX", 1)
    with pytest.raises(PreconditionFailed):
        ledger.resolve_winner(OWNER, open_election.key)
    clock.now = T0 + 99
    with pytest.raises(PreconditionFailed):
        ledger.resolve_winner(OWNER, open_election.key)
    assert ledger.get_winners(open_election.key) is None


def test_resolve_cancelled(ledger, open_election, clock):
    ledger.cancel_election(OWNER, open_election.key)
    clock.now = T0 + 200
    with pytest.raises(PreconditionFailed):
        ledger.resolve_winner(OWNER, open_election.key)


def test_resolve_requires_parties(ledger, clock):
    e = ledger.create_election(OWNER, "Empty", "No parties", T0 + 10, T0 + 100)
    clock.now = T0 + 100
    with pytest.raises(PreconditionFailed):
        ledger.resolve_winner(OWNER, e.key)


def test_resolve_admin_only(ledger, open_election, clock):
    clock.now = T0 + 100
    with pytest.raises(Unauthorized):
        ledger.resolve_winner(ADMIN, open_election.key)
    ledger.add_admin(OWNER, open_election.key, ADMIN)
    assert ledger.resolve_winner(ADMIN, open_election.key).outcome is Outcome.ABSTAINED


def test_abstention_is_repeatable(ledger, open_election, clock):
    clock.now = T0 + 100
    result = ledger.resolve_winner(OWNER, open_election.key)
    assert result.outcome is Outcome.ABSTAINED
    assert result.winners == ()
    # no winner set stored, so the guard does not block a second call
    again = ledger.resolve_winner(OWNER, open_election.key)
    assert again.outcome is Outcome.ABSTAINED
    assert ledger.get_winners(open_election.key).outcome is Outcome.ABSTAINED


def test_inactive_parties_are_not_tallied(ledger, open_election, clock):
    cast(ledger, open_election.key, "PartyY", 3)
    cast(ledger, open_election.key, "PartyX", 1, offset=10)
    ledger.remove_party(OWNER, open_election.key, "PartyY")
    clock.now = T0 + 100
    result = ledger.resolve_winner(OWNER, open_election.key)
    assert result.winners == (WinnerEntry("PartyX", 1),)


def test_delete_removes_winners(ledger, open_election, clock):
    cast(ledger, open_election.key, "PartyX", 1)
    clock.now = T0 + 100
    ledger.resolve_winner(OWNER, open_election.key)
    ledger.delete_election(OWNER, open_election.key)
    e = ledger.create_election(OWNER, "Mayor", "Mayoral election", T0 + 110, T0 + 200)
    assert ledger.get_winners(e.key) is None
