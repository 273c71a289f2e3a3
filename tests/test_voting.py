import threading

import pytest

from errors import NotFound, InvalidArgument, Conflict, PreconditionFailed, InsufficientPayment, LockTimeout
from models import PartyStatus

from conftest import T0, OWNER, VOTER


def votes_of(ledger, key):
    return {p.name: p.vote_count for p in ledger.list_parties(key)}


def run_concurrently(n, target):
    barrier = threading.Barrier(n)
    outcomes = [None] * n

    def worker(i):
        barrier.wait()
        try:
            outcomes[i] = target(i)
        except Exception as e:
            outcomes[i] = e

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return outcomes


def test_vote_success(ledger, open_election):
    receipt = ledger.vote(VOTER, open_election.key, "PartyX", 0)
    assert receipt.voter == VOTER
    assert receipt.party == "PartyX"
    assert receipt.vote_time == T0 + 50
    assert votes_of(ledger, open_election.key) == {"PartyX": 1, "PartyY": 0}
    assert ledger.has_voted(open_election.key, VOTER)


def test_double_vote_rejected(ledger, open_election):
    ledger.vote(VOTER, open_election.key, "PartyX", 0)
    with pytest.raises(Conflict):
        ledger.vote(VOTER, open_election.key, "PartyY", 0)
    assert votes_of(ledger, open_election.key) == {"PartyX": 1, "PartyY": 0}


@pytest.mark.parametrize('now, resumed', [
    (T0, True),          # not started
    (T0 + 50, False),    # paused
    (T0 + 100, True),    # closed
])
def test_vote_requires_active(ledger, election, clock, now, resumed):
    if resumed:
        ledger.resume_election(OWNER, election.key)
    clock.now = now
    with pytest.raises(PreconditionFailed):
        ledger.vote(VOTER, election.key, "PartyX", 0)
    assert not ledger.has_voted(election.key, VOTER)


def test_vote_on_cancelled_election(ledger, open_election):
    ledger.cancel_election(OWNER, open_election.key)
    with pytest.raises(PreconditionFailed):
        ledger.vote(VOTER, open_election.key, "PartyX", 0)


def test_vote_unknown_election(ledger):
    with pytest.raises(NotFound):
        ledger.vote(VOTER, "0x" + "1" * 64, "PartyX", 0)


def test_vote_checks_in_order(ledger, clock):
    e = ledger.create_election(OWNER, "Paid", "Paid election", T0 + 10, T0 + 100, 10)
    ledger.add_party(OWNER, e.key, "PartyX")
    ledger.resume_election(OWNER, e.key)
    clock.now = T0 + 20
    # bad name beats everything else
    with pytest.raises(InvalidArgument):
        ledger.vote(VOTER, e.key, "X", 0)
    # unknown party beats underpayment
    with pytest.raises(NotFound):
        ledger.vote(VOTER, e.key, "PartyQ", 0)
    with pytest.raises(InsufficientPayment):
        ledger.vote(VOTER, e.key, "PartyX", 9)
    ledger.vote(VOTER, e.key, "PartyX", 10)
    # underpayment beats already-voted
    with pytest.raises(InsufficientPayment):
        ledger.vote(VOTER, e.key, "PartyX", 0)
    with pytest.raises(Conflict):
        ledger.vote(VOTER, e.key, "PartyX", 25)


def test_vote_from_zero_address(ledger, open_election):
    with pytest.raises(InvalidArgument):
        ledger.vote("0x" + "0" * 40, open_election.key, "PartyX", 0)


def test_inactive_party_cannot_receive_votes(ledger, open_election):
    ledger.vote("0x01", open_election.key, "PartyY", 0)
    ledger.remove_party(OWNER, open_election.key, "PartyY")
    with pytest.raises(NotFound):
        ledger.vote(VOTER, open_election.key, "PartyY", 0)
    parties = ledger.list_parties(open_election.key)
    assert parties[1].status is PartyStatus.INACTIVE
    assert parties[1].vote_count == 1


def test_concurrent_votes_same_voter(ledger, open_election):
    n = 16
    outcomes = run_concurrently(n, lambda i: ledger.vote(VOTER, open_election.key, "PartyX", 0))
    accepted = [o for o in outcomes if not isinstance(o, Exception)]
    rejected = [o for o in outcomes if isinstance(o, Exception)]
    assert len(accepted) == 1
    assert len(rejected) == n - 1
    assert all(isinstance(e, Conflict) for e in rejected)
    assert votes_of(ledger, open_election.key)["PartyX"] == 1


def test_concurrent_votes_lose_no_update(ledger, open_election):
    n = 24
    parties = ["PartyX", "PartyY"]
    outcomes = run_concurrently(
        n, lambda i: ledger.vote(f"0x{i + 1:040x}", open_election.key, parties[i % 2], 0))
    assert not [o for o in outcomes if isinstance(o, Exception)]
    counts = votes_of(ledger, open_election.key)
    assert counts == {"PartyX": n // 2, "PartyY": n // 2}
    cast = [r for r in ledger.audit_records(open_election.key) if r["operation"] == "VoteCast"]
    assert len(cast) == sum(counts.values())


def test_vote_times_out_on_busy_election(ledger, open_election):
    other = ledger.create_election(OWNER, "Council", "Council election", T0 + 60, T0 + 100)
    ledger.add_party(OWNER, other.key, "PartyX")
    ledger.resume_election(OWNER, other.key)
    ledger.locks.timeout = 0.05
    with ledger.locks.hold(open_election.key):
        with pytest.raises(LockTimeout):
            ledger.vote(VOTER, open_election.key, "PartyX", 0)
        # unrelated elections are not held up
        assert ledger.list_parties(other.key)[0].vote_count == 0
        ledger.update_election(OWNER, other.key, "Council", "Council election", T0 + 70, T0 + 100, 0)
    ledger.vote(VOTER, open_election.key, "PartyX", 0)
