import pytest

from blockchain import AuditChain
from db import make_engine, make_session_factory, init_db
from ledger import Ledger

T0 = 1_700_000_000
OWNER = "0x" + "a" * 40
ADMIN = "0x" + "b" * 40
VOTER = "0x" + "c" * 40
STRANGER = "0x" + "d" * 40


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_ledger(tmp_path, clock):
    counter = iter(range(1000))

    def factory(owner=OWNER, lock_timeout=30):
        engine = make_engine(f"sqlite:///{tmp_path / f'ledger{next(counter)}.db'}")
        init_db(engine, owner=owner)
        return Ledger(make_session_factory(engine), clock=clock,
                      chain=AuditChain(difficulty=0), lock_timeout=lock_timeout)

    return factory


@pytest.fixture
def ledger(make_ledger):
    return make_ledger()


@pytest.fixture
def election(ledger):
    '''An election opening at T0+10 and closing at T0+100, with two parties.'''
    e = ledger.create_election(OWNER, "Mayor", "Mayoral election", T0 + 10, T0 + 100, 0)
    ledger.add_party(OWNER, e.key, "PartyX")
    ledger.add_party(OWNER, e.key, "PartyY")
    return e


@pytest.fixture
def open_election(ledger, election, clock):
    '''The ``election`` fixture resumed and inside its voting window.'''
    ledger.resume_election(OWNER, election.key)
    clock.now = T0 + 50
    return election
