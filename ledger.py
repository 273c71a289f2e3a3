"""Election ledger: registry, party list, ballot box, winner resolution and ownership.

Every state-changing operation runs inside an exclusive region keyed by the
election it touches (or by the ownership domain), opens one database
transaction, validates before mutating, and writes its audit block in that
same transaction.
"""
import hashlib
import logging
import secrets
import time
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

import config
from blockchain import AuditChain
from errors import NotFound, InvalidArgument, Conflict, PreconditionFailed, InsufficientPayment, Unauthorized
from guard import is_owner, is_admin, require_owner, require_admin
from locks import KeyedLocks
from models import (
    Election, Party, PartyStatus, VoterRecord, Winner, NameReservation, AdminGrant, Ownership,
    ElectionStatus,
)
from tally import Outcome, TallyResult, WinnerEntry, top_parties
from wallet import is_zero_address

logger = logging.getLogger(__name__)

NAMES_LOCK = "names"
OWNERSHIP_SCOPE = "ownership"

OPEN_STATUSES = (ElectionStatus.NOT_STARTED, ElectionStatus.ACTIVE, ElectionStatus.PAUSED)


@dataclass(frozen=True)
class ElectionInfo:
    key: str
    name: str
    description: str
    created_time: int
    start_time: int
    stop_time: int
    vote_fee: int
    paused: bool
    cancelled: bool
    creator: str
    status: ElectionStatus

    def to_dict(self):
        d = asdict(self)
        d["status"] = self.status.value
        return d


@dataclass(frozen=True)
class PartyInfo:
    name: str
    created_time: int
    vote_count: int
    status: PartyStatus

    def to_dict(self):
        d = asdict(self)
        d["status"] = self.status.value
        return d


@dataclass(frozen=True)
class VoteReceipt:
    election_key: str
    voter: str
    party: str
    vote_time: int
    paid: int

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class OwnershipInfo:
    owner: Optional[str]
    pending_owner: Optional[str]

    def to_dict(self):
        return asdict(self)


def _election_info(e: Election, now: int) -> ElectionInfo:
    return ElectionInfo(e.key, e.name, e.description, e.created_time, e.start_time, e.stop_time,
                        e.vote_fee, e.paused, e.cancelled, e.creator, e.status(now))


def _party_info(p: Party) -> PartyInfo:
    return PartyInfo(p.name, p.created_time, p.vote_count, p.status)


def _check_length(label: str, value, lo: int, hi: int):
    # len() counts code points, so multi-byte names are measured like ASCII ones
    if not isinstance(value, str) or not lo <= len(value) <= hi:
        raise InvalidArgument(f"{label} must be between {lo} and {hi} characters")


def _check_int(label: str, value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"{label} must be an integer")


def _check_address(label: str, address):
    if not isinstance(address, str) or is_zero_address(address):
        raise InvalidArgument(f"{label} must be a non-empty, non-zero address")


class Ledger:
    def __init__(self, session_factory, clock=None, chain: AuditChain = None,
                 lock_timeout: float = config.LOCK_TIMEOUT):
        self.Session = session_factory
        self.clock = clock or (lambda: int(time.time()))
        self.chain = chain or AuditChain()
        self.locks = KeyedLocks(lock_timeout)

    @contextmanager
    def _transaction(self):
        session = self.Session()
        try:
            with session.begin():
                yield session
        finally:
            session.close()

    def _load(self, session, key: str, for_update: bool = False) -> Election:
        q = session.query(Election).filter_by(key=key)
        if for_update:
            q = q.with_for_update()
        election = q.first()
        if election is None:
            raise NotFound(f"election {key} does not exist")
        return election

    def _load_open(self, session, key: str, now: int) -> Election:
        election = self._load(session, key, for_update=True)
        status = election.status(now)
        if status not in OPEN_STATUSES:
            raise PreconditionFailed(f"election {key} is {status.value}")
        return election

    def _audit(self, session, scope: str, operation: str, caller: str, election_key, now: int, **params):
        record = {
            "operation": operation,
            "caller": caller,
            "election_key": election_key,
            "timestamp": now,
            "params": params,
        }
        self.chain.append(session, scope, record)

    # ---------------------------------------------------------------- registry

    def _validate_fields(self, name, description, start_time, stop_time, vote_fee, now):
        _check_length("name", name, config.NAME_MIN_LEN, config.NAME_MAX_LEN)
        _check_length("description", description, config.DESCRIPTION_MIN_LEN, config.DESCRIPTION_MAX_LEN)
        _check_int("start time", start_time)
        _check_int("stop time", stop_time)
        _check_int("vote fee", vote_fee)
        if vote_fee < 0:
            raise InvalidArgument("vote fee must not be negative")
        if start_time <= now:
            raise InvalidArgument("start time must be in the future")
        if stop_time <= start_time:
            raise InvalidArgument("stop time must be after start time")

    def _check_name_free(self, session, name: str, own_key: str = None):
        reservation = session.get(NameReservation, name)
        if reservation is not None and reservation.election_key != own_key:
            raise Conflict(f"election name {name!r} is already taken")

    @staticmethod
    def _reserve_name(session, name: str, key: str):
        # name is the primary key, so a reservation committed elsewhere fails the flush
        session.add(NameReservation(name=name, election_key=key))
        try:
            session.flush()
        except IntegrityError:
            raise Conflict(f"election name {name!r} is already taken")

    @staticmethod
    def _new_key(creator: str, name: str, now: int) -> str:
        seed = f"{creator}|{name}|{now}|{secrets.token_hex(16)}"
        return "0x" + hashlib.sha256(seed.encode()).hexdigest()

    def create_election(self, caller: str, name: str, description: str,
                        start_time: int, stop_time: int, vote_fee: int = 0) -> ElectionInfo:
        with self.locks.hold(NAMES_LOCK), self._transaction() as session:
            require_owner(session, caller)
            now = self.clock()
            self._validate_fields(name, description, start_time, stop_time, vote_fee, now)
            self._check_name_free(session, name)
            key = self._new_key(caller, name, now)
            election = Election(key=key, name=name, description=description, created_time=now,
                                start_time=start_time, stop_time=stop_time, vote_fee=vote_fee,
                                paused=True, cancelled=False, abstained=False, creator=caller)
            session.add(election)
            session.flush()
            self._reserve_name(session, name, key)
            self._audit(session, key, "ElectionCreated", caller, key, now, name=name,
                        description=description, start_time=start_time, stop_time=stop_time,
                        vote_fee=vote_fee)
            info = _election_info(election, now)
        logger.info("Election %s (%r) created by %s", key, name, caller)
        return info

    def update_election(self, caller: str, key: str, name: str, description: str,
                        start_time: int, stop_time: int, vote_fee: int) -> ElectionInfo:
        with self.locks.hold(key), self.locks.hold(NAMES_LOCK), self._transaction() as session:
            require_admin(session, key, caller)
            now = self.clock()
            election = self._load_open(session, key, now)
            self._validate_fields(name, description, start_time, stop_time, vote_fee, now)
            self._check_name_free(session, name, own_key=key)
            old_name = election.name
            if name != old_name:
                session.delete(session.get(NameReservation, old_name))
                session.flush()
                self._reserve_name(session, name, key)
            election.name = name
            election.description = description
            election.start_time = start_time
            election.stop_time = stop_time
            election.vote_fee = vote_fee
            session.flush()
            self._audit(session, key, "ElectionUpdated", caller, key, now, name=name,
                        description=description, start_time=start_time, stop_time=stop_time,
                        vote_fee=vote_fee)
            info = _election_info(election, now)
        logger.info("Election %s updated by %s", key, caller)
        return info

    def get_election(self, key: str) -> ElectionInfo:
        with self._transaction() as session:
            return _election_info(self._load(session, key), self.clock())

    def get_status(self, key: str) -> ElectionStatus:
        return self.get_election(key).status

    def list_elections(self) -> List[ElectionInfo]:
        with self._transaction() as session:
            now = self.clock()
            rows = session.query(Election).order_by(Election.created_time, Election.key).all()
            return [_election_info(e, now) for e in rows]

    def cancel_election(self, caller: str, key: str) -> ElectionInfo:
        with self.locks.hold(key), self._transaction() as session:
            require_admin(session, key, caller)
            now = self.clock()
            election = self._load_open(session, key, now)
            election.cancelled = True
            self._audit(session, key, "ElectionCancelled", caller, key, now)
            info = _election_info(election, now)
        logger.info("Election %s cancelled by %s", key, caller)
        return info

    def _set_paused(self, caller: str, key: str, paused: bool) -> ElectionInfo:
        with self.locks.hold(key), self._transaction() as session:
            require_admin(session, key, caller)
            now = self.clock()
            election = self._load_open(session, key, now)
            if election.paused == paused:
                raise Conflict(f"election {key} is already {'paused' if paused else 'running'}")
            election.paused = paused
            self._audit(session, key, "ElectionPaused" if paused else "ElectionResumed", caller, key, now)
            info = _election_info(election, now)
        logger.info("Election %s %s by %s", key, "paused" if paused else "resumed", caller)
        return info

    def pause_election(self, caller: str, key: str) -> ElectionInfo:
        return self._set_paused(caller, key, True)

    def resume_election(self, caller: str, key: str) -> ElectionInfo:
        return self._set_paused(caller, key, False)

    def delete_election(self, caller: str, key: str) -> None:
        with self.locks.hold(key), self.locks.hold(NAMES_LOCK), self._transaction() as session:
            require_owner(session, caller)
            now = self.clock()
            election = self._load(session, key, for_update=True)
            name = election.name
            session.query(NameReservation).filter_by(election_key=key).delete(synchronize_session=False)
            # parties, winners, admin grants and voter records go with the election
            session.delete(election)
            session.flush()
            self._audit(session, key, "ElectionDeleted", caller, key, now, name=name)
        self.locks.discard(key)
        logger.info("Election %s (%r) deleted by %s", key, name, caller)

    # ------------------------------------------------------------------ admins

    def add_admin(self, caller: str, key: str, address: str) -> None:
        with self.locks.hold(key), self._transaction() as session:
            require_owner(session, caller)
            now = self.clock()
            self._load(session, key, for_update=True)
            _check_address("admin address", address)
            grant = session.get(AdminGrant, (key, address))
            if grant is not None and grant.granted:
                raise Conflict(f"{address} is already an admin of election {key}")
            if grant is None:
                session.add(AdminGrant(election_key=key, address=address, granted=True))
            else:
                grant.granted = True
            self._audit(session, key, "AdminAdded", caller, key, now, admin=address)
        logger.info("Admin %s added to election %s", address, key)

    def remove_admin(self, caller: str, key: str, address: str) -> None:
        with self.locks.hold(key), self._transaction() as session:
            require_owner(session, caller)
            now = self.clock()
            self._load(session, key, for_update=True)
            _check_address("admin address", address)
            grant = session.get(AdminGrant, (key, address))
            if grant is None or not grant.granted:
                raise Conflict(f"{address} is not an admin of election {key}")
            grant.granted = False
            self._audit(session, key, "AdminRemoved", caller, key, now, admin=address)
        logger.info("Admin %s removed from election %s", address, key)

    def is_admin(self, key: str, address: str) -> bool:
        with self._transaction() as session:
            return is_admin(session, key, address)

    def is_owner(self, address: str) -> bool:
        with self._transaction() as session:
            return is_owner(session, address)

    # ----------------------------------------------------------------- parties

    def add_party(self, caller: str, key: str, name: str) -> PartyInfo:
        with self.locks.hold(key), self._transaction() as session:
            require_admin(session, key, caller)
            now = self.clock()
            election = self._load_open(session, key, now)
            _check_length("party name", name, config.NAME_MIN_LEN, config.NAME_MAX_LEN)
            if any(p.name == name and p.status is PartyStatus.ACTIVE for p in election.parties):
                raise Conflict(f"party {name!r} is already registered in election {key}")
            party = Party(name=name, position=len(election.parties), created_time=now,
                          vote_count=0, status=PartyStatus.ACTIVE)
            election.parties.append(party)
            session.flush()
            self._audit(session, key, "PartyAdded", caller, key, now, party=name)
            info = _party_info(party)
        logger.info("Party %r added to election %s", name, key)
        return info

    def remove_party(self, caller: str, key: str, name: str) -> List[PartyInfo]:
        with self.locks.hold(key), self._transaction() as session:
            require_admin(session, key, caller)
            now = self.clock()
            election = self._load_open(session, key, now)
            matches = [p for p in election.parties if p.name == name and p.status is PartyStatus.ACTIVE]
            if not matches:
                raise Conflict(f"party {name!r} is not registered in election {key}")
            for p in matches:
                p.status = PartyStatus.INACTIVE
            self._audit(session, key, "PartyRemoved", caller, key, now, party=name)
            removed = [_party_info(p) for p in matches]
        logger.info("Party %r removed from election %s", name, key)
        return removed

    def list_parties(self, key: str) -> List[PartyInfo]:
        with self._transaction() as session:
            return [_party_info(p) for p in self._load(session, key).parties]

    # ------------------------------------------------------------------ voting

    def vote(self, caller: str, key: str, party_name: str, paid_amount: int = 0) -> VoteReceipt:
        _check_address("voter address", caller)
        with self.locks.hold(key), self._transaction() as session:
            election = self._load(session, key, for_update=True)
            now = self.clock()
            status = election.status(now)
            if status is not ElectionStatus.ACTIVE:
                raise PreconditionFailed(f"election {key} is {status.value}, not ACTIVE")
            _check_length("party name", party_name, config.NAME_MIN_LEN, config.NAME_MAX_LEN)
            party = next((p for p in election.parties
                          if p.name == party_name and p.status is PartyStatus.ACTIVE), None)
            if party is None:
                raise NotFound(f"party {party_name!r} is not registered in election {key}")
            if isinstance(paid_amount, bool) or not isinstance(paid_amount, int) or paid_amount < election.vote_fee:
                raise InsufficientPayment(f"vote fee is {election.vote_fee}, paid {paid_amount!r}")
            record = session.get(VoterRecord, (key, caller))
            if record is not None and record.voted:
                raise Conflict(f"{caller} has already voted in election {key}")
            if record is None:
                record = VoterRecord(election_key=key, address=caller)
                session.add(record)
            record.voted = True
            record.vote_time = now
            record.party_id = party.id
            record.paid = paid_amount
            party.vote_count += 1
            session.flush()
            self._audit(session, key, "VoteCast", caller, key, now, party=party_name, paid=paid_amount)
            receipt = VoteReceipt(key, caller, party_name, now, paid_amount)
        logger.info("Vote cast in election %s by %s", key, caller)
        return receipt

    def has_voted(self, key: str, address: str) -> bool:
        with self._transaction() as session:
            record = session.get(VoterRecord, (key, address)) if address else None
            return bool(record and record.voted)

    # ------------------------------------------------------------------ winner

    @staticmethod
    def _stored_result(election: Election) -> Optional[TallyResult]:
        if election.winners:
            return TallyResult.from_winners(
                election.key, [WinnerEntry(w.party_name, w.vote_count) for w in election.winners])
        if election.abstained:
            return TallyResult(election.key, Outcome.ABSTAINED)
        return None

    def resolve_winner(self, caller: str, key: str) -> TallyResult:
        with self.locks.hold(key), self._transaction() as session:
            require_admin(session, key, caller)
            election = self._load(session, key, for_update=True)
            now = self.clock()
            status = election.status(now)
            if status is not ElectionStatus.CLOSED:
                raise PreconditionFailed(f"election {key} is {status.value}, not CLOSED")
            if election.winners:
                raise Conflict(f"winner of election {key} was already declared",
                               winners=self._stored_result(election))
            active = [p for p in election.parties if p.status is PartyStatus.ACTIVE]
            if not active:
                raise PreconditionFailed(f"election {key} has no registered parties")
            max_votes, top = top_parties(active)
            if max_votes == 0:
                election.abstained = True
                self._audit(session, key, "ElectionAbstained", caller, key, now)
                result = TallyResult(key, Outcome.ABSTAINED)
            else:
                for position, party in enumerate(top):
                    election.winners.append(Winner(position=position, party_id=party.id, party_name=party.name,
                                                   vote_count=party.vote_count, declared_time=now))
                session.flush()
                result = TallyResult.from_winners(key, [WinnerEntry(p.name, p.vote_count) for p in top])
                self._audit(session, key, "WinnerDeclared", caller, key, now, outcome=result.outcome.value,
                            winners=[w.to_dict() for w in result.winners])
        logger.info("Election %s resolved: %s", key, result.outcome.value)
        return result

    def get_winners(self, key: str) -> Optional[TallyResult]:
        with self._transaction() as session:
            return self._stored_result(self._load(session, key))

    # --------------------------------------------------------------- ownership

    def _ownership(self, session) -> Ownership:
        o = session.query(Ownership).with_for_update().first()
        if o is None:
            o = Ownership(owner=None, pending_owner=None)
            session.add(o)
        return o

    def transfer_ownership(self, caller: str, new_owner: str) -> OwnershipInfo:
        with self.locks.hold(OWNERSHIP_SCOPE), self._transaction() as session:
            require_owner(session, caller)
            now = self.clock()
            _check_address("new owner", new_owner)
            if new_owner == caller:
                raise InvalidArgument("new owner must differ from the current owner")
            o = self._ownership(session)
            o.pending_owner = new_owner
            self._audit(session, OWNERSHIP_SCOPE, "OwnershipTransferStarted", caller, None, now,
                        new_owner=new_owner)
            info = OwnershipInfo(o.owner, o.pending_owner)
        logger.info("Ownership transfer from %s to %s started", caller, new_owner)
        return info

    def accept_ownership(self, caller: str) -> OwnershipInfo:
        with self.locks.hold(OWNERSHIP_SCOPE), self._transaction() as session:
            now = self.clock()
            o = self._ownership(session)
            if not caller or o.pending_owner is None or o.pending_owner != caller:
                raise Unauthorized(f"{caller} is not the pending owner")
            previous = o.owner
            o.owner = caller
            o.pending_owner = None
            self._audit(session, OWNERSHIP_SCOPE, "OwnershipTransferred", caller, None, now,
                        previous_owner=previous)
            info = OwnershipInfo(o.owner, o.pending_owner)
        logger.info("Ownership transferred from %s to %s", previous, caller)
        return info

    def get_ownership(self) -> OwnershipInfo:
        with self._transaction() as session:
            o = session.query(Ownership).first()
            return OwnershipInfo(o.owner, o.pending_owner) if o else OwnershipInfo(None, None)

    # ------------------------------------------------------------------- audit

    def audit_log(self, scope: str) -> List[dict]:
        with self._transaction() as session:
            return self.chain.to_list(session, scope)

    def audit_records(self, scope: str) -> List[dict]:
        with self._transaction() as session:
            return self.chain.records(session, scope)

    def verify_audit_chain(self, scope: str) -> bool:
        with self._transaction() as session:
            return self.chain.is_valid_chain(session, scope)
