# models.py
from sqlalchemy import Column, Integer, BigInteger, String, Text, Enum, ForeignKey, Boolean, JSON
from sqlalchemy.orm import declarative_base, relationship
import enum

Base = declarative_base()

KEY_LENGTH = 66       # "0x" + 64 hex digits
ADDRESS_LENGTH = 128


class ElectionStatus(enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class PartyStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


def derive_status(now: int, start_time: int, stop_time: int, paused: bool, cancelled: bool) -> ElectionStatus:
    """Status of an election at ``now``. Never stored, always recomputed."""
    if cancelled:
        return ElectionStatus.CANCELLED
    if now < start_time:
        return ElectionStatus.NOT_STARTED
    if now < stop_time:
        return ElectionStatus.PAUSED if paused else ElectionStatus.ACTIVE
    return ElectionStatus.CLOSED


class Election(Base):
    __tablename__ = "elections"
    key = Column(String(KEY_LENGTH), primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    created_time = Column(BigInteger, nullable=False)
    start_time = Column(BigInteger, nullable=False)
    stop_time = Column(BigInteger, nullable=False)
    vote_fee = Column(BigInteger, nullable=False, default=0)
    paused = Column(Boolean, nullable=False, default=True)
    cancelled = Column(Boolean, nullable=False, default=False)
    abstained = Column(Boolean, nullable=False, default=False)
    creator = Column(String(ADDRESS_LENGTH), nullable=False)

    parties = relationship("Party", back_populates="election", order_by="Party.position",
                           cascade="all, delete-orphan")
    winners = relationship("Winner", order_by="Winner.position", cascade="all, delete-orphan")
    admins = relationship("AdminGrant", cascade="all, delete-orphan")
    voters = relationship("VoterRecord", cascade="all, delete-orphan")

    def status(self, now: int) -> ElectionStatus:
        return derive_status(now, self.start_time, self.stop_time, self.paused, self.cancelled)


class Party(Base):
    __tablename__ = "parties"
    id = Column(Integer, primary_key=True)
    election_key = Column(String(KEY_LENGTH), ForeignKey("elections.key"), nullable=False, index=True)
    position = Column(Integer, nullable=False)  # registry order within the election
    name = Column(String(200), nullable=False)
    created_time = Column(BigInteger, nullable=False)
    vote_count = Column(Integer, nullable=False, default=0)
    status = Column(Enum(PartyStatus), nullable=False, default=PartyStatus.ACTIVE)
    election = relationship("Election", back_populates="parties")


class VoterRecord(Base):
    __tablename__ = "voter_records"
    election_key = Column(String(KEY_LENGTH), ForeignKey("elections.key"), primary_key=True)
    address = Column(String(ADDRESS_LENGTH), primary_key=True)
    voted = Column(Boolean, nullable=False, default=False)
    vote_time = Column(BigInteger, nullable=True)
    party_id = Column(Integer, nullable=True)
    paid = Column(BigInteger, nullable=False, default=0)


class Winner(Base):
    __tablename__ = "winners"
    election_key = Column(String(KEY_LENGTH), ForeignKey("elections.key"), primary_key=True)
    position = Column(Integer, primary_key=True)
    party_id = Column(Integer, nullable=False)
    party_name = Column(String(200), nullable=False)
    vote_count = Column(Integer, nullable=False)
    declared_time = Column(BigInteger, nullable=False)


class NameReservation(Base):
    __tablename__ = "name_reservations"
    name = Column(String(200), primary_key=True)
    election_key = Column(String(KEY_LENGTH), nullable=False, unique=True)


class AdminGrant(Base):
    __tablename__ = "admin_grants"
    election_key = Column(String(KEY_LENGTH), ForeignKey("elections.key"), primary_key=True)
    address = Column(String(ADDRESS_LENGTH), primary_key=True)
    granted = Column(Boolean, nullable=False, default=True)


class Ownership(Base):
    __tablename__ = "ownership"
    id = Column(Integer, primary_key=True)
    owner = Column(String(ADDRESS_LENGTH), nullable=True)
    pending_owner = Column(String(ADDRESS_LENGTH), nullable=True)


class AuditBlock(Base):
    __tablename__ = "audit_blocks"
    scope = Column(String(KEY_LENGTH), primary_key=True)
    index = Column("block_index", Integer, primary_key=True)
    previous_hash = Column(String(64), nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    record = Column(JSON, nullable=True)
    nonce = Column(Integer, nullable=False, default=0)
    hash = Column(String(64), nullable=False)
