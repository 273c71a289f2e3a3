from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from models import Base, Ownership
import config
import logging

logger = logging.getLogger(__name__)


def make_engine(url: str = None):
    url = url or config.DATABASE_URL
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine, owner: str = None):
    Base.metadata.create_all(bind=engine)
    # ensure a single ownership row exists
    session = make_session_factory(engine)()
    o = session.query(Ownership).first()
    if not o:
        o = Ownership(owner=owner, pending_owner=None)
        session.add(o)
        session.commit()
        logger.info("Ownership row created, owner=%s", owner)
    elif owner and not o.owner:
        o.owner = owner
        session.commit()
        logger.info("Owner recorded: %s", owner)
    session.close()
