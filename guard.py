# guard.py
from models import Ownership, AdminGrant
from errors import Unauthorized


def current_owner(session):
    o = session.query(Ownership).first()
    return o.owner if o else None


def is_owner(session, caller: str) -> bool:
    owner = current_owner(session)
    return bool(caller) and owner is not None and caller == owner


def is_admin(session, election_key: str, caller: str) -> bool:
    # unknown elections have no grants, so only the owner passes
    if is_owner(session, caller):
        return True
    if not caller or not election_key:
        return False
    grant = session.get(AdminGrant, (election_key, caller))
    return bool(grant and grant.granted)


def require_owner(session, caller: str):
    if not is_owner(session, caller):
        raise Unauthorized(f"{caller} is not the owner")


def require_admin(session, election_key: str, caller: str):
    if not is_admin(session, election_key, caller):
        raise Unauthorized(f"{caller} is not an admin of election {election_key}")
