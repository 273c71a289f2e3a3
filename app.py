# app.py
from flask import Flask, Blueprint, request, jsonify, g, current_app
from functools import wraps
import hashlib
import logging
import threading
import time

from db import make_engine, make_session_factory, init_db
from errors import LedgerError
from ledger import Ledger
from wallet import verify_signature_hex, address_from_public_key
import config

logger = logging.getLogger(__name__)

HTTP_STATUS = {
    "Unauthorized": 403,
    "NotFound": 404,
    "InvalidArgument": 400,
    "Conflict": 409,
    "PreconditionFailed": 412,
    "InsufficientPayment": 402,
    "LockTimeout": 503,
}

bp = Blueprint("ledger", __name__)


def get_ledger() -> Ledger:
    return current_app.config["LEDGER"]


def unauthenticated(reason):
    logger.warning("Rejected unsigned request to %s: %s", request.path, reason)
    return jsonify({"error": "Unauthenticated", "message": reason}), 401


def signing_message(method: str, path: str, body: bytes, timestamp, nonce) -> str:
    """Canonical text a client signs for one request.

    A signature over it is valid for one method and path, one body, and one
    nonce within the timestamp window.
    """
    body_hash = hashlib.sha256(body).hexdigest()
    return f"{method.upper()}\n{path}\n{body_hash}\n{timestamp}\n{nonce}"


class NonceCache:
    """Remembers (address, nonce) pairs seen within the signature window."""

    def __init__(self, max_age: int):
        self.max_age = max_age
        self._seen = {}
        self._lock = threading.Lock()

    def add(self, address: str, nonce: str, now: float) -> bool:
        """Record a nonce; False if the address already used it."""
        with self._lock:
            cutoff = now - self.max_age
            for k in [k for k, seen_at in self._seen.items() if seen_at < cutoff]:
                del self._seen[k]
            if (address, nonce) in self._seen:
                return False
            self._seen[(address, nonce)] = now
            return True


# auth decorator: the caller is the address of the key that signed the request
def signed_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        public_key = request.headers.get("X-Public-Key")
        signature = request.headers.get("X-Signature")
        timestamp = request.headers.get("X-Timestamp")
        nonce = request.headers.get("X-Nonce")
        if not public_key or not signature or not timestamp or not nonce:
            return unauthenticated("X-Public-Key, X-Signature, X-Timestamp and X-Nonce headers are required")
        try:
            signed_at = int(timestamp)
        except ValueError:
            return unauthenticated("X-Timestamp must be an integer")
        now = time.time()
        if abs(now - signed_at) > current_app.config["SIGNATURE_MAX_AGE"]:
            return unauthenticated("Signature timestamp is outside the accepted window")
        message = signing_message(request.method, request.path, request.get_data(), timestamp, nonce)
        message_hash = hashlib.sha256(message.encode()).hexdigest()
        if not verify_signature_hex(public_key, message_hash, signature):
            return unauthenticated("Signature verification failed")
        caller = address_from_public_key(public_key)
        if not current_app.config["NONCES"].add(caller, nonce, now):
            return unauthenticated("Nonce has already been used")
        g.caller = caller
        return f(*args, **kwargs)
    return wrapper


def payload():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


### ELECTIONS ###
@bp.route("/elections", methods=["POST"])
@signed_required
def create_election():
    d = payload()
    e = get_ledger().create_election(g.caller, d.get("name"), d.get("description"),
                                     d.get("start_time"), d.get("stop_time"), d.get("vote_fee", 0))
    return jsonify(e.to_dict()), 201


@bp.route("/elections")
def list_elections():
    return jsonify([e.to_dict() for e in get_ledger().list_elections()])


@bp.route("/elections/<key>")
def get_election(key):
    return jsonify(get_ledger().get_election(key).to_dict())


@bp.route("/elections/<key>/status")
def get_status(key):
    return jsonify({"key": key, "status": get_ledger().get_status(key).value})


@bp.route("/elections/<key>", methods=["PUT"])
@signed_required
def update_election(key):
    d = payload()
    e = get_ledger().update_election(g.caller, key, d.get("name"), d.get("description"),
                                     d.get("start_time"), d.get("stop_time"), d.get("vote_fee"))
    return jsonify(e.to_dict())


@bp.route("/elections/<key>/cancel", methods=["POST"])
@signed_required
def cancel_election(key):
    return jsonify(get_ledger().cancel_election(g.caller, key).to_dict())


@bp.route("/elections/<key>/pause", methods=["POST"])
@signed_required
def pause_election(key):
    return jsonify(get_ledger().pause_election(g.caller, key).to_dict())


@bp.route("/elections/<key>/resume", methods=["POST"])
@signed_required
def resume_election(key):
    return jsonify(get_ledger().resume_election(g.caller, key).to_dict())


@bp.route("/elections/<key>", methods=["DELETE"])
@signed_required
def delete_election(key):
    get_ledger().delete_election(g.caller, key)
    return jsonify({"deleted": key})


### ADMINS ###
@bp.route("/elections/<key>/admins/<address>", methods=["POST"])
@signed_required
def add_admin(key, address):
    get_ledger().add_admin(g.caller, key, address)
    return jsonify({"key": key, "admin": address, "granted": True}), 201


@bp.route("/elections/<key>/admins/<address>", methods=["DELETE"])
@signed_required
def remove_admin(key, address):
    get_ledger().remove_admin(g.caller, key, address)
    return jsonify({"key": key, "admin": address, "granted": False})


### PARTIES ###
@bp.route("/elections/<key>/parties")
def list_parties(key):
    return jsonify([p.to_dict() for p in get_ledger().list_parties(key)])


@bp.route("/elections/<key>/parties", methods=["POST"])
@signed_required
def add_party(key):
    p = get_ledger().add_party(g.caller, key, payload().get("name"))
    return jsonify(p.to_dict()), 201


@bp.route("/elections/<key>/parties/<name>", methods=["DELETE"])
@signed_required
def remove_party(key, name):
    removed = get_ledger().remove_party(g.caller, key, name)
    return jsonify([p.to_dict() for p in removed])


### VOTING ###
@bp.route("/elections/<key>/votes", methods=["POST"])
@signed_required
def vote(key):
    d = payload()
    receipt = get_ledger().vote(g.caller, key, d.get("party"), d.get("paid", 0))
    return jsonify(receipt.to_dict()), 201


### RESULTS ###
@bp.route("/elections/<key>/winner", methods=["POST"])
@signed_required
def resolve_winner(key):
    return jsonify(get_ledger().resolve_winner(g.caller, key).to_dict())


@bp.route("/elections/<key>/winner")
def get_winner(key):
    result = get_ledger().get_winners(key)
    if result is None:
        return jsonify({"key": key, "resolved": False})
    return jsonify(result.to_dict())


### OWNERSHIP ###
@bp.route("/ownership")
def get_ownership():
    return jsonify(get_ledger().get_ownership().to_dict())


@bp.route("/ownership/transfer", methods=["POST"])
@signed_required
def transfer_ownership():
    return jsonify(get_ledger().transfer_ownership(g.caller, payload().get("new_owner")).to_dict())


@bp.route("/ownership/accept", methods=["POST"])
@signed_required
def accept_ownership():
    return jsonify(get_ledger().accept_ownership(g.caller).to_dict())


@bp.route("/api/chain/<scope>")
def api_chain(scope):
    ledger = get_ledger()
    return jsonify({"valid": ledger.verify_audit_chain(scope), "chain": ledger.audit_log(scope)})


def handle_ledger_error(e: LedgerError):
    logger.warning("%s %s rejected: %s: %s", request.method, request.path, e.kind, e.message)
    return jsonify(e.to_dict()), HTTP_STATUS.get(e.kind, 400)


def create_app(ledger: Ledger = None, config_overrides: dict = None) -> Flask:
    app = Flask(__name__)
    app.config["SIGNATURE_MAX_AGE"] = config.SIGNATURE_MAX_AGE
    if config_overrides:
        app.config.update(config_overrides)
    app.config["NONCES"] = NonceCache(app.config["SIGNATURE_MAX_AGE"])
    if ledger is None:
        engine = make_engine(app.config.get("DATABASE_URL"))
        init_db(engine, owner=config.OWNER_ADDRESS)
        ledger = Ledger(make_session_factory(engine))
    app.config["LEDGER"] = ledger
    app.register_blueprint(bp)
    app.register_error_handler(LedgerError, handle_ledger_error)
    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_app().run(debug=True)
