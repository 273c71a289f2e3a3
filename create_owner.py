# create_owner.py
from db import make_engine, init_db, make_session_factory
from models import Ownership
from wallet import generate_keypair, address_from_public_key, is_zero_address
import config
import sys


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    engine = make_engine()
    init_db(engine)
    if argv:
        address = argv[0].strip()
    else:
        address = input("Owner address (leave empty to generate a new key): ").strip()
    if not address:
        priv, pub = generate_keypair()
        address = address_from_public_key(pub)
        print("Generated owner key. Store the private key safely:")
        print("  private:", priv)
        print("  public: ", pub)
    if is_zero_address(address):
        print("Owner address must not be the zero address.")
        return 1
    session = make_session_factory(engine)()
    o = session.query(Ownership).first()
    if o.owner and o.owner != address:
        print(f"Owner already set to {o.owner}; use the ownership transfer instead.")
        session.close()
        return 1
    o.owner = address
    session.commit()
    print("Owner recorded:", address, "on", config.DATABASE_URL.split("@")[-1])
    session.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
