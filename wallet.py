# wallet.py
from ecdsa import SigningKey, VerifyingKey, SECP256k1, BadSignatureError
from ecdsa.util import sigdecode_string
from ecdsa.keys import MalformedPointError, BadDigestError
import hashlib
import logging
import config

logger = logging.getLogger(__name__)


def generate_keypair():
    """
    Returns (private_hex, public_hex_uncompressed)
    public_hex has leading '04' + X(32) + Y(32) (hex) which is compatible with elliptic.js uncompressed keys.
    """
    sk = SigningKey.generate(curve=SECP256k1)
    vk = sk.get_verifying_key()
    priv_hex = sk.to_string().hex()
    pub_hex = "04" + vk.to_string().hex()
    return priv_hex, pub_hex


def _public_key_bytes(public_key_hex: str) -> bytes:
    vk_bytes = bytes.fromhex(public_key_hex)
    # handle uncompressed prefix 0x04
    if len(vk_bytes) == 65 and vk_bytes[0] == 4:
        vk_bytes = vk_bytes[1:]
    if len(vk_bytes) != 64:
        raise ValueError("public key must be 64 bytes X||Y, optionally prefixed with 04")
    return vk_bytes


def address_from_public_key(public_key_hex: str) -> str:
    """Opaque account address: '0x' + the last 20 bytes of sha256(X||Y)."""
    digest = hashlib.sha256(_public_key_bytes(public_key_hex)).digest()
    return "0x" + digest[-20:].hex()


def is_zero_address(address: str) -> bool:
    return not address or address.lower() == config.ZERO_ADDRESS


def sign_message_hex(private_key_hex: str, message) -> str:
    """
    Sign the plaintext message (str or bytes).
    The message is hashed with sha256 and the raw r||s signature is returned as hex.
    """
    if isinstance(message, str):
        message = message.encode()
    sk = SigningKey.from_string(bytes.fromhex(private_key_hex), curve=SECP256k1)
    msg_hash = hashlib.sha256(message).digest()
    signature = sk.sign_digest(msg_hash)
    return signature.hex()


def verify_signature_hex(public_key_hex: str, message_hash_hex: str, signature_hex: str) -> bool:
    """
    Verify a signature where:
      - public_key_hex: either '04'+X+Y hex (uncompressed) or X+Y (no prefix)
      - message_hash_hex: sha256 digest hex
      - signature_hex: either raw r||s hex (128 chars) produced by elliptic.js or a DER hex signature.
    Returns True if valid, False otherwise.
    """
    try:
        vk = VerifyingKey.from_string(_public_key_bytes(public_key_hex), curve=SECP256k1)
        msg_hash_bytes = bytes.fromhex(message_hash_hex)
        sig_bytes = bytes.fromhex(signature_hex)

        if len(sig_bytes) == 64:
            return vk.verify_digest(sig_bytes, msg_hash_bytes, sigdecode=sigdecode_string)
        # otherwise assume DER-encoded signature
        return vk.verify_digest(sig_bytes, msg_hash_bytes)
    except BadSignatureError:
        return False
    except (ValueError, MalformedPointError, BadDigestError) as e:
        # bad key format, hex decode, malformed DER
        logger.warning("Signature verification error: %s", e)
        return False
