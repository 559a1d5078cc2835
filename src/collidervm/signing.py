"""
Signer Keys and Challenge Messages

Stage programs open with OP_CHECKSIGVERIFY over a 32-byte x-only key, so
signers hold secp256k1 keys and produce BIP340 Schnorr signatures over a
32-byte challenge. Aggregating several signers into one key is left to the
surrounding system; each SignerKey here signs alone.
"""

from dataclasses import dataclass
from typing import List, Union
import hashlib

from coincurve import PrivateKey, PublicKeyXOnly


def challenge_message(locking_script, amount_sat: int) -> bytes:
    """
    Minimal sighash for demonstration.

    SHA256(script_bytes || LE64(amount_sat)); locking_script may be raw
    bytes or anything with to_bytes().
    """
    script_bytes = locking_script if isinstance(locking_script, (bytes, bytearray)) else locking_script.to_bytes()
    h = hashlib.sha256()
    h.update(script_bytes)
    h.update(amount_sat.to_bytes(8, 'little'))
    return h.digest()


def verify_signature(pubkey: bytes, signature: bytes, message: bytes) -> bool:
    """BIP340 verification. Malformed keys or signatures verify as False."""
    if len(pubkey) != 32 or len(signature) != 64 or len(message) != 32:
        return False
    try:
        return PublicKeyXOnly(pubkey).verify(signature, message)
    except ValueError:
        # Not an x coordinate on the curve
        return False


@dataclass(frozen=True)
class SignerKey:
    """One committee member's signing key."""
    id: int
    private_key: PrivateKey

    @classmethod
    def generate(cls, signer_id: int = 0) -> 'SignerKey':
        return cls(signer_id, PrivateKey())

    @classmethod
    def from_secret(cls, secret: Union[bytes, str], signer_id: int = 0) -> 'SignerKey':
        """Build from a 32-byte secret (raw or hex)."""
        if isinstance(secret, str):
            secret = bytes.fromhex(secret)
        return cls(signer_id, PrivateKey(secret))

    @property
    def xonly_pubkey(self) -> bytes:
        """32-byte BIP340 public key pushed by the signature-check fragment."""
        return self.private_key.public_key_xonly.format()

    def sign(self, message: bytes) -> bytes:
        """64-byte BIP340 signature over a 32-byte message."""
        if len(message) != 32:
            raise ValueError(f"Challenge must be 32 bytes, got {len(message)}")
        return self.private_key.sign_schnorr(message)


def generate_signers(n: int) -> List[SignerKey]:
    """Fresh keys for a committee of n signers."""
    return [SignerKey.generate(i) for i in range(n)]
