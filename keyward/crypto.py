"""
Crypto primitives — at-rest encryption, secret hashing, token generation.

Storage blobs use AES-256-GCM. The master key is a 32-byte random key stored
at $KEYWARD_DATA_DIR/.keyward-key (chmod 600), or derived from the
KEYWARD_ENCRYPTION_KEY passphrase when one is configured. Every blob gets a
fresh 12-byte nonce prepended to the ciphertext.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import stat
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from keyward.errors import DecryptionError

KEY_FILENAME = ".keyward-key"
NONCE_SIZE = 12
TAG_SIZE = 16

_cached_key: bytes | None = None


def init_master_key(data_dir: Path | str) -> Path:
    """Generate a new master key file. Returns the path. Skips if it already exists."""
    key_path = Path(data_dir) / KEY_FILENAME
    if key_path.exists():
        return key_path
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_bytes(secrets.token_bytes(32))
    key_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 600
    return key_path


def get_master_key(data_dir: Path | str | None = None, passphrase: str = "") -> bytes:
    """Resolve the master key (cached after first resolution).

    A configured passphrase wins over the key file so that several processes
    sharing one storage directory can be pointed at the same key via env.
    """
    global _cached_key
    if _cached_key is not None:
        return _cached_key

    if passphrase:
        _cached_key = derive_key(passphrase)
        return _cached_key

    if data_dir is None:
        from keyward.config import get_config

        data_dir = get_config().storage.path
    key_path = Path(data_dir) / KEY_FILENAME
    if not key_path.exists():
        raise FileNotFoundError(
            f"Master key not found at {key_path}. "
            "Run 'keyward init' or set KEYWARD_ENCRYPTION_KEY."
        )
    key = key_path.read_bytes()
    if len(key) != 32:
        raise ValueError(f"Master key must be 32 bytes, got {len(key)}")
    _cached_key = key
    return _cached_key


def reset_key_cache() -> None:
    """Clear the cached master key (for testing)."""
    global _cached_key
    _cached_key = None


def derive_key(passphrase: str) -> bytes:
    """Stretch an operator passphrase into a 32-byte AES key."""
    return hashlib.sha256(passphrase.encode("utf-8")).digest()


def encrypt(plaintext: str, master_key: bytes) -> bytes:
    """Encrypt with AES-256-GCM. Returns nonce (12 bytes) + ciphertext + tag (16 bytes)."""
    nonce = secrets.token_bytes(NONCE_SIZE)
    ciphertext = AESGCM(master_key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return nonce + ciphertext


def decrypt(data: bytes, master_key: bytes) -> str:
    """Decrypt nonce + ciphertext + tag back to plaintext.

    Raises DecryptionError for truncated blobs, tampered blobs and wrong keys.
    """
    if len(data) < NONCE_SIZE + TAG_SIZE:
        raise DecryptionError("Encrypted data too short")
    nonce = data[:NONCE_SIZE]
    try:
        plaintext = AESGCM(master_key).decrypt(nonce, data[NONCE_SIZE:], None)
    except (InvalidTag, ValueError) as e:
        raise DecryptionError(f"Cannot decrypt blob: {type(e).__name__}") from e
    return plaintext.decode("utf-8")


def hash_secret(secret: str) -> str:
    """One-way SHA-256 digest (hex) of a credential secret."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def safe_compare(a: str, b: str) -> bool:
    """Constant-time string comparison."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def generate_token(nbytes: int = 32) -> str:
    """Random hex token with ``nbytes`` of entropy."""
    return secrets.token_hex(nbytes)


def hmac_sha256(key: str | bytes, message: str) -> str:
    """Hex HMAC-SHA256 of ``message``."""
    if isinstance(key, str):
        key = key.encode("utf-8")
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).hexdigest()
