"""Ephemeral SSH keypairs.

Generates Ed25519 keypairs in OpenSSH encodings and derives the public half
of a user-supplied private key. Key material lives only in memory here; it is
written to disk solely by ``launchpad.remote.ssh.materialized_key``, which
destroys it before returning.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from launchpad.core.errors import KeyDerivationError, KeyGenerationError
from launchpad.core.logging import get_logger

_logger = get_logger("credentials.keys")

DEFAULT_KEY_COMMENT = "launchpad-ephemeral"


@dataclass(frozen=True)
class SshKeypair:
    """A private key and its public key, both in OpenSSH text encoding."""

    private_key: str = field(repr=False)
    public_key: str

    @property
    def fingerprint_hint(self) -> str:
        """Short, non-secret identifier for logs."""
        parts = self.public_key.split()
        body = parts[1] if len(parts) > 1 else self.public_key
        return body[-12:]


def generate_ephemeral_keypair(comment: str = DEFAULT_KEY_COMMENT) -> SshKeypair:
    """Generate a fresh Ed25519 keypair.

    Raises:
        KeyGenerationError: If the key cannot be generated or encoded.
    """
    try:
        key = ed25519.Ed25519PrivateKey.generate()
        private_text = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.OpenSSH,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")
        public_text = key.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        ).decode("ascii")
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise KeyGenerationError(f"could not generate ephemeral key: {exc}") from exc

    keypair = SshKeypair(private_key=private_text, public_key=f"{public_text} {comment}")
    _logger.debug("keys.generated", fingerprint=keypair.fingerprint_hint)
    return keypair


def derive_keypair(private_key: str) -> SshKeypair:
    """Pair a user-supplied private key with its OpenSSH public key.

    Accepts unencrypted OpenSSH-format keys, and PEM (PKCS#1/PKCS#8) keys.

    Raises:
        KeyDerivationError: If the text is not a usable unencrypted private key.
    """
    data = private_key.strip().encode("utf-8")
    if not data:
        raise KeyDerivationError("private key is empty")

    try:
        if b"OPENSSH PRIVATE KEY" in data:
            loaded = serialization.load_ssh_private_key(data, password=None)
        else:
            loaded = serialization.load_pem_private_key(data, password=None)
        public_text = loaded.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        ).decode("ascii")
    except TypeError as exc:
        # cryptography raises TypeError for passphrase-protected keys
        raise KeyDerivationError(f"private key is encrypted: {exc}") from exc
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise KeyDerivationError(f"invalid private key format: {exc}") from exc

    # ssh rejects key files without a trailing newline
    return SshKeypair(private_key=private_key.strip() + "\n", public_key=public_text)


__all__ = ["DEFAULT_KEY_COMMENT", "SshKeypair", "derive_keypair", "generate_ephemeral_keypair"]
