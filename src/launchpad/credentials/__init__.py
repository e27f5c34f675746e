"""Ephemeral SSH key material and service credential lookup."""

from launchpad.credentials.keys import SshKeypair, derive_keypair, generate_ephemeral_keypair
from launchpad.credentials.store import CredentialStore

__all__ = ["CredentialStore", "SshKeypair", "derive_keypair", "generate_ephemeral_keypair"]
