"""Credential vault: encrypted, append-only log of every generated sub-account.

Each line of the log is one independently decryptable record of
``{"address", "privateKey", "createdAt"}``. A record is flushed and fsynced
before the orchestrator moves any funds to its address.
"""

import base64
import binascii
import hashlib
import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from tradeloop.config import settings
from tradeloop.errors import ConfigError, DecodeError, PersistenceError
from tradeloop.services.accounts import Account

logger = logging.getLogger(__name__)

_vault: "WalletVault | None" = None


def serialize_wallet(account: Account) -> str:
    return json.dumps(
        {
            "address": account.address,
            "privateKey": account.private_key,
            "createdAt": account.created_at.isoformat(),
        },
        separators=(",", ":"),
    )


def deserialize_wallet(text: str) -> Account:
    try:
        data = json.loads(text)
        return Account(
            address=data["address"],
            private_key=data["privateKey"],
            created_at=datetime.fromisoformat(data["createdAt"]),
        )
    except (ValueError, KeyError, TypeError) as e:
        raise DecodeError(f"malformed wallet record: {e}") from e


class FernetCipher:
    """Fernet (AES-128-CBC + HMAC) with a fresh random IV per record."""

    def __init__(self, secret: str):
        self._fernet = Fernet(self._derive_key(secret))

    @staticmethod
    def _derive_key(secret: str) -> bytes:
        raw = secret.strip().encode()
        try:
            if len(base64.urlsafe_b64decode(raw)) == 32:
                return raw
        except (binascii.Error, ValueError):
            pass
        return base64.urlsafe_b64encode(hashlib.sha256(raw).digest())

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.strip().encode()).decode()
        except (InvalidToken, ValueError) as e:
            raise DecodeError("invalid ciphertext or wrong encryption key") from e


class LegacyCbcCipher:
    """AES-256-CBC with key and IV both derived from the secret, hex encoded.

    Every record shares one IV, so equal plaintexts give equal ciphertexts.
    Only kept to read and extend wallet logs written in this format.
    """

    def __init__(self, secret: str):
        self._key = hashlib.sha256(secret.encode()).hexdigest()[:32].encode()
        self._iv = hashlib.md5(secret.encode()).hexdigest()[:16].encode()

    def _cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self._key), modes.CBC(self._iv))

    def encrypt(self, plaintext: str) -> str:
        padder = padding.PKCS7(128).padder()
        padded = padder.update(plaintext.encode()) + padder.finalize()
        encryptor = self._cipher().encryptor()
        return (encryptor.update(padded) + encryptor.finalize()).hex()

    def decrypt(self, ciphertext: str) -> str:
        try:
            data = bytes.fromhex(ciphertext.strip())
            decryptor = self._cipher().decryptor()
            padded = decryptor.update(data) + decryptor.finalize()
            unpadder = padding.PKCS7(128).unpadder()
            return (unpadder.update(padded) + unpadder.finalize()).decode()
        except (ValueError, UnicodeDecodeError) as e:
            raise DecodeError("invalid ciphertext or wrong hash secret") from e


def make_cipher(secret: str, vault_format: str = "fernet"):
    if not secret:
        raise ConfigError("TL_ENCRYPTION_KEY not set; the wallet vault cannot encrypt new accounts")
    if vault_format == "legacy-cbc":
        logger.warning("Wallet vault uses legacy AES-CBC with a fixed IV")
        return LegacyCbcCipher(secret)
    if vault_format == "fernet":
        return FernetCipher(secret)
    raise ConfigError(f"unknown vault format: {vault_format}")


class WalletVault:
    """Encrypts account secrets and appends them to a newline-delimited log."""

    def __init__(self, path: str | Path, cipher):
        self.path = Path(path)
        self._cipher = cipher
        self._lock = threading.Lock()

    def encrypt(self, account: Account) -> str:
        return self._cipher.encrypt(serialize_wallet(account))

    def decrypt(self, ciphertext: str) -> Account:
        return deserialize_wallet(self._cipher.decrypt(ciphertext))

    def append(self, account: Account) -> None:
        """Durably append one record; returns only once it is on disk."""
        line = self.encrypt(account) + "\n"
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise PersistenceError(f"failed to append wallet {account.address} to {self.path}: {e}") from e
        logger.info(f"Vault: stored wallet {account.address}")

    def load_all(self) -> list[Account]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = [line.strip() for line in f]
        except FileNotFoundError:
            return []
        except OSError as e:
            raise PersistenceError(f"failed to read wallet log {self.path}: {e}") from e
        return [self.decrypt(line) for line in lines if line]


def get_vault() -> WalletVault:
    global _vault
    if _vault is None:
        cipher = make_cipher(settings.encryption_key, settings.vault_format)
        _vault = WalletVault(settings.wallet_log_path, cipher)
    return _vault
