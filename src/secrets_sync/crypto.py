"""Passphrase-based authenticated encryption of group archives.

Layout of a sealed blob:

* ``salt`` -- 16 random bytes fed to PBKDF2-HMAC-SHA256.
* ``iv`` -- 16 random bytes, the AES-CBC initialization vector.
* ``ciphertext`` -- ``AES-256-CBC(PKCS7(plaintext)) || HMAC-SHA256(iv || body)``.

PBKDF2 derives 64 bytes per blob: the first 32 are the AES key, the last 32
the HMAC key. The MAC is checked before any decryption is attempted.
"""

import logging
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .constants import (
    APP_NAME,
    DEFAULT_KDF_ITERATIONS,
    IV_SIZE,
    KEY_SIZE,
    MAC_SIZE,
    MIN_KDF_ITERATIONS,
    SALT_SIZE,
)
from .errors import DecryptionError

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class Blob:
    """The encrypted artifact stored remotely for one group.

    Attributes:
        ciphertext (bytes): AES-CBC body followed by its HMAC tag.
        salt (bytes): PBKDF2 salt. Not secret.
        iv (bytes): AES-CBC initialization vector. Not secret.
    """

    ciphertext: bytes
    salt: bytes
    iv: bytes


def derive_keys(
    passphrase: str, salt: bytes, iterations: int = DEFAULT_KDF_ITERATIONS
) -> tuple[bytes, bytes]:
    """Derives the (encryption key, MAC key) pair for a passphrase and salt.

    Raises:
        ValueError: If `iterations` is below the accepted minimum.
    """
    if iterations < MIN_KDF_ITERATIONS:
        raise ValueError(
            f"PBKDF2 iterations must be at least {MIN_KDF_ITERATIONS}, got {iterations}"
        )
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE + MAC_SIZE,
        salt=salt,
        iterations=iterations,
    )
    material = kdf.derive(passphrase.encode("utf-8"))
    return material[:KEY_SIZE], material[KEY_SIZE:]


def _mac(mac_key: bytes, iv: bytes, body: bytes) -> hmac.HMAC:
    h = hmac.HMAC(mac_key, hashes.SHA256())
    h.update(iv)
    h.update(body)
    return h


def encrypt(
    plaintext: bytes, passphrase: str, iterations: int = DEFAULT_KDF_ITERATIONS
) -> Blob:
    """Encrypts bytes under a passphrase with a fresh salt and IV.

    Args:
        plaintext (bytes): The data to protect.
        passphrase (str): The user's passphrase. Never leaves this process.
        iterations (int): PBKDF2 iteration count.

    Returns:
        Blob: The sealed ciphertext together with its salt and IV.
    """
    salt = os.urandom(SALT_SIZE)
    iv = os.urandom(IV_SIZE)
    enc_key, mac_key = derive_keys(passphrase, salt, iterations)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()

    encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).encryptor()
    body = encryptor.update(padded) + encryptor.finalize()
    tag = _mac(mac_key, iv, body).finalize()

    logger.debug(f"Encrypted {len(plaintext)} bytes into {len(body)} byte body")
    return Blob(ciphertext=body + tag, salt=salt, iv=iv)


def decrypt(
    blob: Blob, passphrase: str, iterations: int = DEFAULT_KDF_ITERATIONS
) -> bytes:
    """Verifies and decrypts a blob.

    Args:
        blob (Blob): The sealed artifact.
        passphrase (str): The passphrase used at encryption time.
        iterations (int): PBKDF2 iteration count used at encryption time.

    Returns:
        bytes: The original plaintext.

    Raises:
        DecryptionError: For a wrong passphrase, tampered or truncated data,
            or bad padding. The message never says which.
    """
    block_bytes = algorithms.AES.block_size // 8
    body, tag = blob.ciphertext[:-MAC_SIZE], blob.ciphertext[-MAC_SIZE:]
    if (
        len(blob.iv) != IV_SIZE
        or len(blob.ciphertext) < MAC_SIZE + block_bytes
        or len(body) % block_bytes
    ):
        raise DecryptionError()

    enc_key, mac_key = derive_keys(passphrase, blob.salt, iterations)
    try:
        _mac(mac_key, blob.iv, body).verify(tag)
    except InvalidSignature:
        raise DecryptionError() from None

    try:
        decryptor = Cipher(algorithms.AES(enc_key), modes.CBC(blob.iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        raise DecryptionError() from None
