# encryption.py - field encryption for stored account credentials
import base64
import binascii
import json
import logging
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

KEY_BYTES = 32
NONCE_BYTES = 12
LEGACY_IV_BYTES = 16

_HEX_KEY = re.compile(r'^[0-9a-fA-F]{64}$')
_B64_KEY = re.compile(r'^[A-Za-z0-9+/]{43}=*$')


class EncryptionError(Exception):
    pass


class DecryptionError(EncryptionError):
    pass


def load_encryption_key(raw):
    """Turn the configured ENCRYPTION_KEY into 32 raw key bytes.

    Accepts a 64-character hex string, a base64 string (padding optional), or
    any text that is at least 32 bytes long in UTF-8 (the first 32 bytes are
    used).
    """
    if not raw:
        raise EncryptionError('ENCRYPTION_KEY environment variable must be set')

    if isinstance(raw, bytes):
        key = raw
    else:
        trimmed = raw.strip()
        if _HEX_KEY.match(trimmed):
            key = bytes.fromhex(trimmed)
        elif _B64_KEY.match(trimmed):
            try:
                key = base64.b64decode(trimmed + '=' * (-len(trimmed) % 4))
            except binascii.Error as e:
                raise EncryptionError(f'ENCRYPTION_KEY could not be parsed: {e}')
        else:
            key = trimmed.encode('utf-8')

    if len(key) < KEY_BYTES:
        raise EncryptionError('ENCRYPTION_KEY must resolve to at least 32 bytes')
    return key[:KEY_BYTES]


def legacy_text_key(raw):
    """Key bytes earlier releases used: the first 32 characters of the setting as text."""
    if not raw or isinstance(raw, bytes):
        return None
    text = raw.strip().encode('utf-8')[:KEY_BYTES]
    return text if len(text) == KEY_BYTES else None


def _configured_key(key=None):
    if key is not None:
        return key
    if has_app_context():
        return current_app.config.get('ENCRYPTION_KEY')
    from config import ENCRYPTION_KEY
    return ENCRYPTION_KEY


def _resolve_key(key=None):
    return load_encryption_key(_configured_key(key))


def encrypt_value(text, key=None):
    """Encrypt text with AES-256-GCM. Returns ``nonceHex:cipherHex`` or None for empty input."""
    if not text:
        return None
    try:
        aead = AESGCM(_resolve_key(key))
        nonce = os.urandom(NONCE_BYTES)
        sealed = aead.encrypt(nonce, text.encode('utf-8'), None)
        return f"{nonce.hex()}:{sealed.hex()}"
    except EncryptionError:
        raise
    except Exception as e:
        logger.error(f"Encryption error: {e}")
        raise EncryptionError('Failed to encrypt data')


def _decrypt_legacy_cbc(key, iv, body):
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(body) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def _open_legacy(parts, key):
    iv = bytes.fromhex(parts[0])
    if len(parts) == 2:
        if len(iv) != LEGACY_IV_BYTES:
            raise DecryptionError('Invalid encrypted data format')
        return _decrypt_legacy_cbc(key, iv, bytes.fromhex(parts[1]))
    tag = bytes.fromhex(parts[1])
    body = bytes.fromhex(parts[2])
    return AESGCM(key).decrypt(iv, body + tag, None)


def decrypt_value(token, key=None):
    """Decrypt a value produced by :func:`encrypt_value`.

    Also reads the two legacy layouts (``ivHex:cipherHex`` with a 16 byte IV
    under AES-CBC, and ``ivHex:tagHex:cipherHex`` under GCM). Legacy values
    were sealed with the setting's first 32 characters as the key, so those
    are tried after the decoded key. Any malformed input, wrong key or
    tampered ciphertext raises DecryptionError.
    """
    if not token:
        return None
    try:
        raw = _configured_key(key)
        key_bytes = load_encryption_key(raw)
        parts = token.split(':')
        if len(parts) == 2 and len(parts[0]) == NONCE_BYTES * 2:
            plain = AESGCM(key_bytes).decrypt(bytes.fromhex(parts[0]), bytes.fromhex(parts[1]), None)
        elif len(parts) in (2, 3):
            candidates = [key_bytes]
            text_key = legacy_text_key(raw)
            if text_key and text_key != key_bytes:
                candidates.append(text_key)
            for i, candidate in enumerate(candidates):
                try:
                    plain = _open_legacy(parts, candidate)
                    break
                except (InvalidTag, ValueError):
                    if i == len(candidates) - 1:
                        raise
        else:
            raise DecryptionError('Invalid encrypted data format')
        return plain.decode('utf-8')
    except EncryptionError as e:
        logger.error(f"Decryption error: {e}")
        raise
    except (InvalidTag, ValueError, binascii.Error, UnicodeDecodeError) as e:
        logger.error(f"Decryption error: {type(e).__name__}")
        raise DecryptionError('Failed to decrypt data')


def encrypt_json(data, key=None):
    if data is None:
        return None
    return encrypt_value(json.dumps(data), key=key)


def decrypt_json(token, key=None):
    plain = decrypt_value(token, key=key)
    if plain is None:
        return None
    try:
        return json.loads(plain)
    except ValueError:
        raise DecryptionError('Decrypted payload is not valid JSON')
