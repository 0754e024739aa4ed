"""AES-256-GCM sealing for guest contact fields stored on bookings."""

import base64
import json
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from backend.core import config

logger = logging.getLogger(__name__)

IV_BYTES = 12
TAG_BYTES = 16


def _get_key(raw_key: str | None = None) -> bytes | None:
    key = config.MESSAGE_ENCRYPTION_KEY if raw_key is None else raw_key
    if not key or len(key) < 32:
        return None
    return key[:32].encode('utf-8')


def encrypt_text(plain: str, raw_key: str | None = None) -> dict:
    key = _get_key(raw_key)
    if key is None:
        return {'ciphertext': plain, 'iv': None, 'tag': None, 'encrypted': False}

    iv = os.urandom(IV_BYTES)
    sealed = AESGCM(key).encrypt(iv, plain.encode('utf-8'), None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return {
        'ciphertext': base64.b64encode(ciphertext).decode('ascii'),
        'iv': base64.b64encode(iv).decode('ascii'),
        'tag': base64.b64encode(tag).decode('ascii'),
        'encrypted': True,
    }


def decrypt_text(envelope, raw_key: str | None = None):
    """Open an envelope produced by :func:`encrypt_text`.

    Anything that is not a complete envelope is returned unchanged. A complete
    envelope that fails authentication yields ``None``.
    """
    key = _get_key(raw_key)
    if key is None:
        return envelope
    if not isinstance(envelope, dict) or not all(envelope.get(part) for part in ('ciphertext', 'iv', 'tag')):
        return envelope

    try:
        iv = base64.b64decode(envelope['iv'])
        sealed = base64.b64decode(envelope['ciphertext']) + base64.b64decode(envelope['tag'])
        return AESGCM(key).decrypt(iv, sealed, None).decode('utf-8')
    except (InvalidTag, ValueError):
        logger.exception('Failed to decrypt guest field')
        return None


def seal_field(value: str | None, raw_key: str | None = None) -> str | None:
    if not value:
        return None

    envelope = encrypt_text(str(value), raw_key)
    if envelope['encrypted']:
        return json.dumps(envelope)
    return str(value)


def open_field(stored: str | None, raw_key: str | None = None) -> str | None:
    if not stored:
        return stored

    try:
        envelope = json.loads(stored)
    except ValueError:
        return stored
    if not isinstance(envelope, dict):
        return stored

    opened = decrypt_text(envelope, raw_key)
    if isinstance(opened, str) and opened:
        return opened
    return stored
