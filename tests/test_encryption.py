import base64
import os

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from encryption import (
    EncryptionError, DecryptionError, load_encryption_key, encrypt_value, decrypt_value,
    encrypt_json, decrypt_json
)


@pytest.mark.parametrize('plain', ['hunter2', 'pässwörd with spaces', 'x' * 500, 'a:b:c'])
def test_round_trip(key, plain):
    assert decrypt_value(encrypt_value(plain, key=key), key=key) == plain


def test_output_format_and_fresh_nonce(key):
    first = encrypt_value('same secret', key=key)
    second = encrypt_value('same secret', key=key)
    assert first != second
    nonce, body = first.split(':')
    assert len(bytes.fromhex(nonce)) == 12
    # ciphertext plus the 16 byte tag
    assert len(bytes.fromhex(body)) == len('same secret') + 16


def test_empty_values_pass_through(key):
    assert encrypt_value('', key=key) is None
    assert encrypt_value(None, key=key) is None
    assert decrypt_value(None, key=key) is None


def test_wrong_key_fails_closed(key):
    token = encrypt_value('secret', key=key)
    with pytest.raises(DecryptionError):
        decrypt_value(token, key=os.urandom(32))


def test_tampered_ciphertext_fails_closed(key):
    nonce, body = encrypt_value('secret', key=key).split(':')
    flipped = format(int(body[:2], 16) ^ 0x01, '02x') + body[2:]
    with pytest.raises(DecryptionError):
        decrypt_value(f'{nonce}:{flipped}', key=key)


@pytest.mark.parametrize('token', ['not-encrypted', 'zz:yy', 'a:b:c:d', 'abcd:1234'])
def test_malformed_input_fails_closed(key, token):
    with pytest.raises(DecryptionError):
        decrypt_value(token, key=key)


def test_reads_legacy_cbc_values(key):
    iv = os.urandom(16)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(b'legacy secret') + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    body = encryptor.update(padded) + encryptor.finalize()

    assert decrypt_value(f'{iv.hex()}:{body.hex()}', key=key) == 'legacy secret'


def test_reads_legacy_gcm_with_detached_tag(key):
    iv = os.urandom(16)
    sealed = AESGCM(key).encrypt(iv, b'detached tag', None)
    body, tag = sealed[:-16], sealed[-16:]

    assert decrypt_value(f'{iv.hex()}:{tag.hex()}:{body.hex()}', key=key) == 'detached tag'


def test_key_formats():
    raw = os.urandom(32)
    assert load_encryption_key(raw.hex()) == raw
    assert load_encryption_key(base64.b64encode(raw).decode()) == raw
    assert load_encryption_key('p' * 40) == b'p' * 32


@pytest.mark.parametrize('raw', ['', None, 'too-short-key'])
def test_unusable_keys_rejected(raw):
    with pytest.raises(EncryptionError):
        load_encryption_key(raw)


def test_json_payloads(key):
    payload = {'accountEmail': 'a@b.test', 'profiles': [{'profileName': 'Kids', 'pin': '1234'}]}
    token = encrypt_json(payload, key=key)
    assert 'Kids' not in token
    assert decrypt_json(token, key=key) == payload


def test_uses_app_key_inside_app_context(app):
    with app.app_context():
        token = encrypt_value('from config')
        assert decrypt_value(token) == 'from config'
        assert decrypt_value(token, key=app.config['ENCRYPTION_KEY']) == 'from config'


def test_unpadded_base64_key():
    raw = os.urandom(32)
    assert load_encryption_key(base64.b64encode(raw).decode().rstrip('=')) == raw
    assert len(load_encryption_key('a' * 43)) == 32


def test_unpadded_base64_key_round_trip():
    token = encrypt_value('still readable', key='b' * 43)
    assert decrypt_value(token, key='b' * 43) == 'still readable'


def test_startup_check_accepts_unpadded_base64_key():
    from config import validate_config
    problems = validate_config({'SECRET_KEY': 'set', 'ENCRYPTION_KEY': 'a' * 43})
    assert not any('ENCRYPTION_KEY' in p for p in problems)


def test_app_starts_with_unpadded_base64_key(tmp_path):
    from app import create_app
    app = create_app({'TESTING': True, 'INIT_DB': False, 'ENCRYPTION_KEY': 'a' * 43,
                      'UPLOAD_FOLDER': str(tmp_path)})
    with app.app_context():
        assert decrypt_value(encrypt_value('ok')) == 'ok'


def test_legacy_gcm_sealed_with_text_of_hex_key():
    hex_key = os.urandom(32).hex()
    iv = os.urandom(16)
    sealed = AESGCM(hex_key[:32].encode()).encrypt(iv, b'{"accountEmail": "a@b.test"}', None)
    body, tag = sealed[:-16], sealed[-16:]

    token = f'{iv.hex()}:{tag.hex()}:{body.hex()}'
    assert decrypt_json(token, key=hex_key) == {'accountEmail': 'a@b.test'}


def test_legacy_cbc_sealed_with_text_of_base64_key():
    b64_key = base64.b64encode(os.urandom(32)).decode()
    iv = os.urandom(16)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(b'old password') + padder.finalize()
    encryptor = Cipher(algorithms.AES(b64_key[:32].encode()), modes.CBC(iv)).encryptor()
    body = encryptor.update(padded) + encryptor.finalize()

    assert decrypt_value(f'{iv.hex()}:{body.hex()}', key=b64_key) == 'old password'


def test_new_values_do_not_fall_back_to_text_key():
    hex_key = os.urandom(32).hex()
    token = encrypt_value('secret', key=hex_key[:32].encode())
    with pytest.raises(DecryptionError):
        decrypt_value(token, key=hex_key)
