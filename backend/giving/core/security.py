"""決済トークンの暗号化 (AES-256-GCM)

保存形式: base64(nonce(12byte) + ciphertext)
用途ごとに associated data を分け、別カラムの暗号文を取り違えても復号できないようにする。
"""
import os
import base64
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from giving.core.config import settings

NONCE_SIZE = 12
PAYMENT_TOKEN_AAD = b"recurring_donation.payment_token"
API_KEY_AAD = None  # service_settings の既存データはAADなしで暗号化済み


def _get_key() -> bytes:
    """AESキーをバイト列で取得"""
    key_hex = settings.AES_KEY
    if not key_hex:
        raise ValueError("AES_KEY が設定されていません")
    return bytes.fromhex(key_hex)


def encrypt(plaintext: str, aad: bytes | None = API_KEY_AAD) -> str:
    aesgcm = AESGCM(_get_key())
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), aad)
    return base64.b64encode(nonce + ciphertext).decode("utf-8")


def decrypt(encrypted: str, aad: bytes | None = API_KEY_AAD) -> str:
    aesgcm = AESGCM(_get_key())
    data = base64.b64decode(encrypted)
    plaintext = aesgcm.decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], aad)
    return plaintext.decode("utf-8")


def encrypt_payment_token(token: str) -> str:
    """決済トークン → 保存用暗号文"""
    return encrypt(token, PAYMENT_TOKEN_AAD)


def decrypt_payment_token(encrypted: str) -> str:
    """保存用暗号文 → 決済トークン"""
    return decrypt(encrypted, PAYMENT_TOKEN_AAD)


def mask_token(token: str) -> str:
    """ログ・レスポンス用に決済トークンを伏せ字化 (末尾4文字のみ残す)"""
    if not token:
        return ""
    if len(token) <= 4:
        return "*" * len(token)
    return "*" * (len(token) - 4) + token[-4:]
