"""Client-side password encryption used by the CAS login form.

The login page ships a per-session salt in ``#pwdEncryptSalt``. The browser
script prepends 64 random characters to the password, PKCS#7-pads it and
encrypts with AES-128-CBC using the salt as key and a random 16-character IV.
The server discards the first 64 characters after decrypting, and the IV is
never transmitted.
"""

import base64
import secrets

from Crypto.Cipher import AES
from Crypto.Util.Padding import pad

from .exceptions import MissingSaltError

# Same alphabet as the portal's encrypt.js (no 0/O, 1/l/I, etc.)
AES_CHARSET = "ABCDEFGHJKMNPQRSTWXYZabcdefhijkmnprstwxyz2345678"
PREFIX_LENGTH = 64
IV_LENGTH = 16


def random_string(length: int) -> str:
    """Draw ``length`` characters from AES_CHARSET with a CSPRNG."""
    if length <= 0:
        return ""
    return "".join(secrets.choice(AES_CHARSET) for _ in range(length))


def encrypt_password(
    password: str,
    salt: str,
    *,
    prefix: str | None = None,
    iv: str | None = None,
) -> str:
    """Encrypt a password the way the CAS login page does.

    Args:
        password: Raw password
        salt: Value of the login page's ``pwdEncryptSalt`` element (16 bytes)
        prefix: Fixed 64-char prefix. Random when omitted.
        iv: Fixed 16-char IV. Random when omitted.

    Returns:
        Base64 ciphertext for the ``password`` form field.

    Raises:
        MissingSaltError: If salt is empty.
        ValueError: If the salt or IV is not exactly 16 bytes.
    """
    if not salt:
        raise MissingSaltError("missing salt")

    key = salt.encode("utf-8")
    if len(key) != 16:
        raise ValueError(f"salt must be 16 bytes, got {len(key)}")

    if prefix is None:
        prefix = random_string(PREFIX_LENGTH)
    if iv is None:
        iv = random_string(IV_LENGTH)
    iv_bytes = iv.encode("utf-8")
    if len(iv_bytes) != IV_LENGTH:
        raise ValueError(f"iv must be {IV_LENGTH} bytes, got {len(iv_bytes)}")

    # Padding is applied here, the cipher itself runs unpadded
    plain = pad((prefix + password).encode("utf-8"), AES.block_size, style="pkcs7")
    cipher = AES.new(key, AES.MODE_CBC, iv_bytes)
    return base64.b64encode(cipher.encrypt(plain)).decode("ascii")
