import hashlib
from typing import Optional

from fastapi import HTTPException, status, Request
from jose import jwe, jwt, JWTError
from jose.exceptions import JOSEError
from ..core.config import settings

def decode_bearer_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.AUTH_JWT_SECRET, algorithms=[settings.AUTH_JWT_ALG])
        return payload
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

async def get_current_user_email(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    token = auth.split(" ", 1)[1].strip()
    payload = decode_bearer_token(token)
    email = payload.get("email") or payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Token missing email")
    return email.lower()


class CredentialError(Exception):
    pass


class CredentialCipher:
    """
    Chiffrement au repos des credentials fournisseurs.
    JWE compact, alg=dir / enc=A256GCM, clé dérivée (sha256) de CREDENTIALS_KEY.
    """

    def __init__(self, secret: Optional[str] = None) -> None:
        raw = (secret or settings.CREDENTIALS_KEY).encode("utf-8")
        self._key = hashlib.sha256(raw).digest()

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        token = jwe.encrypt(value.encode("utf-8"), self._key, algorithm="dir", encryption="A256GCM")
        return token.decode("ascii") if isinstance(token, bytes) else token

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        try:
            return jwe.decrypt(token, self._key).decode("utf-8")
        except (JOSEError, ValueError) as e:
            # on ne remonte jamais le contenu chiffré
            raise CredentialError("unable to decrypt supplier credential") from e


cipher = CredentialCipher()
