"""Jeton bearer pour les routes /api/suppliers (exploitation, tests)."""
import sys
import time
from typing import Optional

from jose import jwt

from skyfare.core.config import Settings, settings as default_settings


def make_token(email: str, *, ttl_seconds: int = 3600 * 24, settings: Optional[Settings] = None) -> str:
    cfg = settings or default_settings
    now = int(time.time())
    payload = {"sub": email, "email": email.lower(), "iat": now, "exp": now + ttl_seconds}
    return jwt.encode(payload, cfg.AUTH_JWT_SECRET, algorithm=cfg.AUTH_JWT_ALG)


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        print("usage: python -m skyfare.utils.dev_token ops@example.com", file=sys.stderr)
        return 1
    print(make_token(argv[0]))
    return 0


if __name__ == "__main__":
    sys.exit(main())
