from __future__ import annotations

import time
from typing import Dict, Optional

from billpay.utils.auth import _sign_jwt

TEST_SECRET = "test-secret"


def mint_token(
    sub: str,
    secret: str = TEST_SECRET,
    aud: Optional[str] = "authenticated",
    ttl: int = 3600,
    **claims,
) -> str:
    payload = {"sub": sub, "exp": int(time.time()) + ttl, **claims}
    if aud is not None:
        payload["aud"] = aud
    return _sign_jwt(payload, secret)


def bearer(sub: str, **kw) -> Dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(sub, **kw)}"}
