from __future__ import annotations

from typing import Optional

import jwt

ALGORITHM = 'HS256'


def issue_token(user_id: str, secret: str) -> str:
    return jwt.encode({'userId': user_id}, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> Optional[str]:
    """Return the user id carried by ``token``, or None when it does not verify."""
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.InvalidTokenError:
        return None
    user_id = payload.get('userId')
    if not user_id:
        return None
    return str(user_id)


def bearer_token(header_value: str | None) -> Optional[str]:
    if not header_value:
        return None
    scheme, _, token = header_value.strip().partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()
