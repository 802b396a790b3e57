import time

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

CSRF_HEADER = "X-CSRF-Token"


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="moneytrail-csrf")


def issue_csrf_token(user_id: int, max_age_hours: int = 2) -> str:
    issued = int(time.time())
    return _serializer().dumps(
        {"u": user_id, "ts": issued, "exp": issued + max_age_hours * 3600}
    )


def verify_csrf_token(token: str, user_id: int, max_age_hours: int = 2) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return False
    if data.get("u") != user_id:
        return False
    return int(time.time()) <= int(data.get("exp", 0))
