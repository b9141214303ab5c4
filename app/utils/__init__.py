from app.utils.login_security import check_lockout, rate_limit, register_login_attempt

__all__ = [
    "rate_limit",
    "check_lockout",
    "register_login_attempt",
]
