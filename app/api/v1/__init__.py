from fastapi import APIRouter

from app.api.v1.routers import (
    admin,
    applications,
    audit_logs,
    auth,
    calculator,
    chat,
    dsa,
    email,
    files,
    health,
    meta,
    notifications,
    payments,
    settings,
    statistics,
    support,
    users,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(meta.router)
api_router.include_router(auth.router)
api_router.include_router(users.router)
api_router.include_router(applications.router)
api_router.include_router(dsa.router)
api_router.include_router(files.router)
api_router.include_router(chat.router)
api_router.include_router(chat.messages_router)
api_router.include_router(notifications.router)
api_router.include_router(support.router)
api_router.include_router(payments.router)
api_router.include_router(statistics.router)
api_router.include_router(calculator.router)
api_router.include_router(email.router)
api_router.include_router(admin.router)
api_router.include_router(settings.router)
api_router.include_router(audit_logs.router)

__all__ = ["api_router"]
