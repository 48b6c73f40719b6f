"""
FastAPI Depends.

Сюда выносим:
- проверку авторизации (X-API-Key)
- аудит решений авторизации
- маппинг AppError -> HTTPException
"""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from digest_orchestrator.common.errors import AppError, ErrCode, UnauthorizedError
from digest_orchestrator.common.logging import get_project_logger
from digest_orchestrator.common.security import AuthContext, require_auth

log = get_project_logger()

_HTTP_STATUS_BY_CODE = {
    ErrCode.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrCode.SUMMARIZER_PROVIDER_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrCode.AUDIO_PROVIDER_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrCode.DIGEST_SOURCE_ERROR: status.HTTP_502_BAD_GATEWAY,
}


def http_error(e: AppError) -> HTTPException:
    return HTTPException(
        status_code=_HTTP_STATUS_BY_CODE.get(e.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"code": e.code, "message": e.message, "details": e.details or {}},
    )


def _request_meta(request: Request | None) -> tuple[str, str, str | None]:
    if request is None:
        return "unknown", "UNKNOWN", None
    endpoint = request.url.path
    method = request.method
    client_ip = request.client.host if request.client else None
    return endpoint, method, client_ip


def _audit_allow(*, request: Request | None, ctx: AuthContext, reason: str) -> None:
    endpoint, method, client_ip = _request_meta(request)
    log.info(
        "security_audit_allow",
        extra={
            "payload": {
                "endpoint": endpoint,
                "method": method,
                "subject": ctx.subject,
                "auth_type": ctx.auth_type,
                "reason": reason,
                "client_ip": client_ip,
            }
        },
    )


def _audit_deny(
    *,
    request: Request | None,
    status_code: int,
    reason: str,
    error_code: str,
    auth_type: str | None = None,
    subject: str | None = None,
) -> None:
    endpoint, method, client_ip = _request_meta(request)
    log.warning(
        "security_audit_deny",
        extra={
            "payload": {
                "endpoint": endpoint,
                "method": method,
                "status_code": status_code,
                "reason": reason,
                "error_code": error_code,
                "auth_type": auth_type or "unknown",
                "subject": subject or "unknown",
                "client_ip": client_ip,
            }
        },
    )


def _authenticate_request(*, x_api_key: str | None, request: Request | None) -> AuthContext:
    try:
        return require_auth(x_api_key=x_api_key)
    except UnauthorizedError as e:
        _audit_deny(
            request=request,
            status_code=status.HTTP_401_UNAUTHORIZED,
            reason=e.message,
            error_code=e.code,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": e.code, "message": e.message},
        ) from e


def auth_dep(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> AuthContext:
    """
    Проверка авторизации для HTTP.
    """
    ctx = _authenticate_request(x_api_key=x_api_key, request=request)
    _audit_allow(request=request, ctx=ctx, reason="auth_ok")
    return ctx


def service_auth_dep(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> AuthContext:
    """
    Только сервисные ключи (вебхуки внешних воркеров, admin). В AUTH_MODE=none пропускаем.
    """
    ctx = _authenticate_request(x_api_key=x_api_key, request=request)
    if ctx.auth_type in {"service_api_key", "none"}:
        _audit_allow(request=request, ctx=ctx, reason=ctx.auth_type)
        return ctx

    _audit_deny(
        request=request,
        status_code=status.HTTP_403_FORBIDDEN,
        reason="not_service_identity",
        error_code=ErrCode.FORBIDDEN,
        auth_type=ctx.auth_type,
        subject=ctx.subject,
    )
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": ErrCode.FORBIDDEN, "message": "Требуется service-авторизация"},
    )
