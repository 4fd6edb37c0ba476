import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Domain error carrying the HTTP status it maps to."""

    status_code = 500
    default_message = "Ocurrió un error inesperado."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def name(self) -> str:
        return self.__class__.__name__


class BadRequestError(AppError):
    status_code = 400
    default_message = "Solicitud inválida."


class UnauthorizedError(AppError):
    status_code = 401
    default_message = "No estás autenticado."


class ForbiddenError(AppError):
    status_code = 403
    default_message = "No tienes permisos para acceder a esta ruta."


class NotFoundError(AppError):
    status_code = 404
    default_message = "Recurso no encontrado."


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflicto con el estado actual del recurso."


class InternalServerError(AppError):
    status_code = 500


_STATUS_ERRORS = {
    400: BadRequestError,
    401: UnauthorizedError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
}


def _body(error: AppError, **extra) -> dict:
    return {"error": error.name, "message": error.message, **extra}


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=_body(exc), headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    error = BadRequestError("Datos de entrada inválidos.")
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content=_body(error, details=details))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    error_cls = _STATUS_ERRORS.get(exc.status_code)
    if error_cls is None:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "HTTPError", "message": str(exc.detail)},
        )
    return JSONResponse(status_code=exc.status_code, content=_body(error_cls(str(exc.detail))))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_body(InternalServerError()))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
