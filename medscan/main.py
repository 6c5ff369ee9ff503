# medscan/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from medscan.config import get_settings
from medscan.errors import (
    CameraNotReadyError,
    IntakeValidationError,
    IntegrationError,
    InvalidTransitionError,
    MedscanError,
)
from medscan.logging_config import configure_logging
from medscan.services import init_db
from medscan.api.routes import router as api_router, _sessions


settings = get_settings()

app = FastAPI(title="MedScan Intake API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",")],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


@app.on_event("startup")
def on_startup() -> None:
    configure_logging(settings.log_level)
    init_db()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    for controller in list(_sessions.values()):
        await controller.close()
    _sessions.clear()


@app.exception_handler(MedscanError)
async def medscan_error_handler(request: Request, exc: MedscanError) -> JSONResponse:
    # Only the operator-facing message leaves the service.
    body = {"detail": exc.user_message}
    if isinstance(exc, IntakeValidationError):
        status, body["errors"] = 422, exc.errors
    elif isinstance(exc, (InvalidTransitionError, CameraNotReadyError)):
        status = 409
    elif isinstance(exc, IntegrationError):
        status = 503
    else:
        status = 500
    return JSONResponse(status_code=status, content=body)


@app.get("/")
def root():
    return {"message": "MedScan Intake API is running"}


app.include_router(api_router, prefix="/api")
