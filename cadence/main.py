import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import init_db
from .errors import (
    CadenceError,
    EmptyRecurrenceRule,
    InvalidAmount,
    InvalidInvoiceReference,
    InvalidTransition,
    RecordNotFound,
    StaleSnapshot,
)
from .routes import checkout, invoices, lessons, payments, reports, settings, students

logger = logging.getLogger(__name__)

app = FastAPI(title="Cadence Studio - Lessons, Scheduling and Billing")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    InvalidInvoiceReference: 404,
    RecordNotFound: 404,
    InvalidAmount: 400,
    EmptyRecurrenceRule: 400,
    InvalidTransition: 409,
    StaleSnapshot: 409,
}


@app.on_event("startup")
def on_startup():
    init_db()


@app.exception_handler(CadenceError)
def cadence_error_handler(request: Request, exc: CadenceError):
    status = ERROR_STATUS.get(type(exc), 400)
    logger.warning("%s %s -> %d %s: %s", request.method, request.url.path, status, exc.code, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc), "code": exc.code})


app.include_router(students.router)
app.include_router(lessons.router)
app.include_router(invoices.router)
app.include_router(payments.router)
app.include_router(reports.router)
app.include_router(settings.router)
app.include_router(checkout.router)
