import logging
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import LOG_LEVEL
from .database import create_db_and_tables
from .routers import admin, customer, health, uploads
from .services.validation import request_field_errors

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(title="Melt Weight Loss Challenge")

origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Same field-keyed payload the routers raise for their own validation
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"errors": request_field_errors(exc.errors())}},
    )

@app.get("/")
async def root():
    return {"message": "Melt challenge API"}

app.include_router(customer.router)
app.include_router(uploads.router)
app.include_router(admin.router)
app.include_router(health.router)

@app.on_event("startup")
def on_startup():
    create_db_and_tables()
