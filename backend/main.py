from fastapi import FastAPI, Request
from dotenv import load_dotenv

load_dotenv()
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from database import Base, engine
from datetime import datetime
import os
import models  # noqa: F401  registers every table on Base.metadata
import routers.fee_invoices as fee_invoices
import routers.fee_payments as fee_payments
import routers.mpesa as mpesa
import routers.fee_structures as fee_structures
import routers.fee_discounts as fee_discounts
from utils.errors import FeeError
import logging
from fastapi.openapi.utils import get_openapi


LOG_DIR = os.getenv("LOG_DIR", "logs")
os.makedirs(LOG_DIR, exist_ok=True) # Create 'logs' directory if it doesn't exist

# Create a unique log file name based on current date/time
current_time_str = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
LOG_FILE = os.path.join(LOG_DIR, f"app_{current_time_str}.log")

# Configure the root logger
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    filename=LOG_FILE,
    filemode='a'
)

# Mirror the file log on the console
console_handler = logging.StreamHandler()
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
logging.getLogger().addHandler(console_handler)

logger = logging.getLogger(__name__)
logger.info("Application starting up...")
# --- End Logging Configuration ---


# Create database tables
Base.metadata.create_all(bind=engine)


app = FastAPI()


allowed_origins_str = os.getenv(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173"
)

# Split the string into a list, stripping any whitespace
allowed_origins = [origin.strip() for origin in allowed_origins_str.split(',')]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FeeError)
async def fee_error_handler(request: Request, exc: FeeError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.category}): {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.category}): {exc}")
    content = {"detail": str(exc), "category": exc.category}
    if exc.retryable:
        content["retryable"] = True
    return JSONResponse(status_code=exc.status_code, content=content)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title="School Fees API",
        version="1.0.0",
        description="Fee invoices, payments and M-Pesa collections for schools",
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
    }
    # Apply security globally to all endpoints
    openapi_schema["security"] = [{"BearerAuth": []}]
    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi


app.include_router(fee_invoices.router)
app.include_router(fee_payments.router)
app.include_router(mpesa.router)
app.include_router(fee_structures.router)
app.include_router(fee_discounts.router)


@app.on_event("startup")
def start_scheduler():
    if os.getenv("ENABLE_SCHEDULER", "false").lower() == "true":
        from scheduler import scheduler
        scheduler.start()
        logger.info("EOD scheduler started.")


@app.on_event("shutdown")
def stop_scheduler():
    from scheduler import scheduler
    if scheduler.running:
        scheduler.shutdown(wait=False)


@app.get("/")
async def test_route():
    return {"message": "Welcome to the School Fees API!"}
