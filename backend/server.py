"""
LateSeat API v1.0.0 - Late-night table reservations
Features: Slot catalogue, Availability, Table allocation, Cancellation / No-show
"""
from fastapi import FastAPI, APIRouter, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import List, Optional
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Core imports
from core.config import settings
from core.database import db, check_db_connection, close_db_connection, ensure_indexes
from core.exceptions import LateSeatException

# Reservation Slots Module (slot catalogue + table pool seeding)
from reservation_slots_module import slots_router, ensure_table_pool

# Reservation Capacity Module (availability per slot)
from reservation_capacity import capacity_router

# Table Module (table pool, overlap engine, suggestions)
from table_module import table_router

# Booking + Lifecycle
from reservation_booking import allocate_reservation, booking_confirmation
from reservation_lifecycle import get_reservation, cancel_reservation, mark_no_show

# ============== APP SETUP ==============
app = FastAPI(
    title="LateSeat API",
    version="1.0.0",
    description="Table reservations for a late-night venue"
)

api_router = APIRouter(prefix="/api")

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


# ============== EXCEPTION HANDLERS ==============
@app.exception_handler(LateSeatException)
async def lateseat_exception_handler(request: Request, exc: LateSeatException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code, "success": False, **exc.extra}
    )

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Invalid request parameters",
            "error_code": "VALIDATION_ERROR",
            "reason": "invalid_request",
            "errors": [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in exc.errors()],
            "success": False
        }
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred", "error_code": "INTERNAL_ERROR", "success": False}
    )


# ============== PYDANTIC MODELS ==============
class ReservationCreate(BaseModel):
    """All fields optional here - presence is checked in a fixed order by the allocator"""
    date_time: Optional[str] = None
    party_size: Optional[int] = None
    table_numbers: Optional[List[int]] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    special_requests: Optional[str] = None


# ============== RESERVATIONS ==============
@api_router.post("/reservations", status_code=201, tags=["Reservations"])
async def create_reservation(data: ReservationCreate):
    reservation = await allocate_reservation(data.model_dump())
    return {
        "message": "Reservation created successfully",
        "reservation": booking_confirmation(reservation)
    }

@api_router.get("/reservations/{booking_id}", tags=["Reservations"])
async def get_reservation_endpoint(booking_id: str):
    return {"reservation": await get_reservation(booking_id)}

@api_router.put("/reservations/{booking_id}/cancel", tags=["Reservations"])
async def cancel_reservation_endpoint(booking_id: str):
    reservation = await cancel_reservation(booking_id)
    return {
        "message": "Reservation cancelled successfully",
        "booking_id": reservation["booking_id"],
        "status": reservation["status"]
    }

@api_router.put("/reservations/{booking_id}/no-show", tags=["Reservations"])
async def no_show_endpoint(booking_id: str):
    reservation = await mark_no_show(booking_id)
    return {"booking_id": reservation["booking_id"], "status": reservation["status"]}


# ============== HEALTH ==============
@api_router.get("/health", tags=["Health"])
async def health_check():
    db_status = "connected" if await check_db_connection() else "disconnected"

    return {"status": "healthy" if db_status == "connected" else "degraded", "database": db_status, "version": "1.0.0"}


# ============== ROUTERS ==============
# capacity_router first: /reservations/available must win over /reservations/{booking_id}
app.include_router(capacity_router, prefix="/api")
app.include_router(slots_router, prefix="/api")
app.include_router(table_router, prefix="/api")
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=settings.CORS_ORIGINS.split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup():
    """Create indexes and seed the table pool"""
    await ensure_indexes(db)
    tables = await ensure_table_pool()
    logger.info(
        f"{settings.APP_NAME} started - {tables} tables, addressing={settings.ADDRESSING_MODE.value}, "
        f"conflict_scope={settings.CONFLICT_SCOPE.value}"
    )

@app.on_event("shutdown")
async def shutdown():
    await close_db_connection()
