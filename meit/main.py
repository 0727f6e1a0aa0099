import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from meit import config
from meit.db import engine, Base
from meit.errors import MeitError, PersistenceFailure, TransactionFailed

from meit.models.merchant import Merchant
from meit.models.branch import Branch
from meit.models.customer import Customer
from meit.models.customer_merchant import CustomerMerchant
from meit.models.point_transaction import PointTransaction
from meit.models.gift_card import GiftCard
from meit.models.challenge import Challenge
from meit.models.challenge_completion import ChallengeCompletion
from meit.models.checkin import Checkin
from meit.models.audit_log import AuditLog

from meit.routes.points import router as points_router
from meit.routes.gift_cards import router as gift_cards_router
from meit.routes.checkins import router as checkins_router
from meit.routes.customers import router as customers_router
from meit.routes.challenges import router as challenges_router
from meit.routes.merchants import router as merchants_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Meit Loyalty")

# ─── CORS ─────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MeitError)
def handle_meit_error(request: Request, exc: MeitError):
    if exc.status_code >= 500:
        logger.error(
            "request failed",
            extra={"path": request.url.path, "code": exc.code, **exc.context},
        )
        if isinstance(exc, TransactionFailed):
            return JSONResponse(status_code=exc.status_code, content=exc.to_response())
        # internals stay in the log
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.default_message, "code": exc.code},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.exception_handler(SQLAlchemyError)
def handle_storage_error(request: Request, exc: SQLAlchemyError):
    logger.error("storage error", extra={"path": request.url.path}, exc_info=exc)
    return handle_meit_error(request, PersistenceFailure())


@app.on_event("startup")
def startup():
    Base.metadata.create_all(bind=engine)


app.include_router(points_router)
app.include_router(gift_cards_router)
app.include_router(checkins_router)
app.include_router(customers_router)
app.include_router(challenges_router)
app.include_router(merchants_router)


@app.get("/")
def read_root():
    return {"message": "Meit Loyalty is running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8001, reload=True)
