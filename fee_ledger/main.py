from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fee_ledger.api.v1.fees.router import router as fees_router
from fee_ledger.api.v1.payment_requests.router import router as payment_requests_router
from fee_ledger.core.config import settings
from fee_ledger.core.logging import configure_logging


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="Fee Ledger Backend")

    # CORS: allow the admin and parent portals to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(fees_router)
    app.include_router(payment_requests_router)

    return app


app = create_app()
