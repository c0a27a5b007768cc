from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from app.routers import orders
from app.utils.errors import OrderError

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Closetshop API")

@app.on_event("startup")
def on_startup():
    # Ensure all DB tables exist after all models are imported
    from app.models.user import Base, engine  # Base/engine single source
    import app.models.product  # register Product model
    import app.models.cart  # register Cart/CartItem models
    import app.models.order  # register Order/OrderItem models
    Base.metadata.create_all(bind=engine)


@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers; admin routes first so /stats is not captured by /{id}
app.include_router(orders.admin_router, prefix="/api/orders", tags=["admin-orders"])
app.include_router(orders.router, prefix="/api/orders", tags=["orders"])


# --- Entry point for local runs ---
if __name__ == "__main__":
    import uvicorn, os
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("app.main:app", host="0.0.0.0", port=port, reload=False)
