from fastapi import FastAPI
import uvicorn
from fastapi.middleware.cors import CORSMiddleware
from core.config import settings
from core.logging_config import configure_logging
from core.ledger import wait_for_pending
from db.database import create_db_and_tables
from routers.inventory import router as inventory_router
from routers.reconcile import router as reconcile_router
from routers.admin_logs import router as admin_logs_router
from routers.images import router as images_router
from core.auth import fastapi_users, auth_backend
from contextlib import asynccontextmanager
from schemas.users import UserRead, UserCreate, UserUpdate

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_db_and_tables()
    yield
    # Flush fire-and-forget admin log writes before the loop closes
    await wait_for_pending()


app = FastAPI(
    title="Granthalaya Inventory API",
    description="Stock ledger, audit trail and cover reconciliation for the book inventory",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Authentication routes (fastapi-users)
app.include_router(fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"],)
app.include_router(fastapi_users.get_register_router(UserRead, UserCreate), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_users_router(UserRead, UserUpdate), prefix="/users", tags=["users"])

# Cover images (database blob backend)
app.include_router(images_router, prefix="/images", tags=["images"])

# Inventory ledger + catalog
app.include_router(inventory_router, prefix="/inventory", tags=["inventory"])
app.include_router(reconcile_router, prefix="/reconcile", tags=["reconcile"])
app.include_router(admin_logs_router, prefix="/admin-logs", tags=["admin-logs"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
