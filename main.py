from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from database import Base, engine, settings
from core.container import build_services
from api import admin, rounds, users


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 建立資料庫表、組裝服務、啟動排程器
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    Base.metadata.create_all(bind=engine)

    services = build_services(settings)
    app.state.services = services
    if settings.scheduler_enabled:
        await services.scheduler.start()

    yield

    # Shutdown: 停止排程器
    await services.scheduler.stop()


app = FastAPI(
    title="Color Prediction API",
    description="Round engine, profit control and settlement for the color prediction game",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rounds.router)
app.include_router(users.router)
app.include_router(admin.router)


@app.get("/")
def root():
    return {"message": "Color Prediction API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
