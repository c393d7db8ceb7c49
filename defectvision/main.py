from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from defectvision.logger import logger
from defectvision.routers import analysis, batch, inspection, report


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    # Each router manages the services it owns
    async with inspection.lifespan(app), analysis.lifespan(app), batch.lifespan(app):
        logger.info("DefectVision backend started")
        yield
    logger.info("DefectVision backend stopped")


app = FastAPI(
    title="DefectVision Backend",
    description="AI-powered defect inspection dashboard for manufacturing lines",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    # Errors leave the API as {"error": "..."}
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


# Register routers
app.include_router(analysis.router)
app.include_router(inspection.router)
app.include_router(batch.router)
app.include_router(report.router)


@app.get("/")
async def root():
    return {"message": "Welcome to DefectVision Backend"}


@app.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "inspections": len(request.app.state.inspection_session),
        "feed_running": request.app.state.inspection_feed.running,
    }
