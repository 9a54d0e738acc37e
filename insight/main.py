import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from insight.core.config import settings
from insight.core.database import init_db
from insight.controllers import insight_controller
from insight.repositories import ConversationNotFoundError

# Logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=settings.LOG_LEVEL,
)

# Create FastAPI app
app = FastAPI(title=settings.APP_TITLE)


@app.on_event("startup")
async def startup():
    """Create conversation/message tables"""
    await init_db()


@app.exception_handler(ConversationNotFoundError)
async def conversation_not_found_handler(request: Request, exc: ConversationNotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Conversation not found"})


# Include routers
app.include_router(insight_controller.router)


@app.get("/")
def root():
    """Root endpoint"""
    return {
        "message": "Business Insights NL→SQL Chat API",
        "docs": "/docs",
        "version": "1.0"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("insight.main:app", host="0.0.0.0", port=8000, log_config=None)
