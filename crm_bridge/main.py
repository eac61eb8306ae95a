"""
WhatsApp CRM Bridge - FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crm_bridge import __version__
from crm_bridge.config import get_settings
from crm_bridge.middleware.logging_middleware import LoggingMiddleware
from crm_bridge.routes import health, instances, maintenance, realtime, webhook

settings = get_settings()

app = FastAPI(
    title="WhatsApp CRM Bridge",
    description="Evolution API webhooks, WhatsApp ticket routing and realtime agent chat",
    version=__version__
)

# The last middleware added is the outermost: logging wraps CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)

# Prefixes are defined in each router module
app.include_router(webhook.router)
app.include_router(realtime.router)
app.include_router(health.router)
app.include_router(instances.router)
app.include_router(maintenance.router)


@app.get("/")
async def root():
    return {"message": "WhatsApp CRM Bridge API", "version": __version__}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.fastapi_host, port=settings.fastapi_port)
