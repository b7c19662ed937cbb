"""
# `app/main.py` — Application entry point

## Overview
Creates the FastAPI app, configures CORS and logging, mounts the routers and runs the
background scheduler.

---

## Routers
- `/auth`        registration, email verification landing
- `/identities`  profile API (cascade tier 1, service callers)
- `/users`       current user's profile
- `/network`     profile store connectivity

---

## Background Scheduler
- **Library:** APScheduler (`AsyncIOScheduler`)
- **Job:** `network-probe`, a write probe against Firestore every
  `NETWORK_PROBE_INTERVAL_SECONDS` (disabled when 0). On reconnect the monitor
  refreshes credentials; every successful probe retries pending profile
  reconciliations.

**Events:**
- `startup`: scheduler and probe job start.
- `shutdown`: probe job is removed, scheduler stops, the session cache is cleared.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from neurohub.app.config import settings
from neurohub.app.core.deps import build_services
from neurohub.app.routers import auth, identities, network, users

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Single scheduler instance
scheduler = AsyncIOScheduler()

# Initialize FastAPI app
app = FastAPI(
    title="NeuroHub Identity API",
    description="Email verification and profile reconciliation for the NeuroHub portal.",
    version="1.0.0",
    redirect_slashes=False
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(identities.router)
app.include_router(users.router)
app.include_router(network.router)


@app.on_event("startup")
async def _startup_scheduler():
    services = getattr(app.state, "services", None)
    if services is None:
        services = build_services(settings)
        app.state.services = services
    if not scheduler.running:
        scheduler.start()
    if services.settings.network_probe_interval_seconds > 0:
        services.monitor.start(scheduler)


@app.on_event("shutdown")
async def _shutdown_scheduler():
    services = getattr(app.state, "services", None)
    if services is not None:
        services.monitor.stop()
        services.session.clear()
    if scheduler.running:
        scheduler.shutdown(wait=False)


# Run the app directly with uvicorn (for development)
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("neurohub.app.main:app", host="0.0.0.0", port=8000, reload=True)
