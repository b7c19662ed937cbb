# app/routers/network.py
from fastapi import APIRouter, Depends, status

from neurohub.app.core.deps import Services, get_services

router = APIRouter(prefix="/network", tags=["Network"])


@router.get("/state")
def network_state(services: Services = Depends(get_services)):
    """Last probed connectivity of the profile store."""
    return services.monitor.state.to_dict()


@router.post("/online", status_code=status.HTTP_202_ACCEPTED)
async def network_online(services: Services = Depends(get_services)):
    """
    Client-side "online" event. Only a hint: the monitor probes the store and
    the state changes if the probe succeeds.
    """
    services.monitor.hint()
    return {"detail": "Probe scheduled", **services.monitor.state.to_dict()}
