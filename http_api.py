from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from web3 import Web3
import time
import uvicorn

from agent.contract_service import ContractService, PollNotFoundError
from core.epochs import current_epoch, epoch_schedule
from core.tasks.scheduler import scheduler_app  # configures the broker for this process
from core.tasks.poll_monitor import monitoring_status, run_schedule_poll, start_monitoring, stop_monitoring
from core.tasks.queueing import run_async
from core.tasks.state import get_state
from settings import settings

app = FastAPI(
    title="Pander Poll Agent API",
    description="HTTP API controlling poll monitoring, epoch distribution and resolution",
    version="1.0.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _check_address(address: str) -> str:
    if not Web3.is_address(address):
        raise HTTPException(status_code=400, detail=f"Invalid poll address: {address}")
    return Web3.to_checksum_address(address)


@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "name": "Pander Poll Agent API",
        "description": "Schedules reward epochs and resolution for on-chain polls",
        "version": "1.0.0",
        "endpoints": {
            "monitor": "/monitor - POST to start, DELETE to stop poll monitoring",
            "status": "/status - Queue and monitor status",
            "epochs": "/polls/{address}/epochs - Epoch schedule of a poll",
            "schedule": "/polls/{address}/schedule - Schedule a poll by hand",
            "health": "/health - Health check"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "pander-agent"}


@app.post("/monitor")
async def start_monitor():
    """Start polling CapyCore for new polls"""
    try:
        start_monitoring(get_state())
        return {"status": "Monitoring started"}
    except Exception as e:
        logger.error(f"Failed to start monitoring: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to start monitoring"})


@app.delete("/monitor")
async def stop_monitor():
    """Stop polling CapyCore; already scheduled epochs and resolutions still run"""
    try:
        stop_monitoring(get_state())
        return {"status": "Monitoring stopped"}
    except Exception as e:
        logger.error(f"Failed to stop monitoring: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to stop monitoring"})


@app.get("/status")
async def status():
    return monitoring_status(get_state())


async def load_poll_epochs(poll_address: str):
    """Poll details plus the epoch the poll contract itself reports"""
    contracts = ContractService(settings)

    try:
        details = await contracts.get_poll_details(poll_address)
        onchain_epoch = await contracts.get_current_epoch(poll_address)
        return details, onchain_epoch
    finally:
        await contracts.close()


# Contract reads block on the RPC node, so these handlers run in the threadpool
@app.get("/polls/{address}/epochs")
def poll_epochs(address: str):
    """Poll details with the window, reward share and state of each epoch"""
    poll_address = _check_address(address)

    try:
        details, onchain_epoch = run_async(load_poll_epochs(poll_address))
    except PollNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    now = time.time()
    return {
        "poll": details.model_dump(),
        "current_epoch": current_epoch(details.start_date, details.end_date, now),
        "onchain_epoch": onchain_epoch,
        "epochs": epoch_schedule(details.start_date, details.end_date, now),
    }


@app.post("/polls/{address}/schedule")
def schedule_poll(address: str):
    """Queue epoch distribution and resolution for one poll"""
    poll_address = _check_address(address)

    try:
        jobs = run_async(run_schedule_poll(poll_address))
    except PollNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"poll_address": poll_address, **jobs}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
