import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Socket.IO imports
import socketio
import uvicorn

from app.config import CORS_ORIGINS, LOG_LEVEL, STORAGE_BACKEND
from app.database import init_db
from app.dependencies import build_guard
from app.routes import attendance, security
from app.utils.geoip import build_geoip_lookup
from app.utils.socketio_manager import init_socketio

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("attendance_guard")

app = FastAPI(title="Attendance Guard")

# Create Socket.IO server
sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=CORS_ORIGINS,
    logger=False,
    engineio_logger=False,
)

# Wrap FastAPI app with Socket.IO
socket_app = socketio.ASGIApp(sio, app)


@app.on_event("startup")
async def startup_event():
    if STORAGE_BACKEND == "mongo":
        await init_db()

    notifier = init_socketio(sio)
    app.state.guard = build_guard(
        backend=STORAGE_BACKEND,
        notifier=notifier,
        geoip=build_geoip_lookup(),
    )
    logger.info(f"✅ Attendance guard ready ({STORAGE_BACKEND} storage)")


# Include your routes
app.include_router(attendance.router)
app.include_router(security.router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Make the Socket.IO app available for uvicorn
if __name__ == "__main__":
    uvicorn.run(socket_app, host="0.0.0.0", port=8001)
