from fastapi import FastAPI

from .routers import admin, reservations, slots
from .utils.request_id import request_id_middleware

app = FastAPI(title="Parkshare Reservation API")

app.middleware("http")(request_id_middleware)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(slots.router)
app.include_router(reservations.router)
app.include_router(admin.router)
