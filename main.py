# main.py
import logging
import sys
from pathlib import Path
from fastapi import FastAPI
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parent
sys.path.append(str(ROOT_DIR))

load_dotenv()

import models  # noqa: F401  (registers tables on Base)
from database import engine, Base
from routes import checkout, cron, orders, services, square, webhooks

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Thrift Barn Storefront API")

Base.metadata.create_all(bind=engine)


@app.get("/healthz", include_in_schema=False)
def healthz():
    return {"status": "ok"}

# Routers
app.include_router(webhooks.router)
app.include_router(checkout.router)
app.include_router(orders.router)
app.include_router(cron.router)
app.include_router(square.router)
app.include_router(services.router)
