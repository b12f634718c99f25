# square_service.py
import logging
import time
import random
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import requests

from config import settings

logger = logging.getLogger(__name__)

RETRY_STATUSES = {429, 500, 502, 503, 504}


class SquareAPIError(Exception):
    def __init__(self, message: str, path: str = "", status_code: Optional[int] = None):
        super().__init__(f"{message} :: {path}" if path else message)
        self.status_code = status_code


def _error_message(body: Any, status_code: int) -> str:
    errors = (body or {}).get("errors") if isinstance(body, dict) else None
    if errors:
        first = errors[0] or {}
        return first.get("detail") or first.get("code") or f"Square API error ({status_code})"
    return f"Square API error ({status_code})"


class SquareService:
    """
    Square REST client (catalog + inventory) for the point-of-sale side of
    the store.
    """
    def __init__(self, token: Optional[str] = None, location_id: Optional[str] = None,
                 api_base: Optional[str] = None):
        token = token if token is not None else settings.square_access_token
        if not token:
            raise ValueError("Square access token is required.")
        self.location_id = location_id if location_id is not None else settings.square_location_id
        self.api_base = (api_base or settings.square_api_base).rstrip("/")
        self.headers = {"Content-Type": "application/json", "Authorization": f"Bearer {token}"}

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.api_base}{path}"
        max_retries = 5
        base_delay = 1.0
        for attempt in range(max_retries):
            try:
                response = requests.request(method, url, headers=self.headers, json=payload, timeout=30)
            except requests.exceptions.RequestException as e:
                if attempt < max_retries - 1:
                    wait_time = base_delay * (2 ** attempt) + random.uniform(0, 1)
                    logger.warning("Square %s %s failed (%s); retry in %.2fs", method, path, e, wait_time)
                    time.sleep(wait_time)
                    continue
                raise

            if response.status_code in RETRY_STATUSES and attempt < max_retries - 1:
                wait_time = base_delay * (2 ** attempt) + random.uniform(0, 1)
                logger.warning("Square %s %s -> %s; retry in %.2fs", method, path, response.status_code, wait_time)
                time.sleep(wait_time)
                continue

            try:
                body = response.json() if response.content else {}
            except ValueError:
                body = {"raw": response.text}

            if not response.ok:
                raise SquareAPIError(_error_message(body, response.status_code), path, response.status_code)
            return body or {}
        raise SquareAPIError("Max retries reached. Could not complete the API request.", path)

    # -------------------- catalog --------------------
    def upsert_catalog_item(self, product_id: str, name: str, price_cents: int,
                            description: Optional[str] = None, sku: Optional[str] = None,
                            barcode: Optional[str] = None, item_id: Optional[str] = None,
                            variation_id: Optional[str] = None) -> Dict[str, str]:
        """
        Creates or updates one item with a single "Regular" variation.
        Unknown objects are sent with temporary '#' ids and resolved through
        the returned id mappings.
        """
        temp_item_id = f"#item_{product_id}"
        temp_var_id = f"#var_{product_id}"
        variation_data = {
            "name": "Regular",
            "price_money": {"amount": int(price_cents), "currency": settings.square_currency},
            "track_inventory": True,
        }
        if sku:
            variation_data["sku"] = sku
        if barcode:
            variation_data["upc"] = barcode
        item_data: Dict[str, Any] = {
            "name": name.strip(),
            "variations": [{
                "type": "ITEM_VARIATION",
                "id": variation_id or temp_var_id,
                "item_variation_data": variation_data,
            }],
        }
        if description and description.strip():
            item_data["description"] = description.strip()[:4096]

        body = {
            "idempotency_key": f"products_upsert_{product_id}_{uuid.uuid4().hex}",
            "batches": [{"objects": [{"type": "ITEM", "id": item_id or temp_item_id, "item_data": item_data}]}],
        }
        result = self._request("POST", "/catalog/batch-upsert", body)

        new_item_id, new_var_id = item_id, variation_id
        for mapping in result.get("id_mappings") or []:
            if mapping.get("client_object_id") == temp_item_id:
                new_item_id = mapping.get("object_id")
            elif mapping.get("client_object_id") == temp_var_id:
                new_var_id = mapping.get("object_id")
        return {"square_item_id": new_item_id, "square_variation_id": new_var_id}

    # -------------------- inventory --------------------
    def set_in_stock_count(self, variation_id: str, quantity: int, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        if not self.location_id:
            raise ValueError("Square location id is required to set stock counts.")
        body = {
            "idempotency_key": idempotency_key or uuid.uuid4().hex,
            "changes": [{
                "type": "PHYSICAL_COUNT",
                "physical_count": {
                    "catalog_object_id": variation_id,
                    "location_id": self.location_id,
                    "state": "IN_STOCK",
                    "quantity": str(max(0, int(quantity))),
                    "occurred_at": datetime.now(timezone.utc).isoformat(),
                },
            }],
        }
        return self._request("POST", "/inventory/changes/batch-create", body)

