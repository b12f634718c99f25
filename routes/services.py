# routes/services.py

import logging

import requests
from fastapi import APIRouter, HTTPException, Request
from starlette.datastructures import UploadFile

import email_service
import schemas

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Service Requests"])


@router.post("/services", response_model=schemas.ServiceRequestResponse)
async def request_service(request: Request):
    """
    Multipart service request form (moving, junk removal, assembly, ...).
    Text fields go into the email as-is; `photos` files are attached.
    """
    form = await request.form()

    # Bots fill the hidden field; pretend everything went fine.
    if str(form.get(email_service.HONEYPOT_FIELD) or "").strip():
        return {"ok": True, "message": "Thanks! We'll be in touch."}

    service_id = str(form.get("service_id") or "").strip()
    contact = {
        "name": str(form.get("contact_name") or "").strip(),
        "email": str(form.get("contact_email") or "").strip(),
        "phone": str(form.get("contact_phone") or "").strip(),
    }
    if not service_id:
        raise HTTPException(status_code=400, detail="Missing service_id.")
    if not all(contact.values()):
        raise HTTPException(status_code=400, detail="Name, email, and phone are required.")

    details = email_service.collect_service_details(
        (key, value) for key, value in form.multi_items() if isinstance(value, str)
    )
    photos = []
    for upload in form.getlist(email_service.PHOTOS_FIELD)[:email_service.MAX_SERVICE_PHOTOS]:
        if isinstance(upload, UploadFile):
            photos.append((upload.filename, await upload.read()))

    try:
        email_service.send_service_request(service_id, contact, details, photos)
    except email_service.EmailConfigError as e:
        logger.error("Service request email not configured: %s", e)
        raise HTTPException(status_code=500, detail=str(e))
    except requests.exceptions.RequestException as e:
        logger.exception("Service request email failed for %s", contact["email"])
        raise HTTPException(status_code=502, detail=f"Email provider error: {e}")

    return {"ok": True, "message": "Thanks for the details - a member of the Barn will reach out soon for booking!"}
