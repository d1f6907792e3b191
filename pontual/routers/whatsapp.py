from typing import List

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from loguru import logger

from .. import schemas
from ..dependencies import get_current_user, get_storage, get_whatsapp_service
from ..errors import NotFoundError
from ..storage import Storage
from ..whatsapp import WhatsappService

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])


@router.get("/integration", response_model=schemas.WhatsappIntegration)
def get_integration(
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    integration = storage.get_whatsapp_integration()
    if integration is None:
        raise NotFoundError("WhatsApp integration not configured")
    return integration


@router.post("/integration", response_model=schemas.WhatsappIntegration, status_code=201)
def create_integration(
    body: schemas.WhatsappIntegrationCreate,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    integration = storage.create_whatsapp_integration(body)
    logger.info("WhatsApp integration created", instance=integration.instance_name)
    return integration


@router.put("/integration", response_model=schemas.WhatsappIntegration)
def update_integration(
    body: schemas.WhatsappIntegrationUpdate,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return storage.update_whatsapp_integration(body.model_dump(exclude_unset=True))


@router.delete("/integration", response_model=schemas.OkResult)
def delete_integration(
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    storage.delete_whatsapp_integration()
    return {"ok": True}


@router.get("/logs", response_model=List[schemas.WhatsappLog])
def list_logs(
    limit: int = Query(default=50, ge=1, le=500),
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return storage.get_whatsapp_logs(limit)


@router.post("/webhook/{instance_name}")
async def webhook(
    instance_name: str,
    request: Request,
    service: WhatsappService = Depends(get_whatsapp_service),
):
    # always 200 so the Evolution API never retries
    try:
        envelope = await request.json()
    except ValueError:
        logger.warning("Webhook body is not JSON", instance=instance_name)
        return {"status": "ignored"}
    if not isinstance(envelope, dict):
        return {"status": "ignored"}

    try:
        status = await run_in_threadpool(service.handle_webhook, instance_name, envelope)
    except Exception:
        logger.exception("Webhook processing failed", instance=instance_name)
        status = "error"
    return {"status": status}
