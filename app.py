#!/usr/bin/env python3
"""
Productboard Emoji Field Sync

This application receives Productboard webhooks for custom field value updates and
mirrors the emoji categories of a trigger field onto a target multi-select field.
Labels such as "📚 LMS" on the trigger field become "LMS" on the target field.

Configuration is done via environment variables (see config.py).
"""

import hmac
import json
import logging
import os
import sys
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field, ValidationError

from config import ConfigurationError, Settings
from field_sync import FieldSynchronizer
from productboard import ProductboardClient

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "Productboard Emoji Field Sync"
SERVICE_VERSION = "1.0.0"

CUSTOM_FIELD_VALUE_UPDATED = 'hierarchy-entity.custom-field-value.updated'
VALID_EVENTS = (CUSTOM_FIELD_VALUE_UPDATED,)

app = FastAPI(
    title=SERVICE_NAME,
    description="Syncs emoji categories from one Productboard custom field onto another",
    version=SERVICE_VERSION
)


class EventLinks(BaseModel):
    target: Optional[str] = None


class EventData(BaseModel):
    event_type: str = Field(alias='eventType')
    links: Optional[EventLinks] = None


class WebhookEvent(BaseModel):
    """Productboard webhook notification payload"""
    data: EventData


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache(maxsize=1)
def build_synchronizer(settings: Settings) -> FieldSynchronizer:
    """Build the process-wide synchronizer from configuration"""
    client = ProductboardClient(
        api_token=settings.pb_api_token,
        base_url=settings.pb_base_url,
        api_version=settings.pb_api_version,
        retry_policy=settings.retry,
        timeout=settings.timeout_seconds,
    )
    return FieldSynchronizer(
        client,
        trigger_field_id=settings.cf_trigger_id,
        target_field_id=settings.cf_target_id,
    )


def get_webhook_secret() -> Optional[str]:
    """Read the shared secret without requiring the rest of the configuration"""
    try:
        return get_settings().webhook_secret
    except ConfigurationError:
        return os.getenv('WEBHOOK_SECRET') or None


def is_authorized(authorization: Optional[str], secret: Optional[str]) -> bool:
    """Check the Authorization header against the shared webhook secret"""
    if not authorization or not secret:
        return False
    return hmac.compare_digest(
        authorization.encode('utf-8'),
        f"Bearer {secret}".encode('utf-8')
    )


def parse_link_target(link_target: str) -> Dict[str, Optional[str]]:
    """Extract the custom field and hierarchy entity ids from an event link"""
    url = urlparse(link_target)
    if not url.scheme or not url.netloc:
        raise ValueError(f"Not an absolute URL: {link_target}")

    query = parse_qs(url.query)
    return {
        'custom_field_id': query.get('customField.id', [None])[0],
        'hierarchy_entity_id': query.get('hierarchyEntity.id', [None])[0],
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.get("/webhook")
async def validate_subscription(
    validation_token: Optional[str] = Query(None, alias="validationToken")
):
    """Answer the subscription probe by echoing the validation token"""
    if validation_token:
        logger.info("Subscription probe received, returning validation token")
        return PlainTextResponse(validation_token, status_code=200)
    return PlainTextResponse("Not found", status_code=404)


@app.post("/webhook")
async def handle_webhook(
    request: Request,
    authorization: Optional[str] = Header(None),
    webhook_secret: Optional[str] = Depends(get_webhook_secret),
):
    """Handle Productboard custom field value webhook"""
    logger.info("POST /webhook received")

    if not is_authorized(authorization, webhook_secret):
        logger.warning("Unauthorized request")
        raise HTTPException(status_code=403, detail="Unauthorized")

    try:
        try:
            settings = get_settings()
        except ConfigurationError as e:
            logger.error(f"Service is not configured: {str(e)}")
            raise HTTPException(status_code=500, detail="Internal Server Error")
        synchronizer = build_synchronizer(settings)

        body = await request.body()
        try:
            payload: Any = json.loads(body.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Invalid JSON payload: {str(e)}")
            raise HTTPException(status_code=400, detail="Invalid JSON payload")

        logger.info(f"Request body: {json.dumps(payload, indent=2, ensure_ascii=False)}")

        try:
            event = WebhookEvent.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Invalid event type or missing data: {e.errors()}")
            raise HTTPException(status_code=400, detail="Ignored event type")

        event_type = event.data.event_type
        if event_type not in VALID_EVENTS:
            logger.info(f"Invalid event type or missing data: {event_type}")
            raise HTTPException(status_code=400, detail="Ignored event type")

        logger.info(f"Executing automation for {event_type}")

        link_target = event.data.links.target if event.data.links else None
        if not link_target:
            logger.warning("Missing 'linkTarget' in payload")
            raise HTTPException(status_code=400, detail="Missing link target")

        try:
            link = parse_link_target(link_target)
        except ValueError as e:
            logger.warning(f"Unparseable link target: {str(e)}")
            raise HTTPException(status_code=400, detail="Invalid link target")

        custom_field_id = link['custom_field_id']
        if custom_field_id != settings.cf_trigger_id:
            logger.info(f"Ignoring custom field {custom_field_id}")
            return JSONResponse(content={
                "message": "Ignored: customTriggerFieldId did not match",
                "customFieldId": custom_field_id
            })

        entity_id = link['hierarchy_entity_id']
        if not entity_id:
            logger.warning(f"Trigger match on custom field {custom_field_id} without hierarchy entity id")
            raise HTTPException(status_code=400, detail="Missing hierarchy entity id")

        logger.info(f"Trigger match on custom field {custom_field_id}")

        result = await run_in_threadpool(synchronizer.reconcile, entity_id)
        if not result.success:
            logger.error(f"Error executing automation: {result.error}")
            raise HTTPException(status_code=500, detail="Automation failed")

        logger.info(f"Automation executed successfully: {result}")
        return JSONResponse(content={
            "message": "Webhook processed successfully",
            "result": result.message,
            "updated": result.updated,
            "entityId": entity_id
        })

    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error processing webhook: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal Server Error")


@app.get("/")
async def root():
    """Root endpoint with basic information"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "endpoints": {
            "health": "/health",
            "webhook": "/webhook"
        }
    }


def main():
    import uvicorn

    # Validate required configuration
    try:
        settings = get_settings()
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(1)

    if not settings.webhook_secret:
        logger.warning("WEBHOOK_SECRET environment variable not set. All webhook events will be rejected.")

    logging.getLogger().setLevel(settings.log_level)
    logger.info(f"Webhook server running at http://localhost:{settings.port}")
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=settings.port,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    main()
