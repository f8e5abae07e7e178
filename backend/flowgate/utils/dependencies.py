# /flowgate/utils/dependencies.py

import secrets
from dataclasses import dataclass
import structlog
from fastapi import Request, Depends, HTTPException

from flowgate.config.settings import settings
from flowgate.models.context import ChannelConfig
from flowgate.services.crypto_service import CryptoChannel
from flowgate.services.db_service import secret_store
from flowgate.services.errors import ServerConfigurationError, SignatureError
from flowgate.utils.metrics import webhook_signature_counter
from flowgate.utils.request_utils import get_remote_address

log = structlog.get_logger(__name__)

SIGNATURE_HEADER = "x-hub-signature-256"


@dataclass(frozen=True)
class SignedFlowRequest:
    body: bytes
    config: ChannelConfig


async def get_channel_config() -> ChannelConfig:
    """Fresh secrets snapshot for this exchange."""
    return await secret_store.get_active_config()


async def verify_flow_signature(
    request: Request,
    config: ChannelConfig = Depends(get_channel_config),
) -> SignedFlowRequest:
    if not config.app_secret:
        log.error("Flow endpoint called but no app secret is configured.", config_version=config.version)
        error = ServerConfigurationError("Server configuration error")
        raise HTTPException(status_code=error.status_code, detail=str(error))

    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER, "")
    if not CryptoChannel.verify_signature(body, signature, config.app_secret):
        webhook_signature_counter.labels(status="invalid").inc()
        log.error("Invalid flow request signature.", client_ip=get_remote_address(request), signature=signature[:20])
        error = SignatureError("Invalid signature")
        raise HTTPException(status_code=error.status_code, detail=str(error))

    webhook_signature_counter.labels(status="valid").inc()
    return SignedFlowRequest(body=body, config=config)


async def verify_metrics_access(request: Request):
    if settings.api_key:
        provided_key = request.headers.get("X-API-KEY")
        if not (provided_key and secrets.compare_digest(provided_key, settings.api_key)):
            raise HTTPException(status_code=403, detail="Invalid or missing API key")
