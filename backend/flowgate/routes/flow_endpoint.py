# /flowgate/routes/flow_endpoint.py

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from flowgate.config.settings import settings
from flowgate.models.exchange import EncryptedFlowRequest, ExchangeRequest
from flowgate.services.crypto_service import CryptoChannel
from flowgate.services.errors import DecryptionError, FlowEndpointError, ServerConfigurationError
from flowgate.services.flow_exchange import flow_exchange
from flowgate.utils.dependencies import SignedFlowRequest, verify_flow_signature
from flowgate.utils.metrics import decryption_failure_counter, response_time_histogram
from flowgate.utils.rate_limiter import limiter

# The WhatsApp Flow data-exchange endpoint. Every successful answer, business
# error screens included, is an encrypted base64 string with status 200.

router = APIRouter(
    tags=["Flows"]
)

log = structlog.get_logger(__name__)


def _http_error(error: FlowEndpointError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=str(error))


@router.post("/flow-endpoint", response_class=PlainTextResponse)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def handle_flow_exchange(
    request: Request,
    signed: SignedFlowRequest = Depends(verify_flow_signature)
):
    """Decrypts one Flow exchange, runs it through the orchestrator and encrypts the answer."""
    with response_time_histogram.labels(endpoint="flow_endpoint").time():
        try:
            envelope = EncryptedFlowRequest.model_validate_json(signed.body)
        except ValidationError as e:
            log.warning("Malformed flow request body.", errors=e.error_count())
            raise HTTPException(status_code=422, detail="Malformed request body")

        if not signed.config.private_key_pem:
            log.error("Flow private key is not configured.", config_version=signed.config.version)
            raise _http_error(ServerConfigurationError("Server configuration error"))

        try:
            decrypted = CryptoChannel.decrypt_request(
                envelope.encrypted_flow_data,
                envelope.encrypted_aes_key,
                envelope.initial_vector,
                signed.config.private_key_pem,
                signed.config.private_key_passphrase,
            )
        except DecryptionError as e:
            decryption_failure_counter.inc()
            log.warning("Flow request could not be decrypted.", error=str(e))
            raise _http_error(e)

        try:
            exchange = ExchangeRequest.model_validate(decrypted.body)
        except ValidationError as e:
            log.warning("Decrypted flow payload is invalid.", errors=e.error_count())
            raise HTTPException(status_code=422, detail="Invalid flow payload")

        with structlog.contextvars.bound_contextvars(action=exchange.action, screen=exchange.screen):
            log.info("Flow exchange received.")
            try:
                response = await flow_exchange.handle(exchange)
            except FlowEndpointError as e:
                log.warning("Flow exchange rejected.", error=str(e))
                raise _http_error(e)

            log.info("Flow exchange answered.", next_screen=response.get("screen"))

        try:
            encrypted = CryptoChannel.encrypt_response(response, decrypted.aes_key, decrypted.initial_vector)
        except FlowEndpointError as e:
            raise _http_error(e)
        return PlainTextResponse(encrypted)
