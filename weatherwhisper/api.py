"""HTTP API for managing recipients, generating cards and reading the widget snapshot."""

import base64
import binascii
import hmac
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .config import settings
from .domain import CardConstraints, Recipient, RelationType, Tone
from .errors import (
    InvalidRequest,
    LocationNotFound,
    LocationPermissionDenied,
    MalformedResponse,
    RecipientNotFound,
    RequestRejected,
    TransientError,
    Unauthenticated,
    WhisperError,
)
from .recipients import RecipientDraft
from .services import Services, build_services
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="weatherwhisper/api")


def require_api_key(x_api_key: str | None = Header(default=None)):
    """
    Validate the X-API-Key header against the configured api_key.
    """
    # No key configured: allow requests (dev/default mode).
    if not settings.api_key:
        logger.debug("No API key configured; allowing all requests")
        return

    if not x_api_key:
        logger.debug("No API key provided")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    if hmac.compare_digest(str(x_api_key), str(settings.api_key)):
        return

    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


router = APIRouter(dependencies=[Depends(require_api_key)])

_services: Optional[Services] = None
_services_lock = threading.Lock()


def get_services() -> Services:
    """Return the process-wide services, building them on first use."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services(settings)
        return _services


def use_services_for_tests(services: Optional[Services]) -> None:
    """Swap the process-wide services; None forces a rebuild on next use."""
    global _services
    with _services_lock:
        _services = services


_STATUS_BY_ERROR = (
    (InvalidRequest, status.HTTP_400_BAD_REQUEST),
    (Unauthenticated, status.HTTP_401_UNAUTHORIZED),
    (LocationPermissionDenied, status.HTTP_403_FORBIDDEN),
    (LocationNotFound, status.HTTP_404_NOT_FOUND),
    (RecipientNotFound, status.HTTP_404_NOT_FOUND),
    (RequestRejected, status.HTTP_502_BAD_GATEWAY),
    (MalformedResponse, status.HTTP_502_BAD_GATEWAY),
    (TransientError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _http_error(exc: WhisperError) -> HTTPException:
    """Map a classified pipeline error onto an HTTP status."""
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    logger.info(f"Request failed with {exc.kind}: {exc}")
    return HTTPException(status_code=code, detail={"kind": exc.kind, "message": str(exc)})


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecipientIn(_CamelModel):
    """Incoming recipient form; coordinates of 0 mean 'geocode the city'."""
    nickname: str
    city_name: str
    latitude: float = 0.0
    longitude: float = 0.0
    relation_type: RelationType = RelationType.FRIEND
    avatar: str | None = None  # base64
    original_city_name: str | None = None

    def to_draft(self) -> RecipientDraft:
        avatar = None
        if self.avatar:
            try:
                avatar = base64.b64decode(self.avatar, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise InvalidRequest("Avatar must be base64 encoded.") from exc
        return RecipientDraft(
            nickname=self.nickname,
            city_name=self.city_name,
            latitude=self.latitude,
            longitude=self.longitude,
            avatar=avatar,
            relation_type=self.relation_type,
            original_city_name=self.original_city_name,
        )


class RecipientOut(_CamelModel):
    """Recipient as returned to API clients."""
    id: str
    nickname: str
    city_name: str
    latitude: float
    longitude: float
    relation_type: RelationType
    avatar: str | None = None
    updated_at: datetime

    @classmethod
    def from_recipient(cls, recipient: Recipient) -> "RecipientOut":
        return cls(
            id=recipient.id,
            nickname=recipient.nickname,
            city_name=recipient.city_name,
            latitude=recipient.latitude,
            longitude=recipient.longitude,
            relation_type=recipient.relation_type,
            avatar=base64.b64encode(recipient.avatar).decode("ascii") if recipient.avatar else None,
            updated_at=recipient.updated_at,
        )


class CardsRequest(_CamelModel):
    """Optional overrides for one card generation run."""
    tone: Tone | None = None
    locale: str | None = None
    cards_count: int | None = None
    max_chars_per_card: int | None = None
    allow_emoji: bool = True


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


@router.get("/recipients")
def list_recipients(services: Services = Depends(get_services)) -> List[Dict[str, Any]]:
    """List recipients, most recently updated first."""
    return [_dump(RecipientOut.from_recipient(r)) for r in services.recipients.list_recipients()]


@router.post("/recipients", status_code=status.HTTP_201_CREATED)
def create_recipient(body: RecipientIn, services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Create a recipient, geocoding the city when no coordinates were supplied."""
    try:
        recipient = services.recipients.save(body.to_draft())
    except WhisperError as exc:
        raise _http_error(exc) from exc
    return _dump(RecipientOut.from_recipient(recipient))


@router.put("/recipients/{recipient_id}")
def update_recipient(
    recipient_id: str, body: RecipientIn, services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Edit a recipient; a changed city is re-geocoded."""
    try:
        existing = services.recipients.get(recipient_id)
        recipient = services.recipients.save(body.to_draft(), existing)
    except WhisperError as exc:
        raise _http_error(exc) from exc
    return _dump(RecipientOut.from_recipient(recipient))


@router.delete("/recipients/{recipient_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_recipient(recipient_id: str, services: Services = Depends(get_services)) -> Response:
    """Delete a recipient and republish the widget index."""
    if not services.recipients.delete(recipient_id):
        raise _http_error(RecipientNotFound(f"Unknown recipient {recipient_id}"))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/recipients/{recipient_id}/cards")
def generate_cards(
    recipient_id: str,
    body: CardsRequest | None = None,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Run the card pipeline for one recipient and return the card group."""
    body = body or CardsRequest()
    config = services.config
    constraints = CardConstraints(
        cards_count=body.cards_count if body.cards_count is not None else config.default_cards_count,
        max_chars_per_card=(
            body.max_chars_per_card if body.max_chars_per_card is not None else config.default_max_chars_per_card
        ),
        allow_emoji=body.allow_emoji,
    )
    try:
        recipient = services.recipients.get(recipient_id)
        group = services.pipeline.refresh(
            recipient,
            tone=body.tone,
            locale=body.locale,
            constraints=constraints,
        )
    except WhisperError as exc:
        raise _http_error(exc) from exc
    return group.to_payload()


@router.get("/widget")
def widget_snapshot(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Return the document the home-screen widget reads."""
    return services.surface.read()
