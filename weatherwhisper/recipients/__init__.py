from .service import RecipientDraft, RecipientEvents, RecipientService, needs_geocoding
from .store import InMemoryRecipientStore, RecipientStore, SqlRecipientStore, build_recipient_store

__all__ = [
    "RecipientDraft",
    "RecipientEvents",
    "RecipientService",
    "needs_geocoding",
    "InMemoryRecipientStore",
    "RecipientStore",
    "SqlRecipientStore",
    "build_recipient_store",
]
