"""Durable, merge-on-load drafts for the price options and receiver forms."""

from opsdesk.drafts.merger import filled_fields, is_empty, merge_draft
from opsdesk.drafts.session import DraftSession
from opsdesk.drafts.store import DraftKey, DraftStore, DraftStoreError, RedisDraftStore, create_draft_store

__all__ = [
    "DraftKey",
    "DraftSession",
    "DraftStore",
    "DraftStoreError",
    "RedisDraftStore",
    "create_draft_store",
    "filled_fields",
    "is_empty",
    "merge_draft",
]
