"""Request bodies for the /api routes."""

from __future__ import annotations

from pydantic import BaseModel, Field


class StatusRequest(BaseModel):
    status: str = Field(min_length=1)


class CreatePaymentRequest(BaseModel):
    quotation_id: str
    method: str
    user_id: str | None = None


class ReceiverRequest(BaseModel):
    receiver_name: str | None = None
    receiver_phone: str | None = None
    receiver_address: str | None = None
    user_id: str | None = None
    save_for_later: bool = False
    existing_receiver_id: str | None = None


class LabelRequest(BaseModel):
    label: str | None = None


class SelectOptionRequest(BaseModel):
    option: int


class ApprovalRequest(BaseModel):
    approve: bool
