"""
Pydantic Schemas — Request & Response models for API validation.

Required business fields are Optional; the services report every missing
field in one validation message.
"""
from datetime import datetime
from typing import Optional, Dict, List, Any
from pydantic import BaseModel, Field


# ──────────────── One-time orders ────────────────

class CreateOrderRequest(BaseModel):
    amount: Optional[float] = Field(None, description="Amount in INR (min ₹100)")
    currency: str = "INR"
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    nuvama_code: Optional[str] = Field(None, description="Brokerage account code")
    client_id: Optional[str] = None
    account_number: Optional[str] = Field(None, description="TPV bank account number")
    ifsc_code: Optional[str] = None
    cashfree_bank_code: Optional[str] = Field(None, description="NetBanking bank code for NB-only TPV")
    return_url: Optional[str] = None
    is_new_strategy: bool = False
    strategy_type: Optional[str] = None


# ──────────────── SIP ────────────────

class SipDetails(BaseModel):
    frequency: Optional[str] = Field(None, description="daily | weekly | monthly | quarterly | yearly | custom")
    start_date: Optional[str] = Field(None, description="YYYY-MM-DD")
    end_date: Optional[str] = Field(None, description="YYYY-MM-DD, omit for open-ended")
    total_installments: Optional[int] = None


class SetupSipRequest(BaseModel):
    order_amount: Optional[float] = None
    nuvama_code: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    account_number: Optional[str] = None
    ifsc_code: Optional[str] = None
    phone_number: Optional[str] = None
    customer_email: Optional[str] = None
    sip_details: SipDetails = Field(default_factory=SipDetails)
    return_url: Optional[str] = None


class ManageSipRequest(BaseModel):
    subscription_id: Optional[str] = None
    nuvama_code: Optional[str] = None
    action: Optional[str] = Field(None, description="CANCEL | PAUSE | ACTIVATE")
    reason: Optional[str] = None


class CancelSipRequest(BaseModel):
    subscription_id: Optional[str] = None
    nuvama_code: Optional[str] = None
    reason: Optional[str] = None


class PauseResumeSipRequest(BaseModel):
    subscription_id: Optional[str] = None
    nuvama_code: Optional[str] = None
    action: Optional[str] = Field(None, description="pause | resume")
    reason: Optional[str] = None


class SipActionResponse(BaseModel):
    success: bool = True
    message: str
    data: Dict[str, Any]
    timestamp: datetime


class SipActionLogEntry(BaseModel):
    id: int
    subscription_id: str
    action: str
    reason: Optional[str] = None
    source: Optional[str] = None
    status_before: Optional[str] = None
    status_after: Optional[str] = None
    performed_at: datetime

    class Config:
        from_attributes = True


# ──────────────── Reconciliation ────────────────

class SyncError(BaseModel):
    order_id: str
    error: str


class SyncResults(BaseModel):
    total: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    not_found: int = 0
    errors: List[SyncError] = []


class SyncResponse(BaseModel):
    success: bool = True
    message: str
    client_code: str
    results: SyncResults
    timestamp: datetime


# ──────────────── Webhook ────────────────

class WebhookAck(BaseModel):
    success: bool = True
    order_id: str
    event_type: str
    status_updated: bool
    payment_status: Optional[str] = None


# ──────────────── Generic ────────────────

class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    error_code: Optional[str] = None
    timestamp: datetime
