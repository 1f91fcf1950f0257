from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy.orm import Session

from amcpay import billing
from amcpay.auth import verify_token
from amcpay.config import Settings, get_settings
from amcpay.database import get_db

router = APIRouter(prefix="/razorpay")


# Fields are optional here so a missing one is reported as a 400
# by the billing layer rather than as a schema error.
class CreateOrderRequest(BaseModel):
    amcFormId: Optional[str] = None
    systemCount: Any = None
    customerName: Optional[str] = None
    customerEmail: Optional[str] = None
    customerPhone: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    amc_form_id: Optional[str] = None


@router.post("/create-order")
def create_order_api(
    request: CreateOrderRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    user=Depends(verify_token),
):
    return billing.create_order(
        db,
        settings,
        order_form_id=request.amcFormId,
        system_count=request.systemCount,
        customer_name=request.customerName,
        customer_email=request.customerEmail,
        customer_phone=request.customerPhone,
    )


@router.post("/verify-payment")
def verify_payment_api(
    request: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return billing.verify_payment(
        db,
        settings,
        gateway_order_id=request.razorpay_order_id,
        gateway_payment_id=request.razorpay_payment_id,
        signature=request.razorpay_signature,
        order_form_id=request.amc_form_id,
        enqueue=background_tasks.add_task,
    )


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_razorpay_signature: str = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    payload = await request.body()
    # The raw body is needed for the signature; the store work stays off the event loop
    return await run_in_threadpool(
        billing.handle_webhook,
        db, settings, payload, x_razorpay_signature, enqueue=background_tasks.add_task,
    )


@router.get("/payment-status/{payment_id}")
def payment_status_api(
    payment_id: str,
    db: Session = Depends(get_db),
    user=Depends(verify_token),
):
    return billing.get_payment_status(db, payment_id)
