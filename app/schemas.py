from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator


class InvoiceStatus(str, Enum):
    PAID = "paid"
    EXPIRED = "expired"


class Invoice(BaseModel):
    """One invoice returned by the payment backend's wait call"""

    label: str = Field(
        ...,
        description="Backend identifier of the invoice",
        example="c15c98b0-81fe-4864-a9c5-ffad716d466a"
    )
    description: str = Field(
        "",
        description="Invoice description; for zaps this is the JSON encoded kind 9734 request",
        example="order #1234"
    )
    bolt11: Optional[str] = Field(
        None,
        description="BOLT11 payment request",
        example="lnbc500n1pjq7u7jsp5n5jth3w6d4wjnjmup0nwlr2xfqthg8leru8yj8cyqf3sszapfxeq..."
    )
    payment_preimage: Optional[bytes] = Field(
        None,
        description="Proof of payment (backend supplies hex)"
    )
    amount_msat: Optional[int] = Field(
        None,
        description="Amount paid in millisatoshis",
        example=50000,
        ge=0
    )
    pay_index: Optional[int] = Field(
        None,
        description="Monotonic index assigned once the invoice is paid",
        example=7,
        ge=0
    )
    status: InvoiceStatus = Field(
        ...,
        description="Final invoice state",
        example="paid"
    )

    class Config:
        frozen = True

    @field_validator("amount_msat", mode="before")
    @classmethod
    def parse_msat(cls, value):
        # Older CLN versions render amounts as "50000msat"
        if isinstance(value, str) and value.endswith("msat"):
            return int(value[:-4])
        return value

    @field_validator("payment_preimage", mode="before")
    @classmethod
    def parse_preimage(cls, value):
        if isinstance(value, str):
            return bytes.fromhex(value)
        return value

    @field_validator("description", mode="before")
    @classmethod
    def parse_description(cls, value):
        return "" if value is None else value

    @classmethod
    def from_cln(cls, data: Dict[str, Any]) -> "Invoice":
        """Build from a CLN waitanyinvoice response, preferring the amount actually received"""
        amount = data.get("amount_received_msat")
        if amount is None:
            amount = data.get("amount_msat")

        return cls(
            label=str(data.get("label", "")),
            description=data.get("description"),
            bolt11=data.get("bolt11"),
            payment_preimage=data.get("payment_preimage"),
            amount_msat=amount,
            pay_index=data.get("pay_index"),
            status=data.get("status")
        )
