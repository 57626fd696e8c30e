"""Billing engine configuration."""

from decimal import Decimal

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Billing configuration.

    Lookup tables (office codes, currencies, payment methods) live here
    rather than in module constants so deployments and tests can inject
    their own.
    """

    # Invoice numbering
    office_codes: dict[str, str] = Field(
        default_factory=lambda: {
            "delhi": "D",
            "mumbai": "M",
            "bangalore": "B",
            "delhi (lt)": "LT",
        },
        description="Billing location (lowercase) to office code",
    )
    default_office_code: str = Field(
        default="M",
        description="Office code used for unrecognized billing locations",
        pattern=r"^[A-Z]+$",
    )
    reference_timezone: str = Field(
        default="Asia/Kolkata",
        description="Timezone that defines an invoice's calendar day",
    )
    number_allocation_retries: int = Field(
        default=3,
        description="Attempts at inserting an auto-numbered invoice before reporting a conflict",
        ge=1,
        le=10,
    )

    # Currencies
    supported_currencies: list[str] = Field(
        default_factory=lambda: ["INR", "USD", "EUR", "GBP", "AED", "JPY"],
        description="ISO codes accepted as invoice currencies",
    )
    default_currency: str = Field(
        default="INR",
        description="Currency assumed when neither entry nor matter names one",
    )
    expense_currency: str = Field(
        default="INR",
        description="Canonical currency of one-time expenses",
    )

    # Percentages
    percentage_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        description="Allowed drift from 100 for split and partner-share totals",
        ge=0,
    )

    # Payments
    payment_methods: list[str] = Field(
        default_factory=lambda: ["bank_transfer", "check", "upi", "cash"],
        description="Accepted payment methods",
    )

    # Signed document upload
    max_upload_bytes: int = Field(
        default=25 * 1024 * 1024,
        description="Largest signed invoice file accepted",
        ge=1,
    )
    allowed_upload_types: dict[str, str] = Field(
        default_factory=lambda: {
            "application/pdf": ".pdf",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
            "application/msword": ".doc",
        },
        description="Accepted MIME types and their file extensions",
    )
    upload_key_prefix: str = Field(
        default="invoices",
        description="Object store key prefix for signed invoices",
    )
    document_media_type: str = Field(
        default="application/pdf",
        description="MIME type produced by the configured document generator",
    )

    def office_code_for(self, location: str) -> str:
        """Office code for a billing location, falling back to the default."""
        return self.office_codes.get(location.strip().lower(), self.default_office_code)

    def is_supported_currency(self, currency: str) -> bool:
        return currency in self.supported_currencies
