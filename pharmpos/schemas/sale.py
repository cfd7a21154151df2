from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from pharmpos.models.sale import SaleType


class SaleItemIn(BaseModel):
    inventory_id: str = Field(validation_alias=AliasChoices("inventory_id", "product_id", "id"))
    name: str = Field("", validation_alias=AliasChoices("name", "product_name"))
    quantity: int = Field(gt=0)
    price: float = Field(0.0, validation_alias=AliasChoices("price", "unit_price"))
    total: float | None = None
    is_wholesale: bool = Field(False, validation_alias=AliasChoices("is_wholesale", "isWholesale"))

    @property
    def line_total(self) -> float:
        return self.total if self.total is not None else self.quantity * self.price


class SaleCreate(BaseModel):
    id: str | None = None
    user_id: str | None = None
    total: float = 0.0
    items: list[SaleItemIn] = []
    payment_method: str = Field("Cash", validation_alias=AliasChoices("payment_method", "paymentMethod"))
    discount: float = 0.0  # percent of subtotal
    manual_discount: float = Field(0.0, validation_alias=AliasChoices("manual_discount", "manualDiscount"))
    tax_amount: float = Field(0.0, validation_alias=AliasChoices("tax_amount", "taxAmount"))

    customer_name: str = Field(
        "Walk-in Customer", validation_alias=AliasChoices("customer_name", "customerName")
    )
    customer_phone: str | None = Field(None, validation_alias=AliasChoices("customer_phone", "customerPhone"))
    business_name: str | None = Field(None, validation_alias=AliasChoices("business_name", "businessName"))
    business_address: str | None = Field(
        None, validation_alias=AliasChoices("business_address", "businessAddress")
    )

    sale_type: SaleType = Field(SaleType.RETAIL, validation_alias=AliasChoices("sale_type", "saleType"))
    transaction_id: str | None = Field(None, validation_alias=AliasChoices("transaction_id", "transactionId"))

    cashier_id: str | None = Field(None, validation_alias=AliasChoices("cashier_id", "cashierId"))
    cashier_name: str | None = Field(None, validation_alias=AliasChoices("cashier_name", "cashierName"))
    cashier_email: str | None = Field(None, validation_alias=AliasChoices("cashier_email", "cashierEmail"))

    @field_validator("customer_name", "payment_method", mode="before")
    @classmethod
    def blank_to_default(cls, v, info):
        if v in (None, ""):
            return "Walk-in Customer" if info.field_name == "customer_name" else "Cash"
        return v

    @model_validator(mode="after")
    def check_discounts(self):
        if not 0 <= self.discount <= 100:
            raise ValueError("discount must be a percentage between 0 and 100")
        if self.manual_discount < 0 or self.tax_amount < 0:
            raise ValueError("manual_discount and tax_amount must not be negative")
        return self

    @property
    def subtotal(self) -> float:
        return sum(item.line_total for item in self.items)

    @property
    def expected_total(self) -> float:
        return self.subtotal * (1 - self.discount / 100) - self.manual_discount + self.tax_amount


class SaleResult(BaseModel):
    success: bool = True
    sale_id: str = Field(serialization_alias="saleId")
    transaction_id: str = Field(serialization_alias="transactionId")
    receipt_id: str = Field(serialization_alias="receiptId")
    subtotal: float
