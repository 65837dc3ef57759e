"""Pydantic schemas for swap service responses."""

from pydantic import AliasChoices, BaseModel, Field, field_validator


def _to_int(value) -> int:
    if isinstance(value, str):
        value = value.strip()
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


class ApproveTransaction(BaseModel):
    data: str
    to: str
    value: int = 0
    gas_price: int = Field(validation_alias=AliasChoices("gasPrice", "gas_price"))

    @field_validator("value", "gas_price", mode="before")
    @classmethod
    def _parse_int(cls, value):
        return _to_int(value)

    def to_tx(self) -> dict:
        return {"to": self.to, "data": self.data, "value": self.value, "gasPrice": self.gas_price}


class SwapTransaction(BaseModel):
    from_: str = Field(validation_alias=AliasChoices("from", "from_"))
    to: str
    data: str
    value: int = 0
    gas_price: int = Field(validation_alias=AliasChoices("gasPrice", "gas_price"))
    gas: int = 0

    @field_validator("value", "gas_price", "gas", mode="before")
    @classmethod
    def _parse_int(cls, value):
        return _to_int(value)

    def to_tx(self) -> dict:
        tx = {"to": self.to, "data": self.data, "value": self.value, "gasPrice": self.gas_price}
        if self.gas:
            tx["gas"] = self.gas
        return tx


class SwapResponse(BaseModel):
    tx: SwapTransaction
    destination_amount: int = Field(
        validation_alias=AliasChoices("dstAmount", "destinationAmount", "toAmount", "destination_amount")
    )

    @field_validator("destination_amount", mode="before")
    @classmethod
    def _parse_int(cls, value):
        return _to_int(value)


class SwapParams(BaseModel):
    src: str
    dst: str
    amount: int = Field(gt=0)  # base units of src
    from_address: str
    slippage: float = Field(default=1.0, gt=0, le=50)
    disable_estimate: bool = False
    allow_partial_fill: bool = False

    def to_query(self) -> dict:
        return {
            "src": self.src,
            "dst": self.dst,
            "amount": str(self.amount),
            "from": self.from_address,
            "slippage": self.slippage,
            "disableEstimate": str(self.disable_estimate).lower(),
            "allowPartialFill": str(self.allow_partial_fill).lower(),
        }


class SwapQuote(BaseModel):
    src: str
    dst: str
    amount: int
    destination_amount: int
    transaction: SwapTransaction


class AllowanceResponse(BaseModel):
    allowance: int

    @field_validator("allowance", mode="before")
    @classmethod
    def _parse_int(cls, value):
        return _to_int(value)
