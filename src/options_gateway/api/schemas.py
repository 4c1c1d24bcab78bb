"""
Request models shared by the API routers.

Token symbols are checked against the configured chain by the services;
these models only enforce shape.
"""

from decimal import Decimal
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, constr

from ..types import FillRequest, OptionDescriptor, QuoteRequest, Side, TokenApproval

EXPIRATION_PATTERN = r"^\d\d\w\w\w\d\d$"
ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
QUOTE_ID_PATTERN = r"^(0x)?[a-fA-F0-9]{64}$"
DECIMAL_PATTERN = r"^[0-9]{1,}([.][0-9]*)?$"


class OptionModel(BaseModel):
    """Option series terms"""
    base: str = Field(..., min_length=1, description="Base token symbol")
    quote: str = Field(..., min_length=1, description="Quote token symbol")
    expiration: str = Field(..., pattern=EXPIRATION_PATTERN, description="Expiration label, DDMMMYY")
    strike: Decimal = Field(..., gt=0)
    type: Literal["C", "P"]

    class Config:
        extra = "forbid"

    def to_descriptor(self) -> OptionDescriptor:
        return OptionDescriptor(
            base=self.base,
            quote=self.quote,
            expiration=self.expiration.upper(),
            strike=self.strike,
            is_call=self.type == "C",
        )


class PublishQuoteModel(OptionModel):
    side: Literal["bid", "ask"]
    size: Decimal = Field(..., gt=0)
    price: Decimal = Field(..., gt=0)
    deadline: int = Field(..., description="Seconds the quote stays valid")
    taker: Optional[str] = Field(None, pattern=ADDRESS_PATTERN)

    def to_request(self) -> QuoteRequest:
        return QuoteRequest(
            option=self.to_descriptor(),
            side=Side(self.side),
            size=self.size,
            price=self.price,
            deadline=self.deadline,
            taker=self.taker,
        )


class FillQuoteModel(BaseModel):
    tradeSize: Decimal = Field(..., gt=0)
    quoteId: str = Field(..., pattern=QUOTE_ID_PATTERN)

    class Config:
        extra = "forbid"

    def to_request(self) -> FillRequest:
        return FillRequest(quote_id=self.quoteId, trade_size=self.tradeSize)


class DeleteQuotesModel(BaseModel):
    quoteIds: List[constr(pattern=QUOTE_ID_PATTERN)] = Field(..., min_length=1)

    class Config:
        extra = "forbid"


class TokenApprovalModel(BaseModel):
    token: str = Field(..., min_length=1)
    amt: Union[Literal["max"], Decimal]

    class Config:
        extra = "forbid"

    def to_approval(self) -> TokenApproval:
        return TokenApproval(token=self.token, amount=self.amt)


class VaultTradeModel(OptionModel):
    size: Decimal = Field(..., gt=0)
    direction: Literal["buy", "sell"]
    premiumLimit: Decimal = Field(..., ge=0, description="Max premium paid on buys, min received on sells")
