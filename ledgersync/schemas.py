from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class SourceMessage(BaseModel):
    account_id: str
    name: str
    connection_name: str
    type: Literal["account", "card"]
    sub_type: str
    provider: str
    currency: str
    balance: Optional[float] = None


class TransactionMessage(BaseModel):
    timestamp: str
    description: str
    amount: float
    currency: str
    status: Literal["cleared", "pending"]
    transaction_type: str = ""
    transaction_category: str = ""
    transaction_classification: List[str] = Field(default_factory=list)
    normalised_provider_transaction_id: Optional[str] = None
    merchant_name: Optional[str] = None

    @property
    def external_id(self) -> Optional[str]:
        return self.normalised_provider_transaction_id or None


class TransactionsMessage(BaseModel):
    source: SourceMessage
    transactions: List[TransactionMessage] = Field(default_factory=list)


class ConnectionOut(BaseModel):
    name: str
    lastSynced: Optional[int] = None
    expiresAt: Optional[int] = None
    provider: dict
