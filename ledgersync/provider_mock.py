from fastapi import APIRouter, FastAPI, Header, HTTPException, Query, Response
from pydantic import BaseModel
from typing import Optional
import uuid
import datetime

router = APIRouter()

# Global state the tests tweak to simulate provider behaviour.
mock_state = {}

def reset_mock_state():
    mock_state.clear()
    mock_state.update({
        "cards_supported": True,
        "access_expires_in": 3600,
        "refresh_rejected": False,
        "token_requests": [],
        "failing_accounts": set(),
    })

reset_mock_state()

ACCOUNTS = [
    {
        "account_id": "acc-1",
        "account_type": "TRANSACTION",
        "display_name": "Current Account",
        "currency": "GBP",
        "account_number": {"number": "12345678", "sort_code": "01-02-03", "swift_bic": "MOCKGB21"},
        "update_timestamp": "2024-01-01T00:00:00Z",
    },
]

CARDS = [
    {
        "account_id": "card-1",
        "card_network": "VISA",
        "card_type": "CREDIT",
        "display_name": "Credit Card",
        "currency": "GBP",
        "partial_card_number": "1234",
        "update_timestamp": "2024-01-01T00:00:00Z",
    },
]

BALANCES = {
    "acc-1": {"currency": "GBP", "available": 1250.0, "current": 1250.0},
    "card-1": {"currency": "GBP", "available": -50.0, "current": 50.0},
}

class TokenRequest(BaseModel):
    grant_type: str
    client_id: str
    client_secret: str
    code: Optional[str] = None
    refresh_token: Optional[str] = None
    redirect_uri: Optional[str] = None

def _require_bearer(authorization: Optional[str]):
    if not authorization or not authorization.startswith("Bearer at_"):
        raise HTTPException(status_code=401, detail="invalid_token")

@router.post("/connect/token")
def token(req: TokenRequest):
    if req.client_id != "demo-client" or req.client_secret != "demo-secret":
        raise HTTPException(status_code=401, detail="invalid_client")
    mock_state["token_requests"].append(req.grant_type)
    if req.grant_type == "refresh_token" and mock_state["refresh_rejected"]:
        raise HTTPException(status_code=400, detail="invalid_grant")

    return {
        "access_token": f"at_{uuid.uuid4()}",
        "refresh_token": f"rt_{uuid.uuid4()}",
        "token_type": "Bearer",
        "expires_in": mock_state["access_expires_in"],
    }

@router.get("/data/v1/me")
def me(authorization: Optional[str] = Header(None)):
    _require_bearer(authorization)
    return {"results": [{
        "client_id": "demo-client",
        "credentials_id": "cred-1",
        "consent_status": "Authorised",
        "provider": {"display_name": "Mock Bank", "logo_uri": "https://example.com/mock.svg", "provider_id": "mock"},
        "privacy_policy": "Feb2021",
    }]}

@router.get("/data/v1/info")
def info(authorization: Optional[str] = Header(None)):
    _require_bearer(authorization)
    return {"results": [{"full_name": "John Doe"}]}

@router.get("/data/v1/accounts")
def accounts(authorization: Optional[str] = Header(None)):
    _require_bearer(authorization)
    return {"results": ACCOUNTS}

@router.get("/data/v1/cards")
def cards(response: Response, authorization: Optional[str] = Header(None)):
    _require_bearer(authorization)
    if not mock_state["cards_supported"]:
        response.status_code = 501
        return {"error": "endpoint_not_supported"}
    return {"results": CARDS}

@router.get("/data/v1/{kind}/{account_id}/balance")
def balance(kind: str, account_id: str, authorization: Optional[str] = Header(None)):
    _require_bearer(authorization)
    if account_id not in BALANCES:
        raise HTTPException(status_code=404, detail="account_not_found")
    return {"results": [{**BALANCES[account_id], "update_timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat()}]}

def generate_mock_txns(account_id: str, pending: bool):
    base_time = datetime.datetime(2024, 1, 10, 12, 0, tzinfo=datetime.timezone.utc)
    if pending:
        return [{
            "timestamp": base_time.isoformat(),
            "description": f"Pending purchase on {account_id}",
            "amount": -4.2,
            "currency": "GBP",
            "transaction_type": "DEBIT",
            "transaction_category": "PURCHASE",
            "transaction_classification": ["Shopping"],
        }]
    return [{
        "transaction_id": f"txn-{account_id}-1",
        "normalised_provider_transaction_id": f"npt-{account_id}-1",
        "timestamp": (base_time - datetime.timedelta(days=1)).isoformat(),
        "description": f"Coffee on {account_id}",
        "amount": -12.5,
        "currency": "GBP",
        "transaction_type": "DEBIT",
        "transaction_category": "PURCHASE",
        "transaction_classification": ["Food & Dining", "Coffee shops"],
        "merchant_name": "Mock Coffee",
    }]

@router.get("/data/v1/{kind}/{account_id}/transactions")
def transactions(
    kind: str,
    account_id: str,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    authorization: Optional[str] = Header(None),
):
    _require_bearer(authorization)
    if account_id in mock_state["failing_accounts"]:
        raise HTTPException(status_code=503, detail="provider_error")
    return {"results": generate_mock_txns(account_id, pending=False)}

@router.get("/data/v1/{kind}/{account_id}/transactions/pending")
def pending_transactions(
    kind: str,
    account_id: str,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    authorization: Optional[str] = Header(None),
):
    _require_bearer(authorization)
    return {"results": generate_mock_txns(account_id, pending=True)}

app = FastAPI(title="Mock open-banking provider")
app.include_router(router, prefix="/provider", tags=["mock-provider"])
