"""
PlanPocket API Client Module

REST client for the PlanPocket API. The base URL, the token store and the
underlying HTTP client are all passed in at construction; authenticated
calls take an explicit Credentials object or fall back to the one held by
the token store.
"""

import httpx
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger("planpocket.client")


class PlanPocketAPIError(Exception):
    """Non-success response from the PlanPocket API"""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


@dataclass(frozen=True)
class Credentials:
    """Bearer token issued at login or registration"""
    token: str
    user_id: Optional[str] = None

    @property
    def authorization_header(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class TokenStore(ABC):
    """Where the client keeps the current credentials"""

    @abstractmethod
    def get(self) -> Optional[Credentials]:
        pass

    @abstractmethod
    def set(self, credentials: Credentials) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class InMemoryTokenStore(TokenStore):
    """Token store that lives as long as the process"""

    def __init__(self, credentials: Optional[Credentials] = None):
        self._credentials = credentials

    def get(self) -> Optional[Credentials]:
        return self._credentials

    def set(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def clear(self) -> None:
        self._credentials = None


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class PlanPocketClient:
    """REST client for the PlanPocket API"""

    def __init__(
        self,
        base_url: str = "http://localhost:5000/api",
        token_store: Optional[TokenStore] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = 10.0
    ):
        self.base_url = base_url.rstrip("/")
        self.token_store = token_store or InMemoryTokenStore()
        self._client = http_client or httpx.Client(timeout=timeout)

    def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        credentials: Optional[Credentials] = None,
        authenticated: bool = True
    ) -> Any:
        """Send a request and unwrap the success envelope

        Returns:
            The response's data field, or the whole body when it has none

        Raises:
            PlanPocketAPIError: On a non-2xx status or an unsuccessful body
        """
        headers = {}
        if authenticated:
            credentials = credentials or self.token_store.get()
            if credentials is None:
                raise PlanPocketAPIError(401, "Not authenticated")
            headers.update(credentials.authorization_header)

        try:
            response = self._client.request(
                method,
                f"{self.base_url}{path}",
                json=_jsonable(json) if json is not None else None,
                params=_jsonable(params) if params else None,
                headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(f"PlanPocket request {method} {path} failed: {e}")
            raise PlanPocketAPIError(0, f"Connection failed: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text}

        if response.status_code >= 400 or (isinstance(body, dict) and body.get("success") is False):
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(f"PlanPocket returned {response.status_code} for {method} {path}")
            raise PlanPocketAPIError(response.status_code, message or response.reason_phrase)

        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    def _store_credentials(self, data: Dict[str, Any]) -> Credentials:
        credentials = Credentials(token=data["token"], user_id=data.get("user", {}).get("id"))
        self.token_store.set(credentials)
        return credentials

    # Auth
    def register(self, name: str, email: str, password: str) -> Credentials:
        """Register and keep the returned credentials"""
        data = self._request("POST", "/auth/register",
                             json={"name": name, "email": email, "password": password},
                             authenticated=False)
        return self._store_credentials(data)

    def login(self, email: str, password: str) -> Credentials:
        """Log in and keep the returned credentials"""
        data = self._request("POST", "/auth/login",
                             json={"email": email, "password": password},
                             authenticated=False)
        return self._store_credentials(data)

    def logout(self, credentials: Optional[Credentials] = None) -> None:
        """Tell the server, then forget the stored credentials"""
        try:
            self._request("POST", "/auth/logout", credentials=credentials)
        finally:
            self.token_store.clear()

    def get_current_user(self, credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("GET", "/auth/me", credentials=credentials)

    def update_profile(self, credentials: Optional[Credentials] = None, **fields) -> Dict[str, Any]:
        return self._request("PUT", "/auth/profile", json=fields, credentials=credentials)

    def change_password(self, current_password: str, new_password: str,
                        credentials: Optional[Credentials] = None) -> None:
        self._request("PUT", "/auth/change-password",
                      json={"current_password": current_password, "new_password": new_password},
                      credentials=credentials)

    # User
    def update_income(self, annual_income: Decimal,
                      credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("PUT", "/user/income", json={"annual_income": annual_income},
                             credentials=credentials)

    def get_dashboard(self, credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("GET", "/user/dashboard", credentials=credentials)

    # Transactions
    def list_transactions(self, credentials: Optional[Credentials] = None, **filters) -> Dict[str, Any]:
        """List transactions; filters: type, category, start_date, end_date, page, limit"""
        return self._request("GET", "/transactions", params=filters, credentials=credentials)

    def create_transaction(self, credentials: Optional[Credentials] = None, **fields) -> Dict[str, Any]:
        return self._request("POST", "/transactions", json=fields, credentials=credentials)

    def get_transaction(self, transaction_id: str,
                        credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("GET", f"/transactions/{transaction_id}", credentials=credentials)

    def update_transaction(self, transaction_id: str, credentials: Optional[Credentials] = None,
                           **fields) -> Dict[str, Any]:
        return self._request("PUT", f"/transactions/{transaction_id}", json=fields,
                             credentials=credentials)

    def delete_transaction(self, transaction_id: str,
                           credentials: Optional[Credentials] = None) -> None:
        self._request("DELETE", f"/transactions/{transaction_id}", credentials=credentials)

    # Loans
    def calculate_emi(self, principal: Decimal, annual_interest_rate_percent: Decimal,
                      term_months: int) -> Dict[str, Any]:
        """Stateless installment quote; needs no login"""
        return self._request("POST", "/loans/calculate-emi", json={
            "principal": principal,
            "annual_interest_rate_percent": annual_interest_rate_percent,
            "term_months": term_months,
        }, authenticated=False)

    def list_loans(self, credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("GET", "/loans", credentials=credentials)

    def create_loan(self, credentials: Optional[Credentials] = None, **fields) -> Dict[str, Any]:
        return self._request("POST", "/loans", json=fields, credentials=credentials)

    def get_loan(self, loan_id: str, credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("GET", f"/loans/{loan_id}", credentials=credentials)

    def update_loan(self, loan_id: str, credentials: Optional[Credentials] = None,
                    **fields) -> Dict[str, Any]:
        return self._request("PUT", f"/loans/{loan_id}", json=fields, credentials=credentials)

    def delete_loan(self, loan_id: str, credentials: Optional[Credentials] = None) -> None:
        self._request("DELETE", f"/loans/{loan_id}", credentials=credentials)

    def record_payment(self, loan_id: str, amount: Decimal, payment_date: Optional[date] = None,
                       payment_method: str = "bank_transfer", note: Optional[str] = None,
                       credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("POST", f"/loans/{loan_id}/payments", json={
            "amount": amount,
            "payment_date": payment_date,
            "payment_method": payment_method,
            "note": note,
        }, credentials=credentials)

    def get_schedule(self, loan_id: str, credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("GET", f"/loans/{loan_id}/schedule", credentials=credentials)

    # Summary
    def get_financial_summary(self, credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("GET", "/summary", credentials=credentials)

    def get_monthly_analysis(self, year: int, month: int,
                             credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("GET", f"/summary/monthly/{year}/{month}", credentials=credentials)

    def get_yearly_analysis(self, year: int, credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("GET", f"/summary/yearly/{year}", credentials=credentials)

    def get_category_breakdown(self, credentials: Optional[Credentials] = None,
                               **filters) -> Dict[str, Any]:
        return self._request("GET", "/summary/category-breakdown", params=filters,
                             credentials=credentials)

    def get_spending_trends(self, period: str = "monthly", limit: int = 12,
                            credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("GET", "/summary/spending-trends",
                             params={"period": period, "limit": limit}, credentials=credentials)

    def get_cash_flow(self, period: str, credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("GET", f"/summary/cash-flow/{period}", credentials=credentials)

    def get_financial_metrics(self, credentials: Optional[Credentials] = None) -> Dict[str, Any]:
        return self._request("GET", "/summary/metrics", credentials=credentials)

    def close(self):
        """Close the HTTP client"""
        self._client.close()
