"""
AFIP electronic invoicing client (WSFEv1).

Talks to the authority through an HTTP web-service gateway: WSAA credentials
are obtained from `/afip/auth` using the configured certificate and key, and
every WSFE method is invoked through `/afip/requests`.

Read calls are retried with backoff; FECAESolicitar is sent exactly once.
Every call goes through a circuit breaker.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from backend.app.core.config import settings
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError, retry_async
from backend.app.schemas.fiscal import FiscalVoucherRequest, VoucherAuthorization

logger = logging.getLogger(__name__)

WSID = "wsfe"
VOUCHER_NOT_FOUND_CODE = 602
TOKEN_SAFETY_MARGIN = timedelta(minutes=5)


class AfipError(Exception):
    """Base error for tax authority calls."""


class AfipUnavailableError(AfipError):
    """Authority unreachable, timed out, or circuit open. Local state was not advanced."""


class AfipRejectedError(AfipError):
    """The authority answered and refused the request."""

    def __init__(self, message: str, errors: Optional[List[str]] = None, observations: Optional[List[str]] = None):
        self.errors = errors or []
        self.observations = observations or []
        super().__init__(message)


# Rejections are answers, not outages: they do not trip the breaker
afip_circuit_breaker = CircuitBreaker(failure_threshold=5, reset_timeout=60, ignore=(AfipRejectedError,))


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _messages(block: Optional[Dict[str, Any]], key: str) -> List[str]:
    """Flatten WSFE Errors/Observaciones blocks into "code: message" strings."""
    if not block:
        return []
    return [f"{item.get('Code')}: {item.get('Msg')}" for item in _as_list(block.get(key))]


def parse_afip_date(value) -> Optional[date]:
    if not value:
        return None
    return datetime.strptime(str(value), "%Y%m%d").date()


class AfipClient:
    """
    Async WSFEv1 client.

    Usage:
        client = AfipClient()
        last = await client.get_last_voucher_number(1, 6)
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        cuit: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        self.cuit = int(cuit or settings.afip_cuit)
        self.environment = environment or settings.afip_environment
        self.circuit_breaker = circuit_breaker or afip_circuit_breaker

        headers = {"Content-Type": "application/json"}
        if settings.afip_access_token:
            headers["Authorization"] = f"Bearer {settings.afip_access_token}"
        self._http = http_client or httpx.AsyncClient(
            base_url=settings.afip_gateway_url,
            timeout=settings.afip_timeout_seconds,
            headers=headers,
        )

        self._token: Optional[str] = None
        self._sign: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._auth_lock = asyncio.Lock()

    @property
    def _gateway_environment(self) -> str:
        return "prod" if self.environment == "production" else "dev"

    async def close(self) -> None:
        await self._http.aclose()

    # Transport

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._http.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise AfipUnavailableError(f"Timeout calling {path}: {e}") from e
        except httpx.TransportError as e:
            raise AfipUnavailableError(f"Cannot reach {path}: {e}") from e

        if response.status_code >= 500:
            raise AfipUnavailableError(f"{path} answered {response.status_code}")
        if response.status_code >= 400:
            try:
                body = response.json()
                message = body.get("message") or body.get("detail") or response.text
            except ValueError:
                message = response.text
            raise AfipRejectedError(f"{path} refused the request: {message}", errors=[str(message)])
        return response.json()

    async def _guarded_post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await self.circuit_breaker.call(self._post, path, payload)
        except CircuitOpenError as e:
            raise AfipUnavailableError("Tax authority circuit is open; try again later") from e

    async def _authenticate(self) -> Dict[str, Any]:
        """WSAA token and sign, cached until shortly before expiry."""
        async with self._auth_lock:
            now = datetime.now(timezone.utc)
            if self._token and self._token_expires_at and now < self._token_expires_at - TOKEN_SAFETY_MARGIN:
                return {"Token": self._token, "Sign": self._sign, "Cuit": self.cuit}

            payload = {
                "environment": self._gateway_environment,
                "wsid": WSID,
                "tax_id": self.cuit,
            }
            if settings.afip_cert_path and settings.afip_key_path:
                payload["cert"] = Path(settings.afip_cert_path).read_text()
                payload["key"] = Path(settings.afip_key_path).read_text()
            if settings.afip_passphrase:
                payload["passphrase"] = settings.afip_passphrase

            data = await retry_async(self._guarded_post, "/afip/auth", payload, retry_on=(AfipUnavailableError,))

            self._token = data["token"]
            self._sign = data["sign"]
            expiration = data.get("expiration")
            if expiration:
                expires_at = datetime.fromisoformat(expiration)
                if expires_at.tzinfo is None:
                    expires_at = expires_at.replace(tzinfo=timezone.utc)
            else:
                expires_at = now + timedelta(hours=12)
            self._token_expires_at = expires_at
            logger.info("Obtained WSAA credentials for %s valid until %s", WSID, expires_at.isoformat())
            return {"Token": self._token, "Sign": self._sign, "Cuit": self.cuit}

    async def _call(self, method: str, params: Optional[Dict[str, Any]] = None, retry: bool = True, auth: bool = True) -> Dict[str, Any]:
        params = dict(params or {})
        if auth:
            params["Auth"] = await self._authenticate()
        payload = {
            "environment": self._gateway_environment,
            "method": method,
            "wsid": WSID,
            "tax_id": self.cuit,
            "params": params,
        }
        if retry:
            return await retry_async(self._guarded_post, "/afip/requests", payload, retry_on=(AfipUnavailableError,))
        return await self._guarded_post("/afip/requests", payload)

    # WSFE methods

    async def get_last_voucher_number(self, point_of_sale: int, voucher_type: int) -> int:
        """Last authorized number for the point of sale / voucher type pair (0 when none)."""
        data = await self._call("FECompUltimoAutorizado", {"PtoVta": point_of_sale, "CbteTipo": voucher_type})
        result = data.get("FECompUltimoAutorizadoResult", {})
        errors = _messages(result.get("Errors"), "Err")
        if errors:
            raise AfipRejectedError("Could not read last voucher number", errors=errors)
        return int(result.get("CbteNro") or 0)

    async def create_voucher(self, request: FiscalVoucherRequest) -> VoucherAuthorization:
        """
        Request a CAE for one voucher. Sent once, never retried.

        Raises:
            AfipRejectedError: the authority refused the voucher
            AfipUnavailableError: the outcome is unknown
        """
        detail = request.to_wire()
        params = {
            "FeCAEReq": {
                "FeCabReq": {
                    "CantReg": detail.pop("CantReg"),
                    "PtoVta": detail["PtoVta"],
                    "CbteTipo": detail["CbteTipo"],
                },
                "FeDetReq": {"FECAEDetRequest": detail},
            }
        }
        if "Iva" in detail:
            detail["Iva"] = {"AlicIva": detail["Iva"]}

        data = await self._call("FECAESolicitar", params, retry=False)
        result = data.get("FECAESolicitarResult", {})

        errors = _messages(result.get("Errors"), "Err")
        details = _as_list((result.get("FeDetResp") or {}).get("FECAEDetResponse"))
        first = details[0] if details else {}
        observations = _messages(first.get("Observaciones"), "Obs")

        if errors or first.get("Resultado") != "A" or not first.get("CAE"):
            raise AfipRejectedError(
                "Voucher rejected by the tax authority",
                errors=errors,
                observations=observations,
            )

        return VoucherAuthorization(
            cae=str(first["CAE"]),
            cae_expiry=parse_afip_date(first.get("CAEFchVto")),
            voucher_number=int(first.get("CbteDesde") or request.voucher_from),
            observations=observations,
        )

    async def get_voucher_info(self, voucher_number: int, point_of_sale: int, voucher_type: int) -> Optional[Dict[str, Any]]:
        """Issued voucher as the authority sees it, or None if it does not exist."""
        data = await self._call(
            "FECompConsultar",
            {"FeCompConsReq": {"CbteNro": voucher_number, "PtoVta": point_of_sale, "CbteTipo": voucher_type}},
        )
        result = data.get("FECompConsultarResult", {})
        errors = _as_list((result.get("Errors") or {}).get("Err"))
        if any(int(err.get("Code", 0)) == VOUCHER_NOT_FOUND_CODE for err in errors):
            return None
        if errors:
            raise AfipRejectedError("Could not query voucher", errors=_messages(result.get("Errors"), "Err"))
        return result.get("ResultGet")

    async def _param_list(self, method: str, key: str) -> List[Dict[str, Any]]:
        data = await self._call(method)
        result = data.get(f"{method}Result", {})
        return _as_list((result.get("ResultGet") or {}).get(key))

    async def get_voucher_types(self) -> List[Dict[str, Any]]:
        return await self._param_list("FEParamGetTiposCbte", "CbteTipo")

    async def get_document_types(self) -> List[Dict[str, Any]]:
        return await self._param_list("FEParamGetTiposDoc", "DocTipo")

    async def get_aliquot_types(self) -> List[Dict[str, Any]]:
        return await self._param_list("FEParamGetTiposIva", "IvaTipo")

    async def get_server_status(self) -> Dict[str, Any]:
        """FEDummy: AppServer / DbServer / AuthServer health, no credentials needed."""
        data = await self._call("FEDummy", auth=False)
        return data.get("FEDummyResult", {})

    @staticmethod
    def format_date(afip_date: str) -> str:
        """YYYYMMDD -> YYYY-MM-DD."""
        return parse_afip_date(afip_date).isoformat()


_afip_client: Optional[AfipClient] = None


def get_afip_client() -> AfipClient:
    """Process-wide client (keeps the WSAA token cache and connection pool)."""
    global _afip_client
    if _afip_client is None:
        _afip_client = AfipClient()
    return _afip_client


async def close_afip_client() -> None:
    """Release the process-wide client's connections (application shutdown)."""
    global _afip_client
    if _afip_client is not None:
        await _afip_client.close()
        _afip_client = None
