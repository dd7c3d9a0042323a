"""
Fiscal Invoicing Service (Domain Logic).

Takes a sale from UNINVOICED to INVOICED, talking to the tax authority at
most once per sale.

Flow of generate_invoice_for_sale:
1. Load sale with customer and items
2. Guards: not found, not a white sale, already authorized
3. Validate (all errors at once, no authority call on failure)
4. Take the numbering lock for (point of sale, voucher type)
5. Re-read the sale under the lock and re-check the guards
6. Last authorized number + 1, map, submit once
7. Persist the authorization in a single commit

Step 7 failing after a CAE was issued leaves the sale AUTHORIZED_UNRECORDED
with the payload attached; it is never resubmitted.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from redis.exceptions import LockError, RedisError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.app.core.config import settings
from backend.app.core.exceptions import FiscalStateError, ResourceNotFoundError
from backend.app.core.redis_client import fiscal_lock_name
from backend.app.domain.fiscal import codes
from backend.app.domain.fiscal.afip_client import AfipClient, AfipError, AfipRejectedError, AfipUnavailableError
from backend.app.domain.fiscal.fiscal_utils import full_invoice_number
from backend.app.domain.fiscal.mappers import map_sale_to_fiscal_request, validate_sale_for_fiscal_submission
from backend.app.domain.money import to_money
from backend.app.models.enums import FiscalStatus, SaleStatus
from backend.app.models.sale import Sale
from backend.app.schemas.fiscal import (
    FiscalErrorKind,
    FiscalResult,
    InvoiceStatusResponse,
    ServerStatusResponse,
    VoucherAuthorization,
)
from backend.app.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)


def _failure(kind: FiscalErrorKind, error: str, details: Any = None, **fields) -> FiscalResult:
    return FiscalResult(success=False, error_kind=kind, error=error, details=details, **fields)


class FiscalService:
    """
    Orchestrates electronic invoicing for sales.

    Args:
        afip_client: Authority client
        redis: Redis client used for the numbering locks
    """

    def __init__(self, afip_client: AfipClient, redis):
        self.afip_client = afip_client
        self.redis = redis

    async def _load_sale(self, db: AsyncSession, sale_id: int, refresh: bool = False) -> Optional[Sale]:
        query = (
            select(Sale)
            .options(selectinload(Sale.customer), selectinload(Sale.items))
            .where(Sale.id == sale_id)
        )
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    def _check_eligibility(sale: Sale) -> Optional[FiscalResult]:
        if not sale.is_white_invoice:
            return _failure(
                FiscalErrorKind.NOT_ELIGIBLE,
                "Sale is not a formal (white) sale and cannot be invoiced",
            )
        if sale.status == SaleStatus.CANCELLED:
            return _failure(FiscalErrorKind.NOT_ELIGIBLE, "Cancelled sales cannot be invoiced")

        if sale.auth_code or sale.fiscal_status != FiscalStatus.UNINVOICED:
            details = {
                "cae": sale.auth_code,
                "invoice_number": sale.invoice_number,
                "full_number": sale.full_number,
                "fiscal_status": sale.fiscal_status.value if sale.fiscal_status else None,
            }
            if sale.fiscal_status == FiscalStatus.AUTHORIZED_UNRECORDED and sale.pending_authorization:
                details["cae"] = sale.pending_authorization.get("cae")
                details["pending_authorization"] = sale.pending_authorization
                return _failure(
                    FiscalErrorKind.ALREADY_INVOICED,
                    "Sale has an authorization pending reconciliation",
                    details,
                )
            return _failure(FiscalErrorKind.ALREADY_INVOICED, "Sale is already invoiced", details)
        return None

    async def generate_invoice_for_sale(self, db: AsyncSession, sale_id: int) -> FiscalResult:
        """
        Request a CAE for a sale and record it.

        Returns:
            FiscalResult; expected failures carry an error_kind instead of raising
        """
        sale = await self._load_sale(db, sale_id)
        if sale is None:
            return _failure(FiscalErrorKind.NOT_FOUND, "Sale not found", {"sale_id": sale_id})

        blocked = self._check_eligibility(sale)
        if blocked:
            return blocked

        validation = validate_sale_for_fiscal_submission(sale)
        if not validation.is_valid:
            logger.info("Sale %s failed fiscal validation: %s", sale_id, validation.errors)
            return _failure(FiscalErrorKind.VALIDATION, "Sale data is not valid for invoicing", validation.errors)

        point_of_sale = int(sale.point_of_sale)
        voucher_type = codes.voucher_type_code(sale.invoice_type)
        lock_name = fiscal_lock_name(point_of_sale, voucher_type)
        lock = self.redis.lock(
            lock_name,
            timeout=settings.fiscal_lock_ttl_seconds,
            blocking_timeout=settings.fiscal_lock_wait_seconds,
        )

        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.error("Could not reach Redis for fiscal lock %s: %s", lock_name, e)
            return _failure(FiscalErrorKind.LOCK_TIMEOUT, "Numbering lock unavailable, try again later")
        if not acquired:
            logger.warning("Timed out waiting for fiscal lock %s (sale %s)", lock_name, sale_id)
            return _failure(
                FiscalErrorKind.LOCK_TIMEOUT,
                "Another invoice is being issued for this point of sale, try again later",
                {"lock": lock_name},
            )

        try:
            return await self._invoice_locked(db, sale_id, point_of_sale, voucher_type, lock)
        finally:
            try:
                await lock.release()
            except LockError as e:
                logger.warning("Fiscal lock %s expired before release: %s", lock_name, e)

    async def _invoice_locked(
        self, db: AsyncSession, sale_id: int, point_of_sale: int, voucher_type: int, lock
    ) -> FiscalResult:
        sale = await self._load_sale(db, sale_id, refresh=True)
        if sale is None:
            return _failure(FiscalErrorKind.NOT_FOUND, "Sale not found", {"sale_id": sale_id})
        blocked = self._check_eligibility(sale)
        if blocked:
            return blocked

        try:
            last_number = await self.afip_client.get_last_voucher_number(point_of_sale, voucher_type)
        except AfipError as e:
            logger.error("Could not read last voucher number for %s/%s: %s", point_of_sale, voucher_type, e)
            return self._authority_failure(e)

        next_number = last_number + 1
        request = map_sale_to_fiscal_request(sale, next_number)
        # The number is only ours while the lock is; never submit without it
        try:
            await lock.extend(settings.fiscal_lock_ttl_seconds, replace_ttl=True)
        except (LockError, RedisError) as e:
            logger.error("Lost fiscal lock %s before submitting sale %s: %s", lock.name, sale_id, e)
            return _failure(
                FiscalErrorKind.LOCK_TIMEOUT,
                "Numbering lock expired before submission, try again",
                {"lock": lock.name},
            )

        logger.info("Submitting voucher for sale %s: %s", sale_id, request.to_wire())

        try:
            authorization = await self.afip_client.create_voucher(request)
        except AfipRejectedError as e:
            logger.error("Voucher for sale %s rejected: %s %s", sale_id, e.errors, e.observations)
            await log_event(
                db,
                action=AuditAction.INVOICE_REJECTED,
                entity_type="sale",
                entity_id=sale_id,
                metadata={"voucher_number": next_number, "errors": e.errors, "observations": e.observations},
            )
            return self._authority_failure(e)
        except AfipUnavailableError as e:
            logger.error("Voucher submission for sale %s had no answer: %s", sale_id, e)
            authorization = await self._recover_unanswered_submission(request, next_number, point_of_sale, voucher_type)
            if authorization is None:
                return self._authority_failure(e)

        full_number = full_invoice_number(sale.invoice_type or "FACTURA_B", point_of_sale, authorization.voucher_number)
        return await self._record_authorization(db, sale, authorization, full_number, point_of_sale, voucher_type)

    async def _recover_unanswered_submission(
        self, request, number: int, point_of_sale: int, voucher_type: int
    ) -> Optional[VoucherAuthorization]:
        """
        After a submission with no answer, ask the authority whether that number was issued.

        Adopted only when the issued voucher matches what was sent.
        """
        try:
            voucher = await self.afip_client.get_voucher_info(number, point_of_sale, voucher_type)
        except AfipError as e:
            logger.error("Could not verify voucher %s/%s/%s after failed submission: %s", point_of_sale, voucher_type, number, e)
            return None
        if not voucher:
            return None

        matches = (
            int(voucher.get("DocNro", -1)) == request.document_number
            and to_money(voucher.get("ImpTotal", 0)) == to_money(request.total_amount)
        )
        if not matches or not voucher.get("CodAutorizacion"):
            logger.critical(
                "Voucher %s/%s/%s exists at the authority but does not match the submitted sale",
                point_of_sale, voucher_type, number,
            )
            return None

        logger.warning("Adopting authorization for voucher %s/%s/%s found after failed submission", point_of_sale, voucher_type, number)
        return VoucherAuthorization(
            cae=str(voucher["CodAutorizacion"]),
            cae_expiry=datetime.strptime(str(voucher["FchVto"]), "%Y%m%d").date() if voucher.get("FchVto") else None,
            voucher_number=number,
        )

    @staticmethod
    def _authority_failure(e: AfipError) -> FiscalResult:
        details: Dict[str, Any] = {"message": str(e)}
        if isinstance(e, AfipRejectedError):
            details["errors"] = e.errors
            details["observations"] = e.observations
        details["retryable"] = isinstance(e, AfipUnavailableError)
        return _failure(FiscalErrorKind.AUTHORITY_ERROR, "Tax authority did not authorize the invoice", details)

    async def _record_authorization(
        self,
        db: AsyncSession,
        sale: Sale,
        authorization: VoucherAuthorization,
        full_number: str,
        point_of_sale: int,
        voucher_type: int,
    ) -> FiscalResult:
        sale_id = sale.id
        payload = {
            "cae": authorization.cae,
            "cae_expiry": authorization.cae_expiry.isoformat() if authorization.cae_expiry else None,
            "invoice_number": authorization.voucher_number,
            "full_number": full_number,
            "point_of_sale": point_of_sale,
            "voucher_type": voucher_type,
            "authorized_at": datetime.now(timezone.utc).isoformat(),
        }

        sale.invoice_number = authorization.voucher_number
        sale.full_number = full_number
        sale.auth_code = authorization.cae
        sale.auth_code_expiry = authorization.cae_expiry
        sale.fiscal_status = FiscalStatus.INVOICED
        sale.pending_authorization = None

        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.critical(
                "CAE %s issued for sale %s (%s) but could not be recorded: %s. Manual reconciliation required.",
                authorization.cae, sale_id, full_number, e,
            )
            await self._flag_unrecorded(db, sale_id, payload)
            return _failure(
                FiscalErrorKind.AUTHORIZED_NOT_RECORDED,
                "Invoice was authorized but could not be recorded; contact support",
                payload,
                cae=authorization.cae,
                cae_expiry=authorization.cae_expiry,
                invoice_number=authorization.voucher_number,
                full_number=full_number,
            )

        await log_event(db, action=AuditAction.INVOICE_AUTHORIZED, entity_type="sale", entity_id=sale_id, metadata=payload)
        logger.info("Sale %s invoiced as %s with CAE %s", sale_id, full_number, authorization.cae)

        return FiscalResult(
            success=True,
            cae=authorization.cae,
            cae_expiry=authorization.cae_expiry,
            invoice_number=authorization.voucher_number,
            full_number=full_number,
        )

    async def _flag_unrecorded(self, db: AsyncSession, sale_id: int, payload: Dict[str, Any]) -> None:
        try:
            await db.execute(
                update(Sale)
                .where(Sale.id == sale_id)
                .values(fiscal_status=FiscalStatus.AUTHORIZED_UNRECORDED, pending_authorization=payload)
            )
            await db.commit()
            await log_event(
                db,
                action=AuditAction.AUTHORIZATION_NOT_RECORDED,
                entity_type="sale",
                entity_id=sale_id,
                metadata=payload,
            )
        except SQLAlchemyError as e:
            await db.rollback()
            logger.critical("Could not flag sale %s as AUTHORIZED_UNRECORDED: %s. Payload: %s", sale_id, e, payload)

    async def auto_invoice(self, db: AsyncSession, sale_id: int) -> Optional[FiscalResult]:
        """Invoice a confirmed white sale right after creation; None when it does not apply."""
        sale = await self._load_sale(db, sale_id)
        if sale is None or not sale.is_white_invoice or sale.status != SaleStatus.CONFIRMED:
            return None
        return await self.generate_invoice_for_sale(db, sale_id)

    async def reconcile_authorization(self, db: AsyncSession, sale_id: int) -> FiscalResult:
        """Record a pending authorization onto its sale (manual repair)."""
        sale = await self._load_sale(db, sale_id)
        if sale is None:
            raise ResourceNotFoundError("Sale", sale_id)
        if sale.fiscal_status != FiscalStatus.AUTHORIZED_UNRECORDED or not sale.pending_authorization:
            raise FiscalStateError(
                "Sale has no pending authorization to reconcile",
                details={"sale_id": sale_id, "fiscal_status": sale.fiscal_status.value},
            )

        pending = dict(sale.pending_authorization)
        expiry = pending.get("cae_expiry")
        sale.invoice_number = pending["invoice_number"]
        sale.full_number = pending["full_number"]
        sale.auth_code = pending["cae"]
        sale.auth_code_expiry = datetime.fromisoformat(expiry).date() if expiry else None
        sale.fiscal_status = FiscalStatus.INVOICED
        sale.pending_authorization = None
        await db.commit()

        await log_event(
            db,
            action=AuditAction.AUTHORIZATION_RECONCILED,
            entity_type="sale",
            entity_id=sale_id,
            metadata=pending,
        )
        logger.info("Reconciled pending authorization %s onto sale %s", pending["cae"], sale_id)
        return FiscalResult(
            success=True,
            cae=pending["cae"],
            cae_expiry=sale.auth_code_expiry,
            invoice_number=pending["invoice_number"],
            full_number=pending["full_number"],
        )

    async def check_invoice_status(self, db: AsyncSession, sale_id: int) -> InvoiceStatusResponse:
        """Authority-side status of an issued invoice. Diagnostic only."""
        sale = await self._load_sale(db, sale_id)
        if sale is None:
            raise ResourceNotFoundError("Sale", sale_id)
        if not sale.invoice_number:
            raise FiscalStateError("Sale has not been invoiced", details={"sale_id": sale_id})

        voucher = await self.afip_client.get_voucher_info(
            sale.invoice_number,
            int(sale.point_of_sale),
            codes.voucher_type_code(sale.invoice_type),
        )
        return InvoiceStatusResponse(
            sale_id=sale_id,
            full_number=sale.full_number,
            found=voucher is not None,
            voucher=voucher,
        )

    async def get_voucher_types(self) -> List[Dict[str, Any]]:
        return await self.afip_client.get_voucher_types()

    async def get_document_types(self) -> List[Dict[str, Any]]:
        return await self.afip_client.get_document_types()

    async def get_aliquot_types(self) -> List[Dict[str, Any]]:
        return await self.afip_client.get_aliquot_types()

    async def check_server_status(self) -> ServerStatusResponse:
        status = await self.afip_client.get_server_status()
        return ServerStatusResponse(
            app_server=status.get("AppServer"),
            db_server=status.get("DbServer"),
            auth_server=status.get("AuthServer"),
        )
