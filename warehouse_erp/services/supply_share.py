"""Time-boxed, optionally access-limited share links for external suppliers.

One link row exists per purchase order. Re-sharing while the link is still
usable returns it unchanged; otherwise the row is re-minted in place with a
fresh share code and a zeroed access counter.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from flask import current_app
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from warehouse_erp.extensions import db
from warehouse_erp.models import (
    PurchaseOrder,
    ShareLinkStatus,
    SupplyShareAccess,
    SupplyShareLink,
)
from warehouse_erp.services.audit_service import record_audit

logger = logging.getLogger(__name__)

SHARE_CODE_LENGTH = 16
EXTRACT_CODE_LENGTH = 4
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz23456789"


class ShareAccessDenial(str, Enum):
    NOT_FOUND = "not_found"
    DISABLED = "disabled"
    EXPIRED = "expired"
    ACCESS_LIMIT_REACHED = "access_limit_reached"
    EXTRACT_CODE_MISMATCH = "extract_code_mismatch"
    OPERATION_FAILED = "operation_failed"


DENIAL_MESSAGES = {
    ShareAccessDenial.NOT_FOUND: "share link does not exist",
    ShareAccessDenial.DISABLED: "share link has been disabled",
    ShareAccessDenial.EXPIRED: "share link has expired",
    ShareAccessDenial.ACCESS_LIMIT_REACHED: "share link has reached its access limit",
    ShareAccessDenial.EXTRACT_CODE_MISMATCH: "extract code is incorrect",
    ShareAccessDenial.OPERATION_FAILED: "share link could not be verified, please try again",
}


@dataclass(frozen=True)
class ShareConfig:
    expires_in_hours: int
    extract_code: str | None = None
    # Only consulted when extract_code is None: generate one, or share without a code.
    auto_extract_code: bool = True
    access_limit: int | None = None


@dataclass(frozen=True)
class ShareLinkInfo:
    share_code: str
    extract_code: str | None
    share_url: str
    expires_at: datetime
    access_limit: int | None = None
    access_count: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "share_code": self.share_code,
            "extract_code": self.extract_code,
            "share_url": self.share_url,
            "expires_at": self.expires_at.isoformat(),
            "access_limit": self.access_limit,
            "access_count": self.access_count,
        }


@dataclass(frozen=True)
class ShareVerifyResult:
    success: bool
    purchase_order_id: int | None = None
    reason: ShareAccessDenial | None = None
    message: str | None = None
    share_info: ShareLinkInfo | None = None

    @classmethod
    def denied(cls, reason: ShareAccessDenial) -> ShareVerifyResult:
        return cls(success=False, reason=reason, message=DENIAL_MESSAGES[reason])


def generate_random_code(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def user_fingerprint(ip_address: str | None, user_agent: str | None) -> str:
    combined = f"{ip_address or ''}|{user_agent or ''}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SupplyShareManager:
    def __init__(
        self,
        base_url: str,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return as_utc(self._clock())

    def share_url(self, share_code: str) -> str:
        return f"{self.base_url}/supply/{share_code}"

    def build_info(self, link: SupplyShareLink) -> ShareLinkInfo:
        return ShareLinkInfo(
            share_code=link.share_code,
            extract_code=link.extract_code,
            share_url=self.share_url(link.share_code),
            expires_at=as_utc(link.expires_at),
            access_limit=link.access_limit,
            access_count=link.access_count,
        )

    def is_usable(self, link: SupplyShareLink) -> bool:
        if link.status != ShareLinkStatus.ACTIVE:
            return False
        if as_utc(link.expires_at) <= self.now():
            return False
        return link.access_limit is None or link.access_count < link.access_limit

    def _find_by_order(self, purchase_order_id: int) -> SupplyShareLink | None:
        return db.session.scalar(
            select(SupplyShareLink).where(SupplyShareLink.purchase_order_id == purchase_order_id)
        )

    def _find_by_code(self, share_code: str) -> SupplyShareLink | None:
        return db.session.scalar(select(SupplyShareLink).where(SupplyShareLink.share_code == share_code))

    def _unused_share_code(self) -> str:
        while True:
            code = generate_random_code(SHARE_CODE_LENGTH)
            if self._find_by_code(code) is None:
                return code

    def generate_share_link(
        self,
        purchase_order_id: int,
        config: ShareConfig,
        *,
        force_new: bool = False,
        actor_user_id: int | None = None,
    ) -> ShareLinkInfo | None:
        """Return the order's usable link, or mint one replacing any stale link.

        ``force_new`` rotates the code even when the current link is still usable.
        Returns ``None`` when the store could not be updated.
        """
        try:
            existing = self._find_by_order(purchase_order_id)
            if existing is not None and not force_new and self.is_usable(existing):
                return self.build_info(existing)

            if config.extract_code is not None:
                extract_code = config.extract_code
            elif config.auto_extract_code:
                extract_code = generate_random_code(EXTRACT_CODE_LENGTH)
            else:
                extract_code = None

            now = self.now()
            link = existing or SupplyShareLink(purchase_order_id=purchase_order_id)
            before = self.build_info(existing).to_dict() if existing is not None else None
            link.share_code = self._unused_share_code()
            link.extract_code = extract_code
            link.expires_at = now + timedelta(hours=config.expires_in_hours)
            link.access_limit = config.access_limit
            link.access_count = 0
            link.unique_user_count = 0
            link.status = ShareLinkStatus.ACTIVE
            link.created_by_user_id = actor_user_id
            link.created_at = now
            if existing is None:
                db.session.add(link)

            db.session.flush()
            info = self.build_info(link)
            record_audit(
                entity_type="supply_share_link",
                entity_id=str(purchase_order_id),
                action="rotate" if existing is not None else "create",
                before=before,
                after=info.to_dict(),
                actor_user_id=actor_user_id,
            )
            db.session.commit()
        except IntegrityError:
            # A concurrent share request for the same order won the insert.
            db.session.rollback()
            logger.info("concurrent share link creation for purchase order %s", purchase_order_id)
            existing = self._find_by_order(purchase_order_id)
            return self.build_info(existing) if existing is not None else None
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("failed to generate share link for purchase order %s", purchase_order_id)
            return None

        logger.info("share link %s issued for purchase order %s", info.share_code, purchase_order_id)
        return info

    def get_share_info(self, purchase_order_id: int) -> ShareLinkInfo | None:
        link = self._find_by_order(purchase_order_id)
        if link is None or link.status != ShareLinkStatus.ACTIVE or as_utc(link.expires_at) <= self.now():
            return None
        return self.build_info(link)

    def verify_share_access(
        self,
        share_code: str,
        extract_code: str | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ShareVerifyResult:
        """Check a share code and count the access on success.

        Denial reasons are checked in a fixed order: not found, disabled,
        expired, access limit, extract code.
        """
        try:
            link = self._find_by_code(share_code)
            if link is None:
                return ShareVerifyResult.denied(ShareAccessDenial.NOT_FOUND)
            if link.status != ShareLinkStatus.ACTIVE:
                return ShareVerifyResult.denied(ShareAccessDenial.DISABLED)
            if as_utc(link.expires_at) <= self.now():
                return ShareVerifyResult.denied(ShareAccessDenial.EXPIRED)
            if link.access_limit is not None and link.access_count >= link.access_limit:
                return ShareVerifyResult.denied(ShareAccessDenial.ACCESS_LIMIT_REACHED)
            if link.extract_code and not hmac.compare_digest(
                link.extract_code.encode("utf-8"), (extract_code or "").encode("utf-8")
            ):
                return ShareVerifyResult.denied(ShareAccessDenial.EXTRACT_CODE_MISMATCH)

            counted = db.session.execute(
                update(SupplyShareLink)
                .where(
                    SupplyShareLink.id == link.id,
                    SupplyShareLink.status == ShareLinkStatus.ACTIVE,
                    or_(
                        SupplyShareLink.access_limit.is_(None),
                        SupplyShareLink.access_count < SupplyShareLink.access_limit,
                    ),
                )
                .values(access_count=SupplyShareLink.access_count + 1)
                .execution_options(synchronize_session=False)
            )
            if counted.rowcount == 0:
                db.session.rollback()
                db.session.refresh(link)
                if link.status != ShareLinkStatus.ACTIVE:
                    return ShareVerifyResult.denied(ShareAccessDenial.DISABLED)
                return ShareVerifyResult.denied(ShareAccessDenial.ACCESS_LIMIT_REACHED)

            self._record_visitor(link, ip_address, user_agent)
            db.session.commit()
            db.session.refresh(link)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("share verification failed for share code %s", share_code)
            return ShareVerifyResult.denied(ShareAccessDenial.OPERATION_FAILED)

        return ShareVerifyResult(
            success=True,
            purchase_order_id=link.purchase_order_id,
            share_info=self.build_info(link),
        )

    def _record_visitor(self, link: SupplyShareLink, ip_address: str | None, user_agent: str | None) -> None:
        fingerprint = user_fingerprint(ip_address, user_agent)
        now = self.now()
        visited = db.session.execute(
            update(SupplyShareAccess)
            .where(
                SupplyShareAccess.share_code == link.share_code,
                SupplyShareAccess.user_fingerprint == fingerprint,
            )
            .values(last_access_at=now, access_count=SupplyShareAccess.access_count + 1)
            .execution_options(synchronize_session=False)
        )
        if visited.rowcount:
            return

        try:
            with db.session.begin_nested():
                db.session.add(
                    SupplyShareAccess(
                        share_code=link.share_code,
                        user_fingerprint=fingerprint,
                        ip_address=ip_address,
                        user_agent=(user_agent or "")[:500] or None,
                        first_access_at=now,
                        last_access_at=now,
                        access_count=1,
                    )
                )
        except IntegrityError:
            # Same visitor inserted concurrently; their row already counts them.
            return

        db.session.execute(
            update(SupplyShareLink)
            .where(SupplyShareLink.id == link.id)
            .values(unique_user_count=SupplyShareLink.unique_user_count + 1)
            .execution_options(synchronize_session=False)
        )

    def disable_share_link(self, purchase_order_id: int, *, actor_user_id: int | None = None) -> bool:
        """Disable the order's link. Returns False when there was nothing active to disable."""
        try:
            link = self._find_by_order(purchase_order_id)
            if link is None or link.status != ShareLinkStatus.ACTIVE:
                return False
            link.disable()
            record_audit(
                entity_type="supply_share_link",
                entity_id=str(purchase_order_id),
                action="disable",
                before={"share_code": link.share_code, "status": ShareLinkStatus.ACTIVE.value},
                after={"share_code": link.share_code, "status": ShareLinkStatus.DISABLED.value},
                actor_user_id=actor_user_id,
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("failed to disable share link for purchase order %s", purchase_order_id)
            return False
        logger.info("share link disabled for purchase order %s", purchase_order_id)
        return True

    def get_access_statistics(self, share_code: str) -> dict[str, object]:
        link = self._find_by_code(share_code)
        if link is None:
            return {"total_access": 0, "unique_users": 0, "access_limit": None, "access_list": []}

        rows = db.session.execute(
            select(SupplyShareAccess)
            .where(SupplyShareAccess.share_code == share_code)
            .order_by(SupplyShareAccess.first_access_at.desc(), SupplyShareAccess.id.desc())
        ).scalars()
        return {
            "total_access": link.access_count,
            "unique_users": link.unique_user_count,
            "access_limit": link.access_limit,
            "access_list": [
                {
                    "ip_address": row.ip_address,
                    "user_agent": row.user_agent,
                    "first_access_at": as_utc(row.first_access_at).isoformat(),
                    "last_access_at": as_utc(row.last_access_at).isoformat(),
                    "access_count": row.access_count,
                }
                for row in rows
            ],
        }

    def get_share_history(self, purchase_order_id: int | None = None) -> list[dict[str, object]]:
        stmt = (
            select(SupplyShareLink, PurchaseOrder)
            .join(PurchaseOrder, PurchaseOrder.id == SupplyShareLink.purchase_order_id)
            .order_by(SupplyShareLink.created_at.desc(), SupplyShareLink.id.desc())
        )
        if purchase_order_id is not None:
            stmt = stmt.where(SupplyShareLink.purchase_order_id == purchase_order_id)

        history: list[dict[str, object]] = []
        for link, order in db.session.execute(stmt).all():
            operator = order.operator
            history.append(
                {
                    "id": link.id,
                    "share_code": link.share_code,
                    "purchase_order_id": link.purchase_order_id,
                    "order_number": order.order_number,
                    "created_by": (operator.name or operator.email) if operator else None,
                    "expires_at": as_utc(link.expires_at).isoformat(),
                    "status": link.status.value,
                    "is_usable": self.is_usable(link),
                    "access_count": link.access_count,
                    "unique_user_count": link.unique_user_count,
                    "access_limit": link.access_limit,
                    "created_at": as_utc(link.created_at).isoformat(),
                }
            )
        return history

    @staticmethod
    def generate_share_text(share_info: ShareLinkInfo, order_number: str) -> str:
        expire_text = share_info.expires_at.strftime("%Y-%m-%d")
        extract_text = f" Extract code: {share_info.extract_code}" if share_info.extract_code else ""
        return (
            f"Purchase order supply records shared from the ERP system: {order_number}\n"
            f"Link: {share_info.share_url}{extract_text}\n"
            f"Valid until: {expire_text}\n"
            "--Shared from the ERP management system"
        )


def get_share_manager() -> SupplyShareManager:
    return current_app.extensions["supply_share_manager"]
