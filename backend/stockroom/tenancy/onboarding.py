"""
Company onboarding: the first user of a new company.

Registration creates the tenant, its administrator, the trial and the
tenant's data store in one flow, so a company that can log in can also
persist data.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockroom.auth.passwords import hash_password
from stockroom.billing.events import BillingEventService
from stockroom.errors import StockroomError
from stockroom.models.base import as_utc
from stockroom.models.tenant import Tenant
from stockroom.models.user import User
from stockroom.tenancy.provisioning import TenantProvisioningService

logger = logging.getLogger(__name__)

ADMIN_ROLE = "ROLE_ADMIN"


class RegistrationConflictError(StockroomError):
    """Username, email or company name is already taken."""

    error_code = "registration_conflict"
    http_status = status.HTTP_409_CONFLICT


def normalize_company_name(name: str) -> str:
    """Collapse whitespace so "Acme  Corp " and "Acme Corp" are one company."""
    return " ".join(name.split())


def store_database_name(tenant_id: str) -> str:
    return "tenant_" + tenant_id.replace("-", "")


@dataclass(frozen=True)
class Registration:
    tenant_id: str
    username: str
    trial_end: datetime


class TenantOnboardingService:
    """
    Registers a new company with its admin user.

    Usage:
        service = TenantOnboardingService(db, provisioning)
        registration = service.register_company("Acme", "alice", "a@acme.io", "pw", trial_days=30)
    """

    def __init__(
        self,
        db_session: Session,
        provisioning: TenantProvisioningService,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self._provisioning = provisioning
        self._billing = (
            BillingEventService(db_session, clock=clock)
            if clock is not None
            else BillingEventService(db_session)
        )

    def _ensure_available(self, company_name: str, username: str, email: str) -> None:
        if self.db.query(User.id).filter(User.username == username).first():
            raise RegistrationConflictError("username_taken")
        if self.db.query(User.id).filter(User.email == email).first():
            raise RegistrationConflictError("email_taken")
        if self.db.query(Tenant.id).filter(Tenant.name == company_name).first():
            raise RegistrationConflictError("company_taken")

    def register_company(
        self,
        company_name: str,
        username: str,
        email: str,
        password: str,
        trial_days: int,
    ) -> Registration:
        """
        Create the company, its admin, the trial and the data store.

        Raises:
            RegistrationConflictError: If the username, email or company
                name is already registered
        """
        company_name = normalize_company_name(company_name)
        email = email.strip().lower()
        self._ensure_available(company_name, username, email)

        tenant_id = str(uuid.uuid4())
        tenant = Tenant(
            id=tenant_id,
            name=company_name,
            store_database=store_database_name(tenant_id),
        )
        self.db.add(tenant)
        self.db.add(User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            role=ADMIN_ROLE,
            enabled=True,
            tenant_id=tenant_id,
        ))
        try:
            self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent registration
            self.db.rollback()
            raise RegistrationConflictError("already_registered")

        tenant = self._billing.start_trial(tenant_id, trial_days)
        self._provisioning.provision_database(tenant_id, tenant.store_database)

        logger.info("Company registered", extra={
            "tenant_id": tenant_id,
            "username": username[:20],
            "trial_days": trial_days,
        })
        return Registration(
            tenant_id=tenant_id,
            username=username,
            trial_end=as_utc(tenant.trial_end),
        )
