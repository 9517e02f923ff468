"""
Credit-owner and target-ownership resolution.

An actor either owns its balances (``SelfOwned``) or is a delegated seat whose
consumption lands on its parent organization (``DelegatedTo``). The owner is
resolved once per request and passed explicitly to every ledger call.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from sqlalchemy.orm import Session

from app.core.errors import InvalidRequest, NotFound
from app.db.models.account import Account
from app.db.models.job import JobApplication, JobPosting

logger = logging.getLogger(__name__)

APPLICATION_SCOPE = "application"
DATABASE_SCOPE = "database"


@dataclass(frozen=True)
class SelfOwned:
    account_id: int

    @property
    def actor_id(self) -> int:
        return self.account_id

    @property
    def owner_id(self) -> int:
        return self.account_id


@dataclass(frozen=True)
class DelegatedTo:
    parent_account_id: int
    actor_account_id: int

    @property
    def actor_id(self) -> int:
        return self.actor_account_id

    @property
    def owner_id(self) -> int:
        return self.parent_account_id


CreditOwner = Union[SelfOwned, DelegatedTo]


def get_account(db: Session, account_id: int) -> Account:
    account = db.query(Account).filter(Account.id == account_id).first()
    if not account:
        raise NotFound("account", account_id)
    return account


def resolve_credit_owner(db: Session, actor_id: int) -> CreditOwner:
    """Resolve the account whose balances an actor's actions draw on."""
    actor = get_account(db, actor_id)
    if actor.parent_account_id is None:
        return SelfOwned(account_id=actor.id)

    # Parent must exist; a dangling seat cannot spend anyone's credits
    get_account(db, actor.parent_account_id)
    logger.debug(f"Delegated actor resolved: actor_id={actor.id}, owner_id={actor.parent_account_id}")
    return DelegatedTo(parent_account_id=actor.parent_account_id, actor_account_id=actor.id)


def parse_target_ref(target_ref: str) -> Tuple[str, str]:
    """Split ``"application:42"`` into ``("application", "42")``."""
    kind, sep, identifier = (target_ref or "").partition(":")
    if not sep or not kind or not identifier:
        raise InvalidRequest(f"Malformed target reference: {target_ref!r}")
    return kind, identifier


def application_target(application_id: int) -> str:
    return f"application:{application_id}"


def profile_target(profile_id: int) -> str:
    return f"profile:{profile_id}"


def application_owner_id(db: Session, application_id: int) -> Optional[int]:
    """Account that posted the job an application belongs to."""
    row = (
        db.query(JobPosting.account_id)
        .join(JobApplication, JobApplication.job_posting_id == JobPosting.id)
        .filter(JobApplication.id == application_id)
        .first()
    )
    return row[0] if row else None


def resolve_reveal_scope(db: Session, owner_id: int, target_ref: str) -> str:
    """
    Classify a reveal target.

    Applications to the owner's own job postings are ``application`` scoped;
    candidate profiles found through database search are ``database`` scoped.
    Revealing someone else's application is refused as not found so the
    target's existence does not leak.
    """
    kind, identifier = parse_target_ref(target_ref)

    if kind == "application":
        try:
            application_id = int(identifier)
        except ValueError:
            raise InvalidRequest(f"Malformed application id: {identifier!r}") from None
        posting_owner = application_owner_id(db, application_id)
        if posting_owner is None or posting_owner != owner_id:
            raise NotFound("job_application", application_id)
        return APPLICATION_SCOPE

    if kind == "profile":
        try:
            profile_id = int(identifier)
        except ValueError:
            raise InvalidRequest(f"Malformed profile id: {identifier!r}") from None
        if db.query(Account.id).filter(Account.id == profile_id).first() is None:
            raise NotFound("candidate_profile", profile_id)
        return DATABASE_SCOPE

    raise InvalidRequest(f"Unsupported reveal target kind: {kind}")
