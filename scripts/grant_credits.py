"""
Grant purchased credits to an account outside the payment flow (support refunds, promotions).
Run: python -m scripts.grant_credits recruiter@example.com resume_contact 10 --days 90 --reason "support ticket"
"""
import argparse
import sys
import os
import logging
from datetime import timedelta

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.clock import utcnow
from app.core.errors import LedgerError
from app.db.session import SessionLocal
from app.db.models.account import Account
from app.services.balance_store import grant_credits
from app.services.ownership import resolve_credit_owner

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def grant(email: str, credit_type: str, amount: int, days: int = None, reason: str = "") -> bool:
    """Credit the organization that owns ``email``'s balances."""
    db = SessionLocal()
    try:
        account = db.query(Account).filter(Account.email == email.lower()).first()
        if not account:
            logger.error(f"Account {email} not found")
            return False

        # Seats never hold credit; grants land on their organization
        owner = resolve_credit_owner(db, account.id)
        expires_at = utcnow() + timedelta(days=days) if days else None
        balance = grant_credits(
            db, owner.owner_id, credit_type, amount, expires_at=expires_at, reason=reason or "manual grant"
        )
        logger.info(
            f"Granted {amount} {credit_type} to account {owner.owner_id} "
            f"(requested for {email}); purchased balance is now {balance.purchased}"
        )
        return True
    except LedgerError as e:
        logger.error(f"Grant rejected: {e}")
        return False
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Grant purchased credits to an account")
    parser.add_argument("email")
    parser.add_argument("credit_type", choices=["resume_contact", "ai_credit", "job_posting"])
    parser.add_argument("amount", type=int)
    parser.add_argument("--days", type=int, default=None, help="validity in days (default: never expires)")
    parser.add_argument("--reason", default="")
    args = parser.parse_args()

    if args.amount <= 0:
        parser.error("amount must be positive")

    if not grant(args.email, args.credit_type, args.amount, days=args.days, reason=args.reason):
        print(f"\n[ERROR] Failed to grant credits to {args.email}")
        sys.exit(1)
    print(f"\n[SUCCESS] Granted {args.amount} {args.credit_type} to {args.email}")
