from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.core.security import decode_access_token
from app.db.session import get_db
from app.services.ownership import CreditOwner, resolve_credit_owner

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_current_account_id(token: str = Depends(oauth2_scheme)) -> int:
    """Get the calling account id from the bearer token."""
    account_id = decode_access_token(token)
    if account_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return account_id


def get_credit_owner(
    account_id: int = Depends(get_current_account_id),
    db: Session = Depends(get_db),
) -> CreditOwner:
    """Resolve, once per request, whose balances the caller spends."""
    try:
        return resolve_credit_owner(db, account_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Account not found")
