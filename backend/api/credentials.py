"""
Session store.

Persists each user's marketplace credentials encrypted at rest and hands
out decrypted copies for the duration of a scan. Plaintext values are
never logged.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from api.config import settings
from api.crypto import encrypt, decrypt
from api.database import Credential, utc_now
from scrapers.config import get_marketplace_config
from scrapers.crawlers.browser import clean_cookie_value

logger = logging.getLogger(__name__)

# (cookie, csrf_token) -> (valid, error)
SessionVerifier = Callable[[str, str], Awaitable[Tuple[bool, Optional[str]]]]


class CredentialsNotFoundError(Exception):
    def __init__(self, user_id: Optional[str] = None):
        message = f"No credentials found for user {user_id}" if user_id else "No valid credentials available"
        super().__init__(message)
        self.user_id = user_id


@dataclass
class UserCredentials:
    """Decrypted credentials. Lives only for the duration of one scan."""
    email: str
    cookie: str
    csrf_token: str = ''

    def __repr__(self):
        return "UserCredentials(email=***, cookie=***, csrf_token=***)"


def store_credentials(
    db: Session,
    user_id: str,
    email: str,
    cookie: str,
    csrf_token: Optional[str] = None,
) -> Credential:
    """Encrypt and upsert a user's credentials; the row is marked valid."""
    config = get_marketplace_config(settings.marketplace)
    cookie = clean_cookie_value(cookie, config.session_cookie_name)
    if csrf_token and config.csrf_cookie_name:
        csrf_token = clean_cookie_value(csrf_token, config.csrf_cookie_name)

    row = db.query(Credential).filter(Credential.user_id == user_id).first()
    if row is None:
        row = Credential(user_id=user_id)
        db.add(row)

    row.encrypted_email = encrypt(email)
    row.encrypted_session_cookie = encrypt(cookie)
    row.encrypted_csrf_token = encrypt(csrf_token) if csrf_token else None
    row.is_valid = True
    row.validation_error = None
    row.last_validated_at = utc_now()

    db.commit()
    db.refresh(row)
    logger.info(f"Stored credentials for user {user_id}")
    return row


def _decrypt_row(row: Credential) -> UserCredentials:
    return UserCredentials(
        email=decrypt(row.encrypted_email),
        cookie=decrypt(row.encrypted_session_cookie),
        csrf_token=decrypt(row.encrypted_csrf_token) if row.encrypted_csrf_token else '',
    )


def get_user_credentials(db: Session, user_id: str) -> UserCredentials:
    """
    Fetch and decrypt a user's credentials.

    Raises:
        CredentialsNotFoundError: The user never connected an account
        DecryptionError: Stored blob is corrupt or the key changed
    """
    row = db.query(Credential).filter(Credential.user_id == user_id).first()
    if row is None:
        raise CredentialsNotFoundError(user_id)
    return _decrypt_row(row)


def get_guest_credentials(db: Session) -> UserCredentials:
    """Most recently validated working credentials, used for guest sandbox scans."""
    row = (
        db.query(Credential)
        .filter(Credential.is_valid == True)  # noqa: E712
        .order_by(Credential.last_validated_at.desc())
        .first()
    )
    if row is None:
        raise CredentialsNotFoundError()
    return _decrypt_row(row)


def mark_credentials_invalid(db: Session, user_id: str, message: str):
    row = db.query(Credential).filter(Credential.user_id == user_id).first()
    if row is None:
        return
    row.is_valid = False
    row.validation_error = message
    row.last_validated_at = utc_now()
    db.commit()
    logger.info(f"Credentials for user {user_id} marked invalid: {message}")


def credentials_status(db: Session, user_id: str) -> Dict:
    row = db.query(Credential).filter(Credential.user_id == user_id).first()
    if row is None:
        return {'connected': False, 'is_valid': False, 'last_validated_at': None, 'validation_error': None}
    return {
        'connected': True,
        'is_valid': bool(row.is_valid),
        'last_validated_at': row.last_validated_at,
        'validation_error': row.validation_error,
    }


async def check_all_credentials(db: Session, verifier: SessionVerifier) -> Dict[str, int]:
    """
    Ping the marketplace with every stored session and record the outcome.

    A failure on one row (corrupt blob, network error) is logged and counted;
    it never stops the rest of the batch.
    """
    rows = db.query(Credential).all()
    logger.info(f"Checking {len(rows)} stored credential(s)...")

    counts = {'valid': 0, 'expired': 0, 'errors': 0}
    for row in rows:
        user_id = row.user_id
        try:
            creds = _decrypt_row(row)
            valid, error = await verifier(creds.cookie, creds.csrf_token)

            row.is_valid = valid
            row.validation_error = None if valid else error
            row.last_validated_at = utc_now()
            db.commit()

            if valid:
                counts['valid'] += 1
            else:
                counts['expired'] += 1
                logger.info(f"User {user_id} session is expired ({error})")
        except Exception as e:
            db.rollback()
            counts['errors'] += 1
            logger.error(f"Error checking credentials for user {user_id}: {e}")

    logger.info(
        f"Credential check complete. Valid: {counts['valid']}, "
        f"Expired: {counts['expired']}, Errors: {counts['errors']}"
    )
    return counts
