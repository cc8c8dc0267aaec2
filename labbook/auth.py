"""Login and OTP based password reset."""
import logging
from datetime import timedelta
from typing import Tuple

from sqlalchemy.orm import Session

from labbook import models
from labbook.clock import utcnow
from labbook.errors import InvalidCredentials, InvalidOtp, NotFound, ValidationError
from labbook.notifications import Notifier
from labbook.security import TokenService, generate_otp, hash_password, verify_password
from labbook.users import UserService
from labbook.validation import validate_password

logger = logging.getLogger(__name__)


class AuthGateway:
    def __init__(self, db: Session, tokens: TokenService, notifier: Notifier, settings):
        self.db = db
        self.tokens = tokens
        self.notifier = notifier
        self.users = UserService(db)
        self.otp_ttl = timedelta(minutes=settings.otp_ttl_minutes)
        self.otp_length = settings.otp_length
        self.otp_max_attempts = settings.otp_max_attempts

    def login(self, email: str, password: str) -> Tuple[str, models.User]:
        # same failure for unknown email and wrong password
        user = self.users.find_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Rejected login attempt")
            raise InvalidCredentials()
        logger.info("User %s logged in", user.id)
        return self.tokens.issue_session(user), user

    def register(self, first_name, last_name, email, password) -> Tuple[str, models.User]:
        user = self.users.create(first_name, last_name, email, password, models.UserRole.user.value)
        return self.tokens.issue_session(user), user

    def request_password_reset(self, email: str):
        """Issue a fresh OTP, replacing any code still pending for the user."""
        user = self.users.find_by_email(email)
        if user is None:
            raise NotFound("User not found")

        code = generate_otp(self.otp_length)
        user.otp_hash = hash_password(code)
        user.otp_issued_at = utcnow()
        user.otp_attempts = 0
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("OTP issued for user %s", user.id)
        self.notifier.send_otp(user.email, code)

    def confirm_password_reset(self, email: str, otp: str, new_password: str):
        errors = validate_password(new_password)
        if errors:
            raise ValidationError(errors)

        user = self.users.find_by_email(email)
        if user is None or not user.otp_hash or user.otp_issued_at is None:
            logger.info("Rejected password reset: no pending OTP")
            raise InvalidOtp()
        if utcnow() - user.otp_issued_at > self.otp_ttl:
            user.clear_otp()
            self._commit()
            logger.info("Rejected password reset for user %s: OTP expired", user.id)
            raise InvalidOtp()
        if not verify_password(otp, user.otp_hash):
            user.otp_attempts = (user.otp_attempts or 0) + 1
            if user.otp_attempts >= self.otp_max_attempts:
                # too many guesses, the user has to request a new code
                user.clear_otp()
            self._commit()
            logger.info("Rejected password reset for user %s: OTP mismatch", user.id)
            raise InvalidOtp()

        # sessions issued before the reset stay valid until they expire
        user.password_hash = hash_password(new_password)
        user.clear_otp()
        self._commit()
        logger.info("Password reset for user %s", user.id)

    def _commit(self):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
