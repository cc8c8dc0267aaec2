import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from labbook import models
from labbook.errors import FieldError, NotFound, ValidationError
from labbook.security import hash_password
from labbook.validation import normalize_email, validate_user_fields

logger = logging.getLogger(__name__)

DUPLICATE_EMAIL = FieldError("email", "User with this email already exists")


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def find_by_email(self, email: str) -> Optional[models.User]:
        if not email:
            return None
        return self.db.query(models.User).filter_by(email=normalize_email(email)).first()

    def get(self, user_id: int) -> models.User:
        user = self.db.get(models.User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def list(self, role: Optional[str] = None) -> List[models.User]:
        query = self.db.query(models.User)
        if role is None:
            query = query.filter(models.User.role != models.UserRole.admin)
        else:
            errors = validate_user_fields(role=role, partial=True)
            if errors:
                raise ValidationError(errors)
            query = query.filter(models.User.role == models.UserRole(role))
        return query.order_by(models.User.id).all()

    def create(self, first_name, last_name, email, password, role) -> models.User:
        errors = validate_user_fields(email=email, password=password, role=role,
                                      first_name=first_name, last_name=last_name)
        if errors:
            raise ValidationError(errors)
        email = normalize_email(email)
        if self.find_by_email(email):
            raise ValidationError([DUPLICATE_EMAIL])

        user = models.User(
            email=email,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            password_hash=hash_password(password),
            role=models.UserRole(role),
        )
        self.db.add(user)
        self._commit()
        self.db.refresh(user)
        logger.info("User %s created with role %s", user.id, user.role.value)
        return user

    def update(self, user_id: int, first_name=None, last_name=None, email=None, role=None, password=None) -> models.User:
        user = self.get(user_id)
        errors = validate_user_fields(email=email, password=password, role=role,
                                      first_name=first_name, last_name=last_name, partial=True)
        if errors:
            raise ValidationError(errors)

        if email is not None:
            email = normalize_email(email)
            other = self.find_by_email(email)
            if other is not None and other.id != user.id:
                raise ValidationError([DUPLICATE_EMAIL])
            user.email = email
        if first_name is not None:
            user.first_name = first_name.strip()
        if last_name is not None:
            user.last_name = last_name.strip()
        if role is not None:
            user.role = models.UserRole(role)
        if password is not None:
            user.password_hash = hash_password(password)
        self._commit()
        self.db.refresh(user)
        logger.info("User %s updated", user.id)
        return user

    def delete(self, user_id: int):
        user = self.get(user_id)
        self.db.delete(user)
        self._commit()
        logger.info("User %s deleted", user_id)

    def _commit(self):
        try:
            self.db.commit()
        except IntegrityError as exc:
            # unique email lost a race with a concurrent insert
            self.db.rollback()
            raise ValidationError([DUPLICATE_EMAIL]) from exc
        except Exception:
            self.db.rollback()
            raise
