from sqlalchemy import Boolean, Column, Integer, ForeignKey, DateTime, String, Text, Enum, Table, func
from sqlalchemy.orm import relationship
from labbook.database import Base
import enum

# USER AND ROLES
class UserRole(str, enum.Enum):
    admin = "admin"
    lecturer = "lecturer"
    instructor = "instructor"
    to = "to"  # technical officer
    user = "user"


# roles allowed to reserve a lab
BOOKING_ROLES = {UserRole.admin, UserRole.lecturer, UserRole.instructor}


booking_attendees = Table(
    "booking_attendees",
    Base.metadata,
    Column("booking_id", Integer, ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, index=True, nullable=False)  # stored lower-case
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.user)

    # pending password reset, single code per user
    otp_hash = Column(String, nullable=True)
    otp_issued_at = Column(DateTime, nullable=True)
    otp_attempts = Column(Integer, nullable=False, default=0)

    owned_bookings = relationship("Booking", back_populates="owner")
    attending = relationship("Booking", secondary=booking_attendees, back_populates="attendees")
    notifications = relationship("Notification", foreign_keys="Notification.receiver_id",
                                 back_populates="receiver", cascade="all, delete-orphan")

    def clear_otp(self):
        self.otp_hash = None
        self.otp_issued_at = None
        self.otp_attempts = 0


# Labs
class Lab(Base):
    __tablename__ = "labs"

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    # bumped by every booking write, serializes writers per lab
    version = Column(Integer, nullable=False, default=0)


# Booking

class BookingStatus(str, enum.Enum):
    confirmed = "confirmed"
    cancelled = "cancelled"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)

    lab_id = Column(Integer, ForeignKey("labs.id"), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    # naive UTC, half-open [start_time, end_time)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)

    status = Column(Enum(BookingStatus), nullable=False, default=BookingStatus.confirmed)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    lab = relationship("Lab")
    owner = relationship("User", back_populates="owned_bookings")
    attendees = relationship("User", secondary=booking_attendees, back_populates="attending")


# In-app notifications

class NotificationType(str, enum.Enum):
    invitation = "invitation"
    update = "update"
    cancellation = "cancellation"


class NotificationResponse(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)

    receiver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)

    type = Column(Enum(NotificationType), nullable=False)
    message = Column(String, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    # attendee's answer to an invitation
    response = Column(Enum(NotificationResponse), nullable=False, default=NotificationResponse.pending)
    created_at = Column(DateTime, server_default=func.now())

    receiver = relationship("User", foreign_keys=[receiver_id], back_populates="notifications")
    sender = relationship("User", foreign_keys=[sender_id])
    booking = relationship("Booking")
