from enum import Enum


class Collection(str, Enum):
    USERS = "users"
    CLASSES = "classes"
    PAYMENTS = "payments"
    FEEDBACK = "feedback"
    TEACHER_REQUESTS = "teacher_requests"


class UserRole(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


class UserStatus(str, Enum):
    NONE = "none"
    REQUESTED = "Requested"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"


class TeacherRequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ClassStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UpsertOutcome(str, Enum):
    CREATED = "created"
    STATUS_UPDATED = "status_updated"
    UNCHANGED = "unchanged"
