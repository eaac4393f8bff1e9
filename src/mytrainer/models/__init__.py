from mytrainer.models.availability import AvailabilityException, AvailabilityTemplate
from mytrainer.models.client import Client, ClientTimePreference
from mytrainer.models.entitlement import (
    ServiceAllocation,
    SessionCredit,
    SessionPack,
    Subscription,
)
from mytrainer.models.notification import SessionNotification
from mytrainer.models.schedule import RecurringSchedule, RecurringSchedulePreference
from mytrainer.models.session import TrainingSession
from mytrainer.models.trainer import ServiceType, Trainer

__all__ = [
    "AvailabilityException",
    "AvailabilityTemplate",
    "Client",
    "ClientTimePreference",
    "RecurringSchedule",
    "RecurringSchedulePreference",
    "ServiceAllocation",
    "ServiceType",
    "SessionCredit",
    "SessionNotification",
    "SessionPack",
    "Subscription",
    "Trainer",
    "TrainingSession",
]
