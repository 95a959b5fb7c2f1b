"""Database models package."""
from models.database import Base, get_session, get_admin_session, get_engine
from models.organization import Organization
from models.memory import Memory
from models.memory_relationship import MemoryRelationship
from models.subscription import SubscriptionPlan, OrganizationSubscription
from models.scheduled_job import ScheduledJob

__all__ = [
    "Base",
    "get_session",
    "get_admin_session",
    "get_engine",
    "Organization",
    "Memory",
    "MemoryRelationship",
    "SubscriptionPlan",
    "OrganizationSubscription",
    "ScheduledJob",
]
