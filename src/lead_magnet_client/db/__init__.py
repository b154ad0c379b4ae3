# lead_magnet_client/db/__init__.py

from .base import Base, get_session

from .users import UserORM
from .files import FileORM
from .pages import PageORM, PageFileORM
from .leads import LeadORM, CustomerORM
from .analytics import AnalyticsEventORM


__all__ = [
    "Base",
    "get_session",
    "UserORM",
    "FileORM",
    "PageORM",
    "PageFileORM",
    "LeadORM",
    "CustomerORM",
    "AnalyticsEventORM",
]
