from .file import FileUpdate, FileInDB, FileLinks, CreatedFileSummary, ContentFileCreate
from .page import PageCreate, PageUpdate, PageInDB, PageFileInDB, PageFilesSet, PageFileLink
from .lead import (LeadSubmission, LeadInDB, LeadResult, CustomerInDB, CustomerPage,
                   CustomerCreate, CustomerUpdate, AnalyticsEvent)
from .user import UserProfile, ProfileUpdate

__all__ = [
    "FileUpdate", "FileInDB", "FileLinks", "CreatedFileSummary", "ContentFileCreate",
    "PageCreate", "PageUpdate", "PageInDB", "PageFileInDB", "PageFilesSet", "PageFileLink",
    "LeadSubmission", "LeadInDB", "LeadResult", "CustomerInDB", "CustomerPage",
    "CustomerCreate", "CustomerUpdate", "AnalyticsEvent",
    "UserProfile", "ProfileUpdate",
]
