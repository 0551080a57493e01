from .config import load_config
from .logger import Logger, Reporter
from .models import CourseManifest, Settings, WebsiteProfile
from .orchestrator import CourseDownloadOrchestrator, CourseResult, CourseState, LessonState

__all__ = [
    "CourseDownloadOrchestrator",
    "CourseManifest",
    "CourseResult",
    "CourseState",
    "LessonState",
    "Logger",
    "Reporter",
    "Settings",
    "WebsiteProfile",
    "load_config",
]
