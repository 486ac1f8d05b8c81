"""bidilog - log inspection for browser sessions over WebDriver BiDi."""

from bidilog.core.filters import FilterBy
from bidilog.core.log_entry import LogEntry, LogLevel, LogType
from bidilog.core.log_inspector import LogInspector, log_inspector

__all__ = ["FilterBy", "LogEntry", "LogInspector", "LogLevel", "LogType", "log_inspector"]
__version__ = "0.1.0"
