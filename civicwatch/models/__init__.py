from civicwatch.models.user import User, UserRole
from civicwatch.models.report import Report, ReportStatus, ReportCategory, ReportPriority, Department
