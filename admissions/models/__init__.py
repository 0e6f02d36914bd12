# Database models
from .program import Program, Cohort
from .applicant import Applicant
from .program_application import ProgramApplication
from .application import Application
from .interview import Interview
from .application_message import ApplicationMessage
from .message_template import MessageTemplate
from .user import User
from .student_profile import StudentProfile
from .enrollment import Enrollment
from .admin_action_log import AdminActionLog
