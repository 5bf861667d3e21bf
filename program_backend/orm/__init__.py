from .base import Base

# Tenancy + identity
from .tenant import Tenant
from .user import User, UserTenantRole, RoleScope

# Program structure
from .event import Event, Phase, Task, EventRegistration, DeliveryType, RegistrationStatus
from .team import Team, TeamMember, TeamMemberRole, Project, ProjectStatus

# Scoring
from .rubric import PhaseRubric, PhaseRubricCriterion, RubricScope
from .submission import Submission, SubmissionFile, SubmissionStatus, SubmissionType
from .evaluation import Evaluation, EvaluationScope, EvaluationStatus, EvaluationSource
from .notification import Notification, NotificationType
