# SQLModel definitions, imported here to ensure metadata is populated.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .organization import Organization  # noqa: F401
from .user import User  # noqa: F401
from .task import Task  # noqa: F401
from .comment import TaskComment  # noqa: F401
from .notification import Notification  # noqa: F401
