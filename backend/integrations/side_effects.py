"""Side-effect collaborators used by step handlers and actions.

The engine only defines the request/response shapes; concrete delivery
(SMTP, SMS gateways, HTTP, SQL, object storage, script sandboxes) is
injected through ``SideEffects``. Every interface has a single async
method so tests can substitute a fake in a few lines.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


# ─── Request / response shapes ────────────────────────────────

@dataclass
class TaskAssignment:
    """A unit of human work to hand out."""
    tenant_id: str
    execution_id: str
    step_id: str
    title: str
    assignee: Any = None  # user id or list of user ids
    due_date: Optional[str] = None
    priority: str = "medium"
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ApprovalRequest:
    tenant_id: str
    execution_id: str
    step_id: str
    approvers: list[str] = field(default_factory=list)
    title: str = ""
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ApprovalTicket:
    """Outcome of requesting an approval.

    ``status`` is "pending" when the decision will arrive later through
    ``approve_step`` / ``reject_step``; "approved" or "rejected" when the
    gateway decided on the spot.
    """
    approval_id: str
    status: str = "pending"
    approver: Optional[str] = None
    comments: Optional[str] = None


@dataclass
class Message:
    """A notification/email/SMS/Slack message."""
    channel: str
    recipients: list[str]
    template: str = ""
    subject: str = ""
    body: str = ""
    tenant_id: str = ""
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryReceipt:
    message_id: str
    channel: str
    status: str = "sent"
    recipients: list[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class HttpRequest:
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    timeout: Optional[float] = None


@dataclass
class HttpResponse:
    status_code: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400


@dataclass
class DatabaseOperation:
    operation: str  # select, insert, update, delete
    query: Optional[str] = None
    table: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    where: dict[str, Any] = field(default_factory=dict)
    tenant_id: str = ""


@dataclass
class DatabaseResult:
    rows_affected: int = 0
    rows: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class FileOperation:
    operation: str  # upload, download, delete, move, copy
    source: Optional[str] = None
    destination: Optional[str] = None
    allowed_types: list[str] = field(default_factory=lambda: ["*"])
    max_size: int = 10 * 1024 * 1024
    options: dict[str, Any] = field(default_factory=dict)
    tenant_id: str = ""


@dataclass
class FileResult:
    file_id: str
    location: Optional[str] = None
    status: str = "stored"
    size: Optional[int] = None


@dataclass
class ScriptRequest:
    script: str
    language: str = "python"
    variables: dict[str, Any] = field(default_factory=dict)
    timeout: Optional[float] = None


@dataclass
class ScriptResult:
    output: Any = None
    logs: list[str] = field(default_factory=list)


# ─── Collaborator interfaces ──────────────────────────────────

class TaskAssigner(ABC):
    @abstractmethod
    async def assign(self, assignment: TaskAssignment) -> dict[str, Any]:
        """Create the task; return at least ``{"task_id": ...}``."""


class ApprovalGateway(ABC):
    @abstractmethod
    async def request(self, request: ApprovalRequest) -> ApprovalTicket:
        ...


class NotificationSender(ABC):
    """Push / in-app / Slack style notifications."""

    @abstractmethod
    async def send(self, message: Message) -> DeliveryReceipt:
        ...


class EmailSender(ABC):
    @abstractmethod
    async def send_email(self, message: Message) -> DeliveryReceipt:
        ...


class SmsSender(ABC):
    @abstractmethod
    async def send_sms(self, message: Message) -> DeliveryReceipt:
        ...


class WebhookCaller(ABC):
    @abstractmethod
    async def call(self, request: HttpRequest) -> HttpResponse:
        ...


class ApiCaller(ABC):
    @abstractmethod
    async def request(self, request: HttpRequest) -> HttpResponse:
        ...


class DatabaseExecutor(ABC):
    @abstractmethod
    async def execute(self, operation: DatabaseOperation) -> DatabaseResult:
        ...


class FileStore(ABC):
    @abstractmethod
    async def handle(self, operation: FileOperation) -> FileResult:
        ...


class ScriptRunner(ABC):
    @abstractmethod
    async def run(self, request: ScriptRequest) -> ScriptResult:
        ...


@dataclass
class SideEffects:
    """Bundle of injected collaborators. Missing ones fail the step that needs them."""
    tasks: Optional[TaskAssigner] = None
    approvals: Optional[ApprovalGateway] = None
    notifications: Optional[NotificationSender] = None
    email: Optional[EmailSender] = None
    sms: Optional[SmsSender] = None
    webhooks: Optional[WebhookCaller] = None
    api: Optional[ApiCaller] = None
    database: Optional[DatabaseExecutor] = None
    files: Optional[FileStore] = None
    scripts: Optional[ScriptRunner] = None
