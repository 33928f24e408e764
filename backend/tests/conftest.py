"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- Fakes for every injected collaborator (access checker, audit sink,
  messaging, approvals, HTTP)
- Controllable step handlers (counting, gated)
- Engine and service fixtures wired with those fakes
- Definition builders
"""

import asyncio
import os
from typing import Any, Optional

import pytest
import pytest_asyncio

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from app.config import Settings  # noqa: E402
from core.audit import AuditSink  # noqa: E402
from core.exceptions import StepExecutionError  # noqa: E402
from core.rbac import AccessChecker  # noqa: E402
from core.utils import new_id  # noqa: E402
from integrations.side_effects import (  # noqa: E402
    ApprovalGateway,
    ApprovalRequest,
    ApprovalTicket,
    DeliveryReceipt,
    EmailSender,
    Message,
    NotificationSender,
    SideEffects,
    SmsSender,
)
from integrations.simulated import (  # noqa: E402
    SimulatedDatabase,
    SimulatedFileStore,
    SimulatedHttp,
    SimulatedScriptRunner,
    SimulatedTaskAssigner,
)
from services.workflow_service import WorkflowService  # noqa: E402
from tasks.base_task import BaseStepHandler  # noqa: E402
from tasks.registry import StepHandlerRegistry  # noqa: E402
from workflow.engine import WorkflowEngine  # noqa: E402
from workflow.models import WorkflowExecutionContext  # noqa: E402
from workflow.registry import DefinitionRegistry  # noqa: E402
from workflow.store import ExecutionStore  # noqa: E402

TENANT = "tenant-1"


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class AllowAllAccessChecker(AccessChecker):
    def __init__(self):
        self.calls: list[tuple] = []

    async def can_execute(self, tenant_id, user_id, resource, action) -> bool:
        self.calls.append((tenant_id, user_id, resource, action))
        return True


class DenyAllAccessChecker(AccessChecker):
    async def can_execute(self, tenant_id, user_id, resource, action) -> bool:
        return False


class RecordingAuditSink(AuditSink):
    def __init__(self):
        self.events: list[dict] = []

    async def log(self, tenant_id, actor_id, action, resource, details=None) -> None:
        self.events.append({
            "tenant_id": tenant_id,
            "actor_id": actor_id,
            "action": action,
            "resource": resource,
            "details": details or {},
        })

    def actions(self) -> list[str]:
        return [e["action"] for e in self.events]


class RecordingMessenger(NotificationSender, EmailSender, SmsSender):
    """Records every message; channels listed in ``failing`` raise."""

    def __init__(self, failing: tuple = ()):
        self.sent: list[Message] = []
        self.failing = set(failing)

    def _deliver(self, kind: str, message: Message) -> DeliveryReceipt:
        if kind in self.failing:
            raise ConnectionError(f"{kind} gateway unavailable")
        self.sent.append(message)
        return DeliveryReceipt(message_id=new_id(kind), channel=message.channel,
                               recipients=list(message.recipients))

    async def send(self, message: Message) -> DeliveryReceipt:
        return self._deliver("notification", message)

    async def send_email(self, message: Message) -> DeliveryReceipt:
        return self._deliver("email", message)

    async def send_sms(self, message: Message) -> DeliveryReceipt:
        return self._deliver("sms", message)

    def templates(self) -> list[str]:
        return [m.template for m in self.sent]


class RecordingApprovalGateway(ApprovalGateway):
    """Answers with ``status`` (pending by default)."""

    def __init__(self, status: str = "pending"):
        self.status = status
        self.requests: list[ApprovalRequest] = []

    async def request(self, request: ApprovalRequest) -> ApprovalTicket:
        self.requests.append(request)
        approver = request.approvers[0] if request.approvers and self.status != "pending" else None
        return ApprovalTicket(approval_id=new_id("approval"), status=self.status, approver=approver)


# ---------------------------------------------------------------------------
# Controllable step handlers
# ---------------------------------------------------------------------------

class CountingHandler(BaseStepHandler):
    """Fails the first ``fail_times`` calls, then returns ``output``."""

    step_type = "counting"
    display_name = "Counting"

    def __init__(self, side_effects=None, fail_times: int = 0, output: Optional[dict] = None):
        super().__init__(side_effects)
        self.fail_times = fail_times
        self.output = output
        self.calls = 0
        self.seen_variables: list[dict] = []

    async def execute(self, config, input, variables, context) -> dict[str, Any]:
        self.calls += 1
        self.seen_variables.append(variables)
        if self.calls <= self.fail_times:
            raise StepExecutionError(f"attempt {self.calls} failed")
        return dict(self.output) if self.output is not None else {"call": self.calls, "config": config}


class GatedHandler(BaseStepHandler):
    """Blocks every call until ``release`` is set; tracks concurrency."""

    step_type = "gated"
    display_name = "Gated"

    def __init__(self, side_effects=None):
        super().__init__(side_effects)
        self.release = asyncio.Event()
        self.calls = 0
        self.running = 0
        self.max_running = 0

    async def execute(self, config, input, variables, context) -> dict[str, Any]:
        self.calls += 1
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            await self.release.wait()
        finally:
            self.running -= 1
        return {"released": True}


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` while letting the event loop run."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout)


# ---------------------------------------------------------------------------
# Definition builders
# ---------------------------------------------------------------------------

def make_step(step_id: str, order: int, type: str = "counting", **fields) -> dict:
    return {"id": step_id, "name": step_id.upper(), "type": type, "order": order, **fields}


def make_definition(steps: list[dict], tenant_id: str = TENANT, **settings) -> dict:
    return {
        "id": new_id("workflow"),
        "name": "Test workflow",
        "tenant_id": tenant_id,
        "steps": steps,
        "execution_settings": settings,
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        ENVIRONMENT="testing",
        DEFAULT_STEP_TIMEOUT=5.0,
        ACTION_TIMEOUT=2.0,
        HANDLER_POOL_SIZE=4,
        MAX_RETRY_DELAY=1.0,
    )


@pytest.fixture
def context() -> WorkflowExecutionContext:
    return WorkflowExecutionContext(tenant_id=TENANT, user_id="alice", user_role="admin")


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def access_checker() -> AllowAllAccessChecker:
    return AllowAllAccessChecker()


@pytest.fixture
def messenger() -> RecordingMessenger:
    return RecordingMessenger()


@pytest.fixture
def approvals() -> RecordingApprovalGateway:
    return RecordingApprovalGateway()


@pytest.fixture
def side_effects(messenger, approvals) -> SideEffects:
    http = SimulatedHttp()
    return SideEffects(
        tasks=SimulatedTaskAssigner(),
        approvals=approvals,
        notifications=messenger,
        email=messenger,
        sms=messenger,
        webhooks=http,
        api=http,
        database=SimulatedDatabase(),
        files=SimulatedFileStore(),
        scripts=SimulatedScriptRunner(),
    )


@pytest.fixture
def counting() -> CountingHandler:
    return CountingHandler()


@pytest.fixture
def gated() -> GatedHandler:
    return GatedHandler()


@pytest_asyncio.fixture
async def engine(side_effects, audit_sink, access_checker, test_settings, counting, gated):
    """Engine with in-memory storage; ``counting`` and ``gated`` step types registered."""
    store = ExecutionStore()
    registry = DefinitionRegistry(audit_sink=audit_sink, executions=store)
    handlers = StepHandlerRegistry(side_effects)
    handlers.register("counting", counting)
    handlers.register("gated", gated)
    workflow_engine = WorkflowEngine(
        definitions=registry,
        handlers=handlers,
        access_checker=access_checker,
        store=store,
        audit_sink=audit_sink,
        settings=test_settings,
    )
    yield workflow_engine
    await workflow_engine.stop_processor()


@pytest_asyncio.fixture
async def service(side_effects, audit_sink, access_checker, test_settings, counting):
    workflow_service = WorkflowService(
        access_checker,
        side_effects=side_effects,
        audit_sink=audit_sink,
        settings=test_settings,
    )
    workflow_service.handlers.register("counting", counting)
    yield workflow_service
    await workflow_service.shutdown()
