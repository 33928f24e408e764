"""Simulated collaborators.

Stand-ins that record what would have been sent and answer with
deterministic receipts. They let a freshly constructed engine run the
built-in templates end to end without any real delivery channel; swap
them for real implementations through ``SideEffects``.
"""

from typing import Any

import structlog

from core.utils import new_id
from integrations.side_effects import (
    ApprovalGateway,
    ApprovalRequest,
    ApprovalTicket,
    ApiCaller,
    DatabaseExecutor,
    DatabaseOperation,
    DatabaseResult,
    DeliveryReceipt,
    EmailSender,
    FileOperation,
    FileResult,
    FileStore,
    HttpRequest,
    HttpResponse,
    Message,
    NotificationSender,
    ScriptRequest,
    ScriptResult,
    ScriptRunner,
    SideEffects,
    SmsSender,
    TaskAssigner,
    TaskAssignment,
    WebhookCaller,
)

logger = structlog.get_logger(__name__)


class SimulatedTaskAssigner(TaskAssigner):
    async def assign(self, assignment: TaskAssignment) -> dict[str, Any]:
        logger.info("Simulated task assignment", step_id=assignment.step_id, assignee=assignment.assignee)
        return {"task_id": new_id("task"), "status": "assigned"}


class SimulatedApprovalGateway(ApprovalGateway):
    """Leaves every approval pending until decided through the engine."""

    async def request(self, request: ApprovalRequest) -> ApprovalTicket:
        logger.info("Simulated approval request", step_id=request.step_id, approvers=request.approvers)
        return ApprovalTicket(approval_id=new_id("approval"))


class SimulatedMessenger(NotificationSender, EmailSender, SmsSender):
    def __init__(self):
        self.sent: list[Message] = []

    def _deliver(self, message: Message) -> DeliveryReceipt:
        self.sent.append(message)
        logger.info(
            "Simulated message delivery",
            channel=message.channel,
            recipients=message.recipients,
            template=message.template,
        )
        return DeliveryReceipt(
            message_id=new_id(message.channel),
            channel=message.channel,
            recipients=list(message.recipients),
        )

    async def send(self, message: Message) -> DeliveryReceipt:
        return self._deliver(message)

    async def send_email(self, message: Message) -> DeliveryReceipt:
        return self._deliver(message)

    async def send_sms(self, message: Message) -> DeliveryReceipt:
        return self._deliver(message)


class SimulatedHttp(WebhookCaller, ApiCaller):
    async def call(self, request: HttpRequest) -> HttpResponse:
        return await self.request(request)

    async def request(self, request: HttpRequest) -> HttpResponse:
        logger.info("Simulated HTTP call", method=request.method, url=request.url)
        return HttpResponse(status_code=200, body={"success": True})


class SimulatedDatabase(DatabaseExecutor):
    async def execute(self, operation: DatabaseOperation) -> DatabaseResult:
        logger.info("Simulated database operation", operation=operation.operation, table=operation.table)
        return DatabaseResult(rows_affected=0 if operation.operation == "select" else 1)


class SimulatedFileStore(FileStore):
    async def handle(self, operation: FileOperation) -> FileResult:
        logger.info("Simulated file operation", operation=operation.operation, destination=operation.destination)
        return FileResult(file_id=new_id("file"), location=operation.destination)


class SimulatedScriptRunner(ScriptRunner):
    """Never executes the script; reports it as processed."""

    async def run(self, request: ScriptRequest) -> ScriptResult:
        logger.info("Simulated script run", language=request.language)
        return ScriptResult(output={"processed": True})


def simulated_side_effects() -> SideEffects:
    """A SideEffects bundle where every collaborator is simulated."""
    messenger = SimulatedMessenger()
    http = SimulatedHttp()
    return SideEffects(
        tasks=SimulatedTaskAssigner(),
        approvals=SimulatedApprovalGateway(),
        notifications=messenger,
        email=messenger,
        sms=messenger,
        webhooks=http,
        api=http,
        database=SimulatedDatabase(),
        files=SimulatedFileStore(),
        scripts=SimulatedScriptRunner(),
    )
