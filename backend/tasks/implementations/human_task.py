"""Human-in-the-loop steps: task assignment, approvals and forms."""

from typing import Any, Dict

from core.exceptions import StepExecutionError
from integrations.side_effects import ApprovalRequest, TaskAssignment
from tasks.base_task import AwaitingApproval, BaseStepHandler, StepContext


class TaskStepHandler(BaseStepHandler):
    """Assign a piece of work to a person or group.

    Config:
        assignee: user id or list of user ids
        due_date: ISO date string
        priority: low | medium | high | urgent (default: medium)
        title: task title (default: the step name)
    """

    step_type = "task"
    display_name = "Task"
    description = "Assign a task to a user"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        assigner = self.require(self.side_effects.tasks, "task assigner")
        assignment = TaskAssignment(
            tenant_id=context.tenant_id,
            execution_id=context.execution_id,
            step_id=context.step_id,
            title=config.get("title") or context.step_name or context.step_id,
            assignee=config.get("assignee"),
            due_date=config.get("due_date"),
            priority=config.get("priority", "medium"),
            data=config.get("data", {}),
        )
        result = await assigner.assign(assignment)
        return {
            "task_id": result.get("task_id", context.reference("task")),
            "assignee": assignment.assignee,
            "due_date": assignment.due_date,
            "priority": assignment.priority,
            "status": result.get("status", "assigned"),
        }

class ApprovalStepHandler(BaseStepHandler):
    """Request an approval.

    When the gateway answers "pending" the step parks in
    ``waiting_for_approval`` until the engine receives a decision.

    Config:
        approvers: list of user ids (``assignee`` is accepted too)
        title: approval title
    """

    step_type = "approval"
    display_name = "Approval"
    description = "Wait for an approval decision"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        gateway = self.require(self.side_effects.approvals, "approval gateway")
        approvers = config.get("approvers") or config.get("assignee") or []
        if isinstance(approvers, str):
            approvers = [approvers]

        ticket = await gateway.request(ApprovalRequest(
            tenant_id=context.tenant_id,
            execution_id=context.execution_id,
            step_id=context.step_id,
            approvers=list(approvers),
            title=config.get("title") or context.step_name,
            data=config.get("data", {}),
        ))
        output = {
            "approval_id": ticket.approval_id,
            "approvers": list(approvers),
            "status": ticket.status,
            "approver": ticket.approver,
            "comments": ticket.comments,
        }

        if ticket.status == "approved":
            return output
        if ticket.status == "rejected":
            raise StepExecutionError(
                f"Approval rejected by {ticket.approver or 'approver'}"
                + (f": {ticket.comments}" if ticket.comments else "")
            )
        raise AwaitingApproval(output)

class FormStepHandler(BaseStepHandler):
    """Collect form values from the execution input.

    Config:
        form_fields: list of {name, label, type, required, default_value}
    """

    step_type = "form"
    display_name = "Form"
    description = "Collect structured input"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        fields = config.get("form_fields", [])
        values: Dict[str, Any] = {}
        missing = []

        for form_field in fields:
            name = form_field.get("name")
            if not name:
                continue
            value = input.get(name, variables.get(name, form_field.get("default_value")))
            if form_field.get("required") and value in (None, ""):
                missing.append(name)
            values[name] = value

        if missing:
            raise StepExecutionError(f"Missing required form fields: {', '.join(missing)}")

        return {
            "form_id": context.reference("form"),
            "fields": [{**f, "value": values.get(f.get("name"))} for f in fields],
            "values": values,
        }

HUMAN_STEP_TYPES = {
    "task": TaskStepHandler,
    "approval": ApprovalStepHandler,
    "form": FormStepHandler,
}
