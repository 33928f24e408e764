"""
Built-in workflow definitions.

System definitions are public, cannot be deleted, and are installed per
owning tenant with ``install_builtin_templates``.
"""

import copy
from typing import Optional

import structlog

from workflow.models import WorkflowDefinition
from workflow.registry import DefinitionRegistry

logger = structlog.get_logger(__name__)

SYSTEM_TENANT = "default"

BUILTIN_TEMPLATES = [
    {
        "id": "workflow_new_employee_onboarding",
        "name": "New Employee Onboarding",
        "description": "Standard onboarding workflow for new employees",
        "version": "1.0.0",
        "category": "onboarding",
        "tags": ["onboarding", "employee", "hr"],
        "is_active": True,
        "is_public": True,
        "is_system": True,
        "steps": [
            {
                "id": "step_welcome_email",
                "name": "Send Welcome Email",
                "description": "Send welcome email to new employee",
                "type": "email",
                "order": 1,
                "config": {
                    "template": "welcome_email",
                    "recipients": ["{{ employee.email }}"],
                    "subject": "Welcome, {{ employee.first_name }}!",
                },
            },
            {
                "id": "step_profile_setup",
                "name": "Profile Setup",
                "description": "Employee completes profile setup",
                "type": "form",
                "order": 2,
                "config": {
                    "form_fields": [
                        {"name": "emergency_contact", "label": "Emergency Contact", "type": "text", "required": True},
                        {"name": "bank_details", "label": "Bank Account Details", "type": "textarea", "required": True},
                    ],
                },
                "depends_on": ["step_welcome_email"],
            },
            {
                "id": "step_training_assignment",
                "name": "Assign Training",
                "description": "Assign required training courses",
                "type": "task",
                "order": 3,
                "config": {
                    "assignee": "{{ hr_manager }}",
                    "priority": "high",
                    "due_date": "{{ employee.start_date }}",
                },
                "depends_on": ["step_profile_setup"],
            },
        ],
        "triggers": [
            {
                "id": "trigger_employee_created",
                "name": "Employee Created",
                "type": "event",
                "config": {"event": {"source": "hr_system", "event_type": "employee.created"}},
            },
        ],
        "execution_settings": {
            "max_duration": 86400,  # 24 hours
            "allow_parallel": False,
            "allow_retry": True,
            "max_retries": 3,
            "retry_delay": 5,
            "notify_on_start": True,
            "notify_on_complete": True,
            "notify_on_error": True,
            "notify_recipients": ["hr@company.com"],
            "continue_on_error": False,
            "rollback_on_error": True,
            "timeout": 3600,  # 1 hour per step
            "concurrency_limit": 10,
            "require_approval": False,
            "audit_logging": True,
        },
        "metadata": {
            "business_unit": "HR",
            "department": "Onboarding",
            "priority": "high",
            "expected_duration": 480,  # minutes
            "complexity": "moderate",
        },
        "created_by": "system",
    },
]


def builtin_definition(template_id: str, tenant_id: str = SYSTEM_TENANT) -> Optional[WorkflowDefinition]:
    """Build the definition for a built-in template, owned by ``tenant_id``."""
    for template in BUILTIN_TEMPLATES:
        if template["id"] == template_id:
            return WorkflowDefinition.model_validate({**copy.deepcopy(template), "tenant_id": tenant_id})
    return None


async def install_builtin_templates(
    registry: DefinitionRegistry,
    tenant_id: str = SYSTEM_TENANT,
) -> list[WorkflowDefinition]:
    """Register every built-in template that is not installed yet."""
    installed = []
    for template in BUILTIN_TEMPLATES:
        if await registry.get(template["id"]) is not None:
            continue
        definition = builtin_definition(template["id"], tenant_id)
        installed.append(await registry.register(definition, actor_id="system"))
        logger.info("Installed built-in workflow", workflow_id=definition.id, tenant_id=tenant_id)
    return installed
