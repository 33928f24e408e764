"""Messaging steps: multi-channel notifications, email, SMS and Slack."""

from typing import Any, Dict

from core.exceptions import StepExecutionError
from integrations.side_effects import DeliveryReceipt, Message
from tasks.base_task import BaseStepHandler, StepContext


def _recipients(config: Dict[str, Any]) -> list[str]:
    recipients = config.get("recipients", [])
    if isinstance(recipients, str):
        return [recipients]
    return [str(r) for r in recipients]


def _receipt_dict(receipt: DeliveryReceipt) -> Dict[str, Any]:
    return {
        "message_id": receipt.message_id,
        "channel": receipt.channel,
        "status": receipt.status,
        "recipients": receipt.recipients,
        "error": receipt.error,
    }


class _MessageStepHandler(BaseStepHandler):
    """Shared message building.

    Config:
        recipients: list of addresses / user ids / channel names
        template: template name
        subject: subject line (email)
        body: message body
        data: template data
    """

    channel = "notification"
    default_template = "default_notification"

    def build_message(self, config: Dict[str, Any], context: StepContext, channel: str = None) -> Message:
        recipients = _recipients(config)
        if not recipients:
            raise StepExecutionError(f"{self.display_name} step has no recipients")
        return Message(
            channel=channel or self.channel,
            recipients=recipients,
            template=config.get("template", self.default_template),
            subject=config.get("subject", ""),
            body=config.get("body", ""),
            tenant_id=context.tenant_id,
            data=config.get("data", {}),
        )

    @staticmethod
    def check(receipt: DeliveryReceipt) -> DeliveryReceipt:
        if receipt.status == "failed":
            raise StepExecutionError(receipt.error or f"Delivery over {receipt.channel} failed")
        return receipt


class NotificationStepHandler(_MessageStepHandler):
    """Fan a notification out over one or more channels.

    Extra config:
        channels: list of email | sms | push | slack (default: ["email"])
    """

    step_type = "notification"
    display_name = "Notification"
    description = "Send a notification over one or more channels"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        channels = config.get("channels") or ["email"]
        results = []
        for channel in channels:
            message = self.build_message(config, context, channel=channel)
            if channel == "email":
                sender = self.require(self.side_effects.email, "email sender")
                receipt = await sender.send_email(message)
            elif channel == "sms":
                sender = self.require(self.side_effects.sms, "SMS sender")
                receipt = await sender.send_sms(message)
            else:
                sender = self.require(self.side_effects.notifications, "notification sender")
                receipt = await sender.send(message)
            results.append(_receipt_dict(self.check(receipt)))

        return {
            "notification_id": context.reference("notification"),
            "channels": list(channels),
            "template": config.get("template", self.default_template),
            "recipients": _recipients(config),
            "results": results,
        }


class EmailStepHandler(_MessageStepHandler):
    step_type = "email"
    display_name = "Email"
    description = "Send an email"
    channel = "email"
    default_template = "default_email"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        sender = self.require(self.side_effects.email, "email sender")
        receipt = self.check(await sender.send_email(self.build_message(config, context)))
        return {"email_id": receipt.message_id, **_receipt_dict(receipt),
                "template": config.get("template", self.default_template)}


class SmsStepHandler(_MessageStepHandler):
    step_type = "sms"
    display_name = "SMS"
    description = "Send an SMS"
    channel = "sms"
    default_template = "default_sms"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        sender = self.require(self.side_effects.sms, "SMS sender")
        receipt = self.check(await sender.send_sms(self.build_message(config, context)))
        return {"sms_id": receipt.message_id, **_receipt_dict(receipt),
                "template": config.get("template", self.default_template)}


class SlackStepHandler(_MessageStepHandler):
    step_type = "slack"
    display_name = "Slack"
    description = "Post a Slack message"
    channel = "slack"
    default_template = "default_slack"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        sender = self.require(self.side_effects.notifications, "notification sender")
        receipt = self.check(await sender.send(self.build_message(config, context)))
        return {"slack_id": receipt.message_id, **_receipt_dict(receipt),
                "template": config.get("template", self.default_template)}


MESSAGING_STEP_TYPES = {
    "notification": NotificationStepHandler,
    "email": EmailStepHandler,
    "sms": SmsStepHandler,
    "slack": SlackStepHandler,
}
