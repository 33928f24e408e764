"""HTTP steps: integrations, webhooks and API calls.

All three build an HttpRequest from the step config and hand it to the
injected WebhookCaller / ApiCaller. Responses outside 2xx/3xx fail the
step unless listed in ``accept_status``.
"""

from typing import Any, Dict

from core.exceptions import StepExecutionError
from integrations.side_effects import HttpRequest, HttpResponse
from tasks.base_task import BaseStepHandler, StepContext


class _HttpStepHandler(BaseStepHandler):
    """Shared request building.

    Config:
        endpoint (or url): target URL (required)
        method: GET | POST | PUT | PATCH | DELETE
        headers: dict of HTTP headers
        params: query parameters
        body: request body
        accept_status: list of extra status codes treated as success
    """

    default_method = "GET"

    def build_request(self, config: Dict[str, Any], context: StepContext) -> HttpRequest:
        url = config.get("endpoint") or config.get("url")
        if not url:
            raise StepExecutionError(f"{self.display_name} step requires an endpoint")
        return HttpRequest(
            url=url,
            method=str(config.get("method", self.default_method)).upper(),
            headers=dict(config.get("headers") or {}),
            params=dict(config.get("params") or {}),
            body=config.get("body"),
            timeout=context.timeout,
        )

    @staticmethod
    def check(response: HttpResponse, config: Dict[str, Any]) -> HttpResponse:
        if not response.ok and response.status_code not in (config.get("accept_status") or []):
            raise StepExecutionError(f"HTTP {response.status_code} from remote endpoint")
        return response

    @staticmethod
    def response_dict(response: HttpResponse) -> Dict[str, Any]:
        return {"status": response.status_code, "data": response.body}


class IntegrationStepHandler(_HttpStepHandler):
    step_type = "integration"
    display_name = "Integration"
    description = "Call an external system integration"
    default_method = "POST"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        caller = self.require(self.side_effects.api, "API caller")
        request = self.build_request(config, context)
        response = self.check(await caller.request(request), config)
        return {
            "integration_id": context.reference("integration"),
            "endpoint": request.url,
            "method": request.method,
            "response": self.response_dict(response),
        }


class WebhookStepHandler(_HttpStepHandler):
    step_type = "webhook"
    display_name = "Webhook"
    description = "Send a webhook"
    default_method = "POST"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        caller = self.require(self.side_effects.webhooks, "webhook caller")
        request = self.build_request(config, context)
        response = self.check(await caller.call(request), config)
        return {
            "webhook_id": context.reference("webhook"),
            "url": request.url,
            "method": request.method,
            "status": "sent",
            "response": self.response_dict(response),
        }


class ApiCallStepHandler(_HttpStepHandler):
    step_type = "api_call"
    display_name = "API Call"
    description = "Make an HTTP API request"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        caller = self.require(self.side_effects.api, "API caller")
        request = self.build_request(config, context)
        response = self.check(await caller.request(request), config)
        return {
            "api_id": context.reference("api"),
            "endpoint": request.url,
            "method": request.method,
            "headers": request.headers,
            "response": self.response_dict(response),
        }

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "required": ["endpoint"],
            "properties": {
                "endpoint": {"type": "string", "description": "Target URL"},
                "method": {"type": "string", "enum": ["GET", "POST", "PUT", "PATCH", "DELETE"], "default": "GET"},
                "headers": {"type": "object"},
                "params": {"type": "object"},
                "body": {},
                "accept_status": {"type": "array", "items": {"type": "integer"}},
            },
        }


HTTP_STEP_TYPES = {
    "integration": IntegrationStepHandler,
    "webhook": WebhookStepHandler,
    "api_call": ApiCallStepHandler,
}
