from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import ValidationError as PydanticValidationError

from app.api.deps import Services, get_services
from app.core.config import settings
from app.core.datetime_utils import get_timezone
from app.core.exceptions import ConfigurationError
from app.core.logger import logger
from app.core.security import verify_vapi_secret
from app.models.tool_models import CalendarToolContext, is_calendar_tool
from app.models.vapi_models import (
    VapiEndOfCallReportMessage,
    VapiToolCallMessage,
    VapiToolCallResponse,
    VapiToolResult,
)
from app.services.transcript_service import process_transcript_for_appointments

router = APIRouter()


@router.post("/webhook", dependencies=[Depends(verify_vapi_secret)])
async def vapi_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """
    VAPI server messages. Parsed manually so unknown message types are answered
    with an empty 200 instead of a validation error.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("⚠️ Webhook body is not valid JSON")
        return {}

    message = payload.get("message") if isinstance(payload, dict) else None
    if not isinstance(message, dict):
        logger.warning("⚠️ Webhook body has no message object")
        return {}
    msg_type = message.get("type")

    try:
        if msg_type == "tool-calls":
            response = await handle_tool_calls(VapiToolCallMessage.model_validate(message), services)
            return response.model_dump()

        if msg_type == "end-of-call-report":
            report = VapiEndOfCallReportMessage.model_validate(message)
            background_tasks.add_task(handle_end_of_call, report, services)
            return {}

    except PydanticValidationError as e:
        logger.warning(f"⚠️ Malformed {msg_type} message: {e}")
        return {}

    return {}


async def handle_tool_calls(message: VapiToolCallMessage, services: Services) -> VapiToolCallResponse:
    agent_id = await services.store.get_agent_id_by_assistant_id(message.assistant_id)
    conversation_id = await services.store.get_conversation_id_by_call_id(message.call_id)

    results = []
    for tool_call in message.toolCalls:
        name = tool_call.function.name
        logger.info(f"🔔 Tool call: {name}")

        try:
            if not is_calendar_tool(name):
                logger.warning(f"⚠️ Unknown function name: {name}")
                result = f"Unknown tool: {name}"
            elif not agent_id:
                logger.warning(f"⚠️ No agent found for assistant {message.assistant_id}")
                result = "Calendar is not configured for this agent."
            else:
                outcome = await services.tool_handler.handle(
                    {"name": name, "arguments": tool_call.function.arguments},
                    CalendarToolContext(agent_id=agent_id, conversation_id=conversation_id, call_id=message.call_id),
                )
                result = outcome.message
        except Exception as e:
            logger.exception(f"❌ Error in tool {name}: {e}")
            result = "An error occurred while processing your request. Please try again."

        results.append(VapiToolResult(toolCallId=tool_call.id, result=result))

    return VapiToolCallResponse(results=results)


async def handle_end_of_call(report: VapiEndOfCallReportMessage, services: Services) -> None:
    conversation_id = await services.store.get_conversation_id_by_call_id(report.call_id)
    agent_id = await services.store.get_agent_id_by_assistant_id(report.assistant_id)
    if not conversation_id or not agent_id:
        logger.info(f"📭 Skipping transcript processing for call {report.call_id}: conversation or agent unknown")
        return

    timezone = await _agent_timezone(agent_id, services)
    await process_transcript_for_appointments(
        services.store, conversation_id, agent_id, report.transcript_payload(), timezone=timezone
    )


async def _agent_timezone(agent_id: str, services: Services) -> str:
    """Zone that relative dates in the transcript are read in."""
    try:
        config = await services.store.get_agent_calendar_config(agent_id)
        if config:
            get_timezone(config.timezone)
            return config.timezone
    except ConfigurationError as e:
        logger.warning(f"⚠️ Falling back to {settings.DEFAULT_TIMEZONE} for agent {agent_id}: {e.message}")
    return settings.DEFAULT_TIMEZONE
