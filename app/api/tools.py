from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import Services, get_services
from app.core.security import verify_vapi_secret
from app.models.tool_models import CalendarToolContext, ToolCallResult

router = APIRouter(dependencies=[Depends(verify_vapi_secret)])


class ToolRequest(BaseModel):
    agent_id: str
    arguments: Union[Dict[str, Any], str, None] = None
    conversation_id: Optional[str] = None


@router.post("/tools/{tool_name}", response_model=ToolCallResult)
async def run_tool(tool_name: str, req: ToolRequest, services: Services = Depends(get_services)):
    """Invoke a calendar tool directly, outside a live call (agent testing)."""
    return await services.tool_handler.handle(
        {"name": tool_name, "arguments": req.arguments},
        CalendarToolContext(agent_id=req.agent_id, conversation_id=req.conversation_id),
    )
