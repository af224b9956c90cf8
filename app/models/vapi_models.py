from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any, Union, Literal

# --- Incoming Request Models ---

class VapiFunction(BaseModel):
    name: str
    # Dict from VAPI, JSON string from OpenAI-style providers
    arguments: Union[Dict[str, Any], str, None] = None

class VapiToolCall(BaseModel):
    id: str
    type: str = "function"
    function: VapiFunction

class VapiCall(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    assistantId: Optional[str] = None

class VapiAssistant(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None

class VapiMessageBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    call: Optional[VapiCall] = None
    assistant: Optional[VapiAssistant] = None

    @property
    def assistant_id(self) -> Optional[str]:
        if self.call and self.call.assistantId:
            return self.call.assistantId
        if self.assistant:
            return self.assistant.id
        return None

    @property
    def call_id(self) -> Optional[str]:
        return self.call.id if self.call else None

class VapiToolCallMessage(VapiMessageBase):
    type: Literal["tool-calls"] = "tool-calls"
    toolCalls: List[VapiToolCall] = Field(default_factory=list)

class VapiArtifact(BaseModel):
    model_config = ConfigDict(extra="allow")

    transcript: Optional[str] = None
    messages: List[Dict[str, Any]] = Field(default_factory=list)

class VapiEndOfCallReportMessage(VapiMessageBase):
    type: Literal["end-of-call-report"] = "end-of-call-report"
    transcript: Optional[str] = None
    artifact: Optional[VapiArtifact] = None

    def transcript_payload(self) -> Union[str, List[Dict[str, Any]]]:
        """Structured messages when present, plain transcript otherwise."""
        if self.artifact and self.artifact.messages:
            return self.artifact.messages
        if self.artifact and self.artifact.transcript:
            return self.artifact.transcript
        return self.transcript or ""


# --- Outgoing Response Models ---

class VapiToolResult(BaseModel):
    toolCallId: str
    result: str

class VapiToolCallResponse(BaseModel):
    results: List[VapiToolResult]
