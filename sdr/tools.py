# sdr/tools.py
"""
Closed registry of the actions the conversation model may request.

Adding a tool means adding a ToolName member and a Tool subclass to TOOLS;
names the model invents that are not in ToolName resolve to None.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from sdr import scheduling, whatsapp_sender
from sdr.airtable_schema import LeadStatus, MessageDirection
from sdr.datastore import REPOSITORY, Lead
from sdr.runtime import get_logger, utc_now

log = get_logger("tools")


class ToolName(str, Enum):
    PROPOSE_MEETING = "propor_agendamento_reuniao"


@dataclass
class ToolResult:
    tool: ToolName
    status: str
    consultant_id: Optional[str] = None
    message: Optional[str] = None


class Tool:
    name: ToolName
    description: str = ""
    parameters: Dict[str, Any] = {"type": "object", "properties": {}}

    def schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def execute(self, lead: Lead, args: Dict[str, Any]) -> ToolResult:
        raise NotImplementedError


class ProposeMeetingTool(Tool):
    name = ToolName.PROPOSE_MEETING
    description = "Use esta ferramenta quando o lead expressar um interesse claro em agendar uma reunião."

    def execute(self, lead: Lead, args: Dict[str, Any]) -> ToolResult:
        if not lead.phone:
            raise ValueError(f"Lead {lead.id} has no phone number")
        proposal = scheduling.propose_meeting_times(lead)
        whatsapp_sender.send_sequential(lead.phone, [proposal.message])

        changes: Dict[str, Any] = {"LAST_OUTGOING_AT": utc_now()}
        if proposal.consultant_id:
            changes.update({"STATUS": LeadStatus.QUALIFIED.value, "CONSULTANT_ID": proposal.consultant_id})
        REPOSITORY.insert_message(
            lead_id=lead.id,
            client_id=lead.client_id,
            direction=MessageDirection.OUTBOUND,
            content=proposal.message,
        )
        REPOSITORY.update_lead(lead.id, changes)

        status = "Proposed" if proposal.consultant_id else "No availability"
        log.info(f"🗓 {self.name.value} → lead {lead.id}: {status}")
        return ToolResult(self.name, status, proposal.consultant_id, proposal.message)


TOOLS: Dict[ToolName, Tool] = {
    ToolName.PROPOSE_MEETING: ProposeMeetingTool(),
}


def resolve_tool(name: Optional[str]) -> Optional[Tool]:
    try:
        return TOOLS[ToolName(name)]
    except (ValueError, KeyError):
        return None


def tool_schemas() -> List[Dict[str, Any]]:
    return [tool.schema() for tool in TOOLS.values()]
