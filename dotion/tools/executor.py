"""
Tool Executor for Dotion.

Dispatches completed tool calls to their side effects and normalizes the
results into ToolData payloads for the client:

- change_view / propose_slots: UI-only directives, no side effect
- create / update / delete_calendar_event: Calendar Gateway, with an undo
  snapshot taken before update and delete
- manage_app: delegated to the desktop AppController

A failure in one call is turned into an inline notice by `execute_safely`
and never affects sibling calls.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from ..auth.session import SessionManager
from ..core.errors import (
    ConfigurationError,
    DotionError,
    UpstreamError,
    ValidationError,
    failure_notice,
    get_error_message,
)
from ..core.tool_calls import CompletedToolCall
from ..system.controller import AppController
from .calendar import UPDATABLE_FIELDS, CalendarGateway, boundary_value, default_end
from .definitions import (
    CHANGE_VIEW,
    CREATE_EVENT,
    DELETE_EVENT,
    MANAGE_APP,
    PROPOSE_SLOTS,
    UPDATE_EVENT,
)


@dataclass
class ToolOutcome:
    """Normalized result of one executed tool call."""
    name: str
    index: int
    success: bool
    tool_data: Optional[Dict[str, Any]] = None
    mutated_calendar: bool = False
    ui_only: bool = False
    error: Optional[Exception] = None
    notice: Optional[str] = None


GatewayFactory = Callable[[str], CalendarGateway]
Handler = Callable[[Dict[str, Any], SessionManager, CompletedToolCall], Awaitable[ToolOutcome]]


class ToolExecutor:
    """
    Dispatch table keyed by tool name.

    Usage:
        executor = ToolExecutor(gateway_factory)
        outcome = await executor.execute_safely(call, session)
    """

    def __init__(
        self,
        gateway_factory: GatewayFactory,
        app_controller: Optional[AppController] = None,
    ):
        """
        Initialize the executor.

        Args:
            gateway_factory: Builds a CalendarGateway for an access token.
            app_controller: Desktop controller; None disables manage_app.
        """
        self.gateway_factory = gateway_factory
        self.app_controller = app_controller
        self._handlers: Dict[str, Handler] = {
            CHANGE_VIEW: self._change_view,
            PROPOSE_SLOTS: self._propose_slots,
            CREATE_EVENT: self._create_event,
            UPDATE_EVENT: self._update_event,
            DELETE_EVENT: self._delete_event,
            MANAGE_APP: self._manage_app,
        }

    @property
    def tool_names(self) -> List[str]:
        return list(self._handlers)

    async def execute(self, call: CompletedToolCall, session: SessionManager) -> ToolOutcome:
        """
        Execute one completed tool call.

        Raises:
            ToolArgumentError: The call's arguments did not parse.
            ValidationError: Unknown tool or missing fields.
            Unauthenticated: Calendar tool without a valid session.
            UpstreamError: Provider or OS failure.
        """
        if call.error is not None:
            raise call.error

        handler = self._handlers.get(call.name)
        if handler is None:
            raise ValidationError(f"Unknown tool: {call.name or '<empty>'}")

        return await handler(call.arguments or {}, session, call)

    async def execute_safely(self, call: CompletedToolCall, session: SessionManager) -> ToolOutcome:
        """Execute a call, converting any failure into a failed outcome with a notice."""
        try:
            return await self.execute(call, session)
        except DotionError as e:
            logger.error(f"Tool call {call.index} ({call.name}) failed: {e.message}")
            error = e
        except Exception as e:
            logger.exception(f"Unexpected error in tool call {call.index} ({call.name}): {e}")
            error = e

        return ToolOutcome(
            name=call.name,
            index=call.index,
            success=False,
            error=error,
            notice=failure_notice(call.name, error),
        )

    # ------------------------------------------------------------------
    # UI directives
    # ------------------------------------------------------------------

    async def _change_view(self, args, session, call) -> ToolOutcome:
        return ToolOutcome(
            name=call.name,
            index=call.index,
            success=True,
            ui_only=True,
            tool_data={
                "type": "view_update",
                "date": args.get("date"),
                "viewMode": args.get("viewMode"),
                "zoomLevel": args.get("zoomLevel"),
            },
        )

    async def _propose_slots(self, args, session, call) -> ToolOutcome:
        slots = args.get("slots")
        if not isinstance(slots, list) or not slots:
            raise ValidationError("slots must be a non-empty list")

        normalized = []
        for slot in slots:
            if not isinstance(slot, dict) or not slot.get("start") or not slot.get("end"):
                raise ValidationError("each slot needs a start and an end")
            item = {"start": slot["start"], "end": slot["end"]}
            if slot.get("label"):
                item["label"] = slot["label"]
            normalized.append(item)

        return ToolOutcome(
            name=call.name,
            index=call.index,
            success=True,
            ui_only=True,
            tool_data={"type": "slots", "slots": normalized},
        )

    # ------------------------------------------------------------------
    # Calendar mutations
    # ------------------------------------------------------------------

    def _gateway(self, session: SessionManager) -> CalendarGateway:
        # Raises Unauthenticated before any provider call
        return self.gateway_factory(session.current_token())

    async def _create_event(self, args, session, call) -> ToolOutcome:
        gateway = self._gateway(session)
        event_id = await gateway.create_event(
            summary=args.get("summary"),
            start=args.get("start"),
            end=args.get("end"),
            description=args.get("description"),
            location=args.get("location"),
        )
        return ToolOutcome(
            name=call.name,
            index=call.index,
            success=True,
            mutated_calendar=True,
            tool_data={
                "type": "event",
                "action": "create",
                "eventId": event_id,
                "summary": args.get("summary"),
                "start": args.get("start"),
                "end": args.get("end") or default_end(args["start"]),
                "location": args.get("location"),
            },
        )

    async def _update_event(self, args, session, call) -> ToolOutcome:
        gateway = self._gateway(session)
        event_id = args.get("eventId")
        if not event_id:
            raise ValidationError("eventId is required")

        original = await gateway.get_event(event_id)
        changes = {key: args[key] for key in UPDATABLE_FIELDS if key in args}
        updated_id = await gateway.update_event(event_id, changes, existing=original)

        return ToolOutcome(
            name=call.name,
            index=call.index,
            success=True,
            mutated_calendar=True,
            tool_data={
                "type": "event",
                "action": "update",
                "eventId": updated_id,
                "summary": args.get("summary") or original.get("summary"),
                "start": args.get("start") or boundary_value(original.get("start")),
                "end": args.get("end") or boundary_value(original.get("end")),
                "location": args.get("location", original.get("location")),
                "originalEvent": original,
            },
        )

    async def _delete_event(self, args, session, call) -> ToolOutcome:
        gateway = self._gateway(session)
        event_id = args.get("eventId")
        if not event_id:
            raise ValidationError("eventId is required")

        original = await gateway.get_event(event_id)
        await gateway.delete_event(event_id)

        return ToolOutcome(
            name=call.name,
            index=call.index,
            success=True,
            mutated_calendar=True,
            tool_data={
                "type": "event",
                "action": "delete",
                "eventId": event_id,
                "summary": original.get("summary"),
                "start": boundary_value(original.get("start")),
                "end": boundary_value(original.get("end")),
                "location": original.get("location"),
                "originalEvent": original,
            },
        )

    # ------------------------------------------------------------------
    # Desktop
    # ------------------------------------------------------------------

    async def _manage_app(self, args, session, call) -> ToolOutcome:
        if self.app_controller is None:
            raise ConfigurationError(get_error_message("desktop_control"), config_key="desktop_control")

        app_name = args.get("appName")
        action = args.get("action")
        if not action:
            raise ValidationError("action is required")

        loop = asyncio.get_running_loop()
        success, message = await loop.run_in_executor(
            None, self.app_controller.perform, app_name, action
        )
        if not success:
            raise UpstreamError(message, provider="desktop")

        return ToolOutcome(
            name=call.name,
            index=call.index,
            success=True,
            tool_data={
                "type": "manage_app",
                "appName": AppController.sanitize(app_name),
                "action": str(action).lower(),
                "status": "success",
                "message": message,
            },
        )
