"""MEETING_RECORDER node: send a recording bot to a meeting and pause the workflow.

The workflow stays paused until the transcript arrives and the execution is
resumed with the transcript merged into its context.
"""

import logging
from typing import Any, Dict, Optional

from common.errors import ConfigurationError, TransientExecutionError
from common.interfaces.actions import ActionProvider
from workflow.executors.templating import resolve_path
from workflow.models import EXECUTION_ID_KEY, PAUSE_KEY, WorkflowContext
from workflow.registry import NodeExecutionParams

logger = logging.getLogger(__name__)

CREATE_BOT_TOOL = "create_meeting_bot"
DEFAULT_BOT_NAME = "Meeting Notetaker"
DEFAULT_JOIN_MESSAGE = "This meeting is being recorded for notes and follow-up."

_PLATFORMS = (
    ("zoom.us", "ZOOM"),
    ("meet.google.com", "GOOGLE_MEET"),
    ("teams.microsoft.com", "MICROSOFT_TEAMS"),
)


def detect_platform(meeting_url: str) -> str:
    for marker, platform in _PLATFORMS:
        if marker in meeting_url:
            return platform
    return "OTHER"


def _meeting_url(data: Dict[str, Any], context: WorkflowContext) -> Optional[str]:
    source = data.get("meeting_url_source") or "calendarEvent"
    if source == "calendarEvent":
        return resolve_path(context, "calendarEvent.meetingUrl")
    if source == "context":
        return context.get("meetingUrl")
    return data.get("meeting_url")


class MeetingRecorderExecutor:
    def __init__(self, provider: ActionProvider):
        self._provider = provider

    async def __call__(self, params: NodeExecutionParams) -> WorkflowContext:
        context = params.context
        meeting_url = _meeting_url(params.data, context)
        if not meeting_url:
            raise ConfigurationError(
                "Meeting URL not found. Cannot record meeting without a valid URL."
            )

        platform = detect_platform(meeting_url)
        calendar_event = context.get("calendarEvent") or {}
        bot_request = {
            "meeting_url": meeting_url,
            "bot_name": params.data.get("bot_name") or DEFAULT_BOT_NAME,
            "join_message": params.data.get("join_message") or DEFAULT_JOIN_MESSAGE,
            "title": calendar_event.get("title") or "Untitled Meeting",
            "participants": [
                attendee.get("email") for attendee in calendar_event.get("attendees") or []
            ],
            "metadata": {
                "agent_id": context.get("agentId"),
                "user_id": params.user_id,
                "workflow_execution_id": context.get(EXECUTION_ID_KEY) or params.execution_id,
            },
        }

        async def _create_bot() -> Dict[str, Any]:
            try:
                bot = await self._provider.execute(
                    CREATE_BOT_TOOL, bot_request, user_id=params.user_id
                )
            except ConfigurationError:
                raise
            except Exception as exc:
                raise TransientExecutionError(f"Creating meeting bot failed: {exc}") from exc
            return dict(bot or {})

        bot = await params.step.run("create-meeting-bot", _create_bot)
        logger.info("Bot %s joining %s meeting %s", bot.get("id"), platform, meeting_url)

        updated = dict(context)
        updated.update(
            {
                "recordingId": bot.get("recording_id") or bot.get("id"),
                "recallBotId": bot.get("id"),
                "meetingUrl": meeting_url,
                "meetingPlatform": platform,
                PAUSE_KEY: True,
            }
        )
        return updated
