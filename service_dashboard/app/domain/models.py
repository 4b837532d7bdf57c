"""
Request and response models for dashboard routes.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GuildTicketConfig(BaseModel):
    """Ticket configuration of one guild as edited in the dashboard."""

    model_config = ConfigDict(populate_by_name=True)

    ticket_category: str = Field(..., min_length=1, alias="ticketCategory")
    panel_channel: str = Field(..., min_length=1, alias="panelChannel")
    transcript_channel: str = Field(..., min_length=1, alias="transcriptChannel")
    support_roles: List[str] = Field(default_factory=list, alias="supportRoles")
    welcome_message: str = Field(
        default="Hello! Thank you for creating a support ticket. A staff member will assist you shortly.",
        alias="welcomeMessage"
    )
    close_message: str = Field(
        default="This ticket has been closed. Thank you for contacting support!",
        alias="closeMessage"
    )
    max_tickets_per_user: int = Field(default=3, ge=1, le=50, alias="maxTicketsPerUser")
    auto_close_inactive: bool = Field(default=False, alias="autoCloseInactive")
    inactive_timeout_hours: int = Field(default=24, ge=1, alias="inactiveTimeoutHours")
    dm_on_ticket_create: bool = Field(default=True, alias="dmOnTicketCreate")
    dm_on_ticket_close: bool = Field(default=True, alias="dmOnTicketClose")
    log_channel: Optional[str] = Field(default=None, alias="logChannel")
    ticket_name_format: str = Field(default="ticket-{username}-{number}", alias="ticketNameFormat")
    enable_transcripts: bool = Field(default=True, alias="enableTranscripts")


class CacheRefreshResponse(BaseModel):
    """Result of a user-triggered cache refresh."""

    user_id: str
    cleared: int
