"""
Event configuration: breakout sessions, teams and their reference documents.
Loaded once at startup and treated as immutable afterwards.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, model_validator

from oncovoice.core.exceptions import DocumentNotFoundError, TeamNotFoundError
from oncovoice.core.logging import get_logger

logger = get_logger(__name__)


class Team(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    topic_name: str
    session_id: int
    color: str = "#0EA5E9"


class BreakoutSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    teams: List[int]


class EventConfig(BaseModel):
    """Static team/session table plus the team -> reference document mapping."""

    model_config = ConfigDict(frozen=True)

    app_name: str = "OncoVoice AI"
    sessions: List[BreakoutSession] = Field(default_factory=list)
    teams: List[Team] = Field(default_factory=list)
    documents: Dict[int, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_references(self):
        team_ids = {team.id for team in self.teams}
        if len(team_ids) != len(self.teams):
            raise ValueError("Duplicate team ids in event configuration")
        session_ids = {session.id for session in self.sessions}
        for team in self.teams:
            if team.session_id not in session_ids:
                raise ValueError(f"Team {team.id} references unknown session {team.session_id}")
        for team_id in self.documents:
            if team_id not in team_ids:
                raise ValueError(f"Document mapped for unknown team {team_id}")
        return self

    def team_ids(self) -> List[int]:
        return sorted(team.id for team in self.teams)

    def get_team(self, team_id: int) -> Team:
        for team in self.teams:
            if team.id == team_id:
                return team
        raise TeamNotFoundError(team_id)

    def teams_for_session(self, session_id: int) -> List[Team]:
        return [team for team in self.teams if team.session_id == session_id]

    def has_document(self, team_id: int) -> bool:
        return team_id in self.documents

    def document_url_for_team(self, team_id: int) -> str:
        """Returns the reference document URL, failing fast when none is mapped."""
        self.get_team(team_id)
        url = self.documents.get(team_id)
        if not url:
            raise DocumentNotFoundError(
                f"No reference document mapped for team {team_id}",
                details={"team_id": team_id},
            )
        return url


def result_key(team_id: int) -> str:
    """Key under which a team's result record is stored."""
    return f"team-{team_id}"


def _resolve_document_url(location: str, base_url: Optional[str]) -> str:
    if "://" in location or not base_url:
        return location
    return f"{base_url.rstrip('/')}/{quote(location.lstrip('/'))}"


def load_event_config(path: str, document_base_url: Optional[str] = None) -> EventConfig:
    """
    Loads the event configuration from a JSON file.
    Document locations that are not absolute URLs are treated as blob
    pathnames and resolved against `document_base_url`.
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    raw["documents"] = {
        int(team_id): _resolve_document_url(location, document_base_url)
        for team_id, location in (raw.get("documents") or {}).items()
    }
    config = EventConfig.model_validate(raw)
    logger.info(
        f"Loaded event configuration from {path}: "
        f"{len(config.teams)} teams, {len(config.sessions)} sessions, {len(config.documents)} documents"
    )
    return config
