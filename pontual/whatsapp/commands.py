"""Text parsing for chat commands: tokens, durations and task-creation flags."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

HOURS_RE = re.compile(r"(\d+(?:\.\d+)?)h")
MINUTES_RE = re.compile(r"(\d+)min")
PARAM_RE = re.compile(r'--(\w+)\s+"([^"]+)"|--(\w+)\s+(\S+)')

JID_SUFFIXES = ("@c.us", "@s.whatsapp.net", "@g.us")

COLOR_MAP = {
    "azul": "#3B82F6",
    "blue": "#3B82F6",
    "verde": "#10B981",
    "green": "#10B981",
    "amarelo": "#F59E0B",
    "yellow": "#F59E0B",
    "vermelho": "#EF4444",
    "red": "#EF4444",
    "roxo": "#8B5CF6",
    "purple": "#8B5CF6",
}

DEADLINE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y")


@dataclass
class Command:
    action: str
    params: List[str] = field(default_factory=list)


@dataclass
class TaskDraft:
    name: str
    description: Optional[str] = None
    estimated_hours: Optional[float] = None
    deadline: Optional[datetime] = None
    color: Optional[str] = None


def extract_command(text: str) -> Command:
    """Split on whitespace; the lower-cased first token is the action."""
    words = text.strip().split()
    if not words:
        return Command(action="")
    return Command(action=words[0].lower(), params=words[1:])


def parse_time_string(value: str) -> int:
    """``"2h"``, ``"90min"``, ``"1h30min"``, ``"1.5h"`` to whole seconds; 0 if unparseable."""
    total = 0.0
    hours = HOURS_RE.search(value)
    if hours:
        total += float(hours.group(1)) * 3600
    minutes = MINUTES_RE.search(value)
    if minutes:
        total += int(minutes.group(1)) * 60
    return math.floor(total)


def parse_deadline(value: str) -> Optional[datetime]:
    for fmt in DEADLINE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def parse_task_creation_input(text: str) -> TaskDraft:
    params = {}
    remainder = text
    for match in PARAM_RE.finditer(text):
        key = match.group(1) or match.group(3)
        params[key.lower()] = match.group(2) or match.group(4)
        remainder = remainder.replace(match.group(0), "", 1)

    draft = TaskDraft(name=" ".join(remainder.split()))

    description = params.get("desc") or params.get("descricao")
    if description:
        draft.description = description

    duration = params.get("tempo") or params.get("time")
    if duration:
        seconds = parse_time_string(duration)
        if seconds:
            draft.estimated_hours = seconds / 3600

    deadline = params.get("prazo") or params.get("deadline")
    if deadline:
        draft.deadline = parse_deadline(deadline)

    color = params.get("cor") or params.get("color")
    if color:
        draft.color = COLOR_MAP.get(color.lower())

    return draft


def normalize_phone_number(jid: str) -> str:
    for suffix in JID_SUFFIXES:
        jid = jid.replace(suffix, "")
    return jid.strip()


def is_group_jid(jid: Optional[str]) -> bool:
    return bool(jid) and jid.endswith("@g.us")
