from .client import EvolutionClient
from .commands import normalize_phone_number, parse_task_creation_input, parse_time_string
from .dispatcher import CommandDispatcher, CommandResult
from .service import BLOCKED_INCOMING, COMMAND_ERROR, COMMAND_PROCESSED, WhatsappService

__all__ = [
    "BLOCKED_INCOMING",
    "COMMAND_ERROR",
    "COMMAND_PROCESSED",
    "CommandDispatcher",
    "CommandResult",
    "EvolutionClient",
    "WhatsappService",
    "normalize_phone_number",
    "parse_task_creation_input",
    "parse_time_string",
]
