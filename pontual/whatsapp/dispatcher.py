from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from loguru import logger

from .. import schemas
from ..clock import utcnow
from ..errors import PontualError, TimerAlreadyRunningError
from ..storage import Storage
from ..timer import TimerService
from .commands import Command, extract_command, parse_task_creation_input, parse_time_string

SELECTION_RE = re.compile(r"^(\d+)(?:\s+(\S+)(?:\s+(.+))?)?$")

ACTIONS: Dict[str, str] = {
    "ajuda": "help",
    "help": "help",
    "tarefas": "list",
    "tasks": "list",
    "listar": "list",
    "list": "list",
    "nova": "create",
    "criar": "create",
    "new": "create",
    "iniciar": "start",
    "start": "start",
    "parar": "stop",
    "stop": "stop",
    "pausar": "pause",
    "pause": "pause",
    "retomar": "resume",
    "resume": "resume",
    "apontar": "log",
    "lancar": "log",
    "lancamento": "log",
    "log": "log",
    "apontar-concluir": "log-and-complete",
    "lancar-concluir": "log-and-complete",
    "finalizar-com-tempo": "log-and-complete",
    "concluir": "complete",
    "finalizar": "complete",
    "complete": "complete",
    "reabrir": "reopen",
    "reativar": "reopen",
    "reopen": "reopen",
    "resumo": "report",
    "relatorio": "report",
    "report": "report",
    "status": "status",
}

# actions that make sense after "<n>" in the numbered task list
SELECTION_ACTIONS = {"start", "stop", "pause", "resume", "complete", "reopen", "log", "log-and-complete"}

HELP_TEXT = """🤖 *PONTUAL - Todos os Comandos*

📋 *BÁSICOS:*
• *tarefas* - Ver lista (depois digite 1, 2, 3...)
• *nova [nome]* - Criar tarefa simples
• *status* - Ver timers ativos
• *ajuda* - Esta lista

⏱️ *TIMER:*
• *iniciar [nome]* - Iniciar timer
• *parar [nome]* - Parar timer
• *pausar [nome]* - Pausar timer
• *retomar [nome]* - Retomar timer pausado

📝 *APONTAMENTO:*
• *apontar [nome] [tempo]* - Adicionar tempo manual
• *apontar-concluir [nome] [tempo]* - Adicionar tempo e finalizar

✅ *TAREFAS:*
• *concluir [nome]* - Marcar como concluída
• *reabrir [nome]* - Reativar tarefa concluída

📊 *RESUMOS:*
• *resumo* - Resumo de hoje
• *resumo semanal* - Resumo semanal
• *resumo mensal* - Resumo mensal

🔧 *AVANÇADO:*
• *nova --desc "descrição" --tempo 2h --prazo 2025-01-15 --cor azul Nome da Tarefa*

💡 *SELEÇÃO RÁPIDA:*
1. *tarefas* → vê lista numerada
2. *1* → vê menu da tarefa 1
3. *1 iniciar* → inicia timer da tarefa 1"""

CREATE_USAGE = (
    "❌ Por favor, informe o nome da tarefa.\n\n*Exemplos:*\n"
    "• nova Reunião com cliente\n"
    '• nova Desenvolvimento Frontend --desc "Criar tela de login" --tempo 4h --prazo 2025-07-05\n'
    "• nova Projeto X --cor verde --tempo 2h30min\n\n"
    "*Parâmetros opcionais:*\n"
    "--desc: Descrição\n"
    "--tempo: Tempo estimado (ex: 2h, 90min, 1h30min)\n"
    "--prazo: Data limite (AAAA-MM-DD)\n"
    "--cor: azul, verde, amarelo, vermelho, roxo"
)

INVALID_TIME = "❌ Formato de tempo inválido.\n\n*Exemplos:* 2h, 1.5h, 90min, 1h30min"


def format_duration(seconds: int) -> str:
    return f"{seconds // 3600}h {(seconds % 3600) // 60}min"


def _not_found(identifier: str) -> str:
    return f'❌ Tarefa não encontrada: "{identifier}"\n\nUse *tarefas* para ver a lista.'


def _need_task(example: str) -> str:
    return f"❌ Por favor, informe o ID ou nome da tarefa.\n\n*Exemplo:* {example}"


@dataclass
class CommandResult:
    action: str
    reply: str
    success: bool = True


class CommandDispatcher:
    """Turns one chat message into one reply. Keeps no per-sender state."""

    def __init__(self, storage: Storage, timers: TimerService, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.timers = timers
        self.clock = clock
        self._handlers: Dict[str, Callable[[List[str]], str]] = {
            "help": lambda params: HELP_TEXT,
            "list": self.list_tasks,
            "create": self.create_task,
            "start": self.start_timer,
            "stop": self.stop_timer,
            "pause": self.pause_timer,
            "resume": self.resume_timer,
            "log": self.log_time,
            "log-and-complete": self.log_time_and_complete,
            "complete": self.complete_task,
            "reopen": self.reopen_task,
            "report": self.report,
            "status": self.status,
        }

    def dispatch(self, text: str) -> CommandResult:
        selection = SELECTION_RE.match(text.strip())
        if selection:
            return self._run_guarded("select", lambda: self._select(selection))

        command = extract_command(text)
        action = ACTIONS.get(command.action)
        if action is None:
            reply = (
                f'❓ Comando não reconhecido: "{text.strip()}"\n\n'
                "Digite *ajuda* para ver os comandos disponíveis."
            )
            return CommandResult(action="unknown", reply=reply)
        return self._run(action, command)

    def _run(self, action: str, command: Command) -> CommandResult:
        handler = self._handlers[action]
        return self._run_guarded(action, lambda: handler(command.params))

    def _run_guarded(self, action: str, call: Callable[[], str]) -> CommandResult:
        try:
            return CommandResult(action=action, reply=call())
        except PontualError as exc:
            logger.info("Command rejected", action=action, reason=exc.message)
            return CommandResult(
                action=action,
                reply=f"❌ Erro ao processar comando: {exc.message}",
                success=False,
            )

    # ---------------- task lookup ----------------

    def _open_tasks(self) -> List[schemas.TaskWithStats]:
        return [t for t in self.storage.get_all_tasks(self.clock()) if not t.is_completed]

    def find_task(self, identifier: str) -> Optional[schemas.TaskWithStats]:
        identifier = identifier.strip()
        if not identifier:
            return None
        tasks = self.storage.get_all_tasks(self.clock())
        if identifier.isdigit():
            task_id = int(identifier)
            return next((t for t in tasks if t.id == task_id), None)
        needle = identifier.lower()
        return next((t for t in tasks if needle in t.name.lower()), None)

    def _select(self, match) -> str:
        number = int(match.group(1))
        word = (match.group(2) or "").lower()
        rest = match.group(3)

        tasks = self._open_tasks()
        if not tasks:
            return "📋 Nenhuma tarefa ativa encontrada.\n\nUse *nova [nome]* para criar uma tarefa."
        if number < 1 or number > len(tasks):
            return f"❌ Número inválido. Digite um número entre 1 e {len(tasks)}."
        task = tasks[number - 1]

        action = ACTIONS.get(word)
        if action not in SELECTION_ACTIONS:
            return self._task_menu(task)
        if action in ("log", "log-and-complete") and not rest:
            return f"❌ Informe o tempo para apontamento.\n\n*Exemplo:* {number} apontar 2h"

        params = [str(task.id)] + (rest.split() if rest else [])
        return self._handlers[action](params)

    @staticmethod
    def _task_menu(task: schemas.TaskWithStats) -> str:
        lines = [f"📋 *{task.name}*", f"⏱️ {format_duration(task.total_time)}"]
        if task.active_entries > 0:
            lines += ["🔴 RODANDO", "", "• *parar* - Para timer"]
        else:
            lines += ["⚪ PARADO", "", "• *iniciar* - Liga timer"]
        lines += ["• *concluir* - Finaliza", "• *apontar 2h* - Adiciona tempo"]
        return "\n".join(lines)

    # ---------------- handlers ----------------

    def list_tasks(self, params: List[str]) -> str:
        tasks = self._open_tasks()
        if not tasks:
            return "📋 Nenhuma tarefa ativa encontrada.\n\nUse *nova [nome]* para criar uma tarefa."

        now = self.clock()
        lines = ["📋 *Suas Tarefas Ativas:*", ""]
        for index, task in enumerate(tasks, start=1):
            marker = " ⏱️" if task.active_entries > 0 else ""
            lines.append(f"{index}. {task.name}{marker}")
            if task.total_time >= 60:
                lines.append(f"   └ {format_duration(task.total_time)} trabalhadas")
            if task.deadline and task.deadline - now <= timedelta(days=3):
                lines.append(f"   ⚠️ Prazo: {task.deadline:%d/%m/%Y}")

        lines += [
            "",
            "⚡ *COMO USAR:*",
            "• *1 iniciar* - Liga timer",
            "• *2 parar* - Para timer",
            "• *3 concluir* - Finaliza tarefa",
        ]
        return "\n".join(lines)

    def create_task(self, params: List[str]) -> str:
        if not params:
            return CREATE_USAGE

        draft = parse_task_creation_input(" ".join(params))
        if not draft.name:
            return "❌ Nome da tarefa é obrigatório.\n\n*Exemplo:* nova Reunião com cliente"

        task = self.storage.create_task(
            schemas.TaskCreate(
                name=draft.name,
                description=draft.description or "Criada via WhatsApp",
                color=draft.color or "#3B82F6",
                estimated_hours=draft.estimated_hours,
                deadline=draft.deadline,
                source="whatsapp",
            )
        )

        lines = ["✅ Tarefa criada com sucesso!", "", f"📋 *{task.name}*", f"ID: {task.id}"]
        if draft.description:
            lines.append(f"📝 {draft.description}")
        if draft.estimated_hours:
            lines.append(f"⏱️ Tempo estimado: {format_duration(round(draft.estimated_hours * 3600))}")
        if draft.deadline:
            lines.append(f"📅 Prazo: {draft.deadline:%d/%m/%Y}")
        lines += ["", f"Use *iniciar {task.id}* para começar a cronometrar."]
        return "\n".join(lines)

    def start_timer(self, params: List[str]) -> str:
        if not params:
            return _need_task("iniciar 1")
        identifier = " ".join(params)
        task = self.find_task(identifier)
        if task is None:
            return _not_found(identifier)
        if task.is_completed:
            return f'❌ Tarefa "{task.name}" está concluída. Use *reabrir {task.id}* primeiro.'

        try:
            self.timers.start(task.id, notes="Iniciado via WhatsApp")
        except TimerAlreadyRunningError:
            return f'⏱️ Timer já está rodando para "{task.name}"!\n\nUse *parar {task.id}* para finalizar.'
        return f'✅ Timer iniciado para "{task.name}"!\n\n⏱️ Cronômetro rodando...\n\nUse *parar {task.id}* para finalizar.'

    def stop_timer(self, params: List[str]) -> str:
        if not params:
            return _need_task("parar 1")
        identifier = " ".join(params)
        task = self.find_task(identifier)
        if task is None:
            return _not_found(identifier)

        entry = self.timers.active_entry_for_task(task.id)
        if entry is None:
            return f'❌ Nenhum timer rodando para "{task.name}".'

        result = self.timers.stop(entry.id)
        if result.discarded:
            return (
                f'⚠️ Timer de "{task.name}" descartado.\n\n'
                f"Sessões com menos de {self.timers.min_session_seconds} segundos não são registradas."
            )
        return f'✅ Timer finalizado para "{task.name}"!\n\n⏱️ Tempo registrado: {format_duration(result.duration)}'

    def pause_timer(self, params: List[str]) -> str:
        if not params:
            return _need_task("pausar 1")
        identifier = " ".join(params)
        task = self.find_task(identifier)
        if task is None:
            return _not_found(identifier)

        entry = self.timers.running_entry_for_task(task.id)
        if entry is None:
            return f'❌ Nenhum timer rodando para "{task.name}".'
        entry = self.timers.pause(entry.id)
        return (
            f'⏸️ Timer pausado para "{task.name}".\n\n'
            f"⏱️ Acumulado: {format_duration(entry.duration or 0)}\n\n"
            f"Use *retomar {task.id}* para continuar."
        )

    def resume_timer(self, params: List[str]) -> str:
        if not params:
            return _need_task("retomar 1")
        identifier = " ".join(params)
        task = self.find_task(identifier)
        if task is None:
            return _not_found(identifier)

        entry = self.timers.active_entry_for_task(task.id)
        if entry is None:
            return f'❌ Nenhum timer pausado para "{task.name}".'
        if entry.is_running:
            return f'⏱️ Timer já está rodando para "{task.name}"!'
        self.timers.resume(entry.id)
        return f'▶️ Timer retomado para "{task.name}"!\n\nUse *parar {task.id}* para finalizar.'

    def _split_time_params(self, params: List[str]):
        return " ".join(params[:-1]), parse_time_string(params[-1])

    def log_time(self, params: List[str]) -> str:
        if len(params) < 2:
            return "❌ Por favor, informe a tarefa e o tempo.\n\n*Exemplo:* apontar 1 2.5h\n*Ou:* lancar Reunião 1h30min"
        identifier, seconds = self._split_time_params(params)
        task = self.find_task(identifier)
        if task is None:
            return _not_found(identifier)
        if seconds == 0:
            return INVALID_TIME

        self.timers.log_time(task.id, seconds, notes="Lançamento manual via WhatsApp")
        return f'✅ Tempo lançado para "{task.name}"!\n\n⏱️ {format_duration(seconds)} registrados.'

    def log_time_and_complete(self, params: List[str]) -> str:
        if len(params) < 2:
            return (
                "❌ Por favor, informe a tarefa e o tempo.\n\n"
                "*Exemplo:* finalizar-com-tempo 1 2h\n*Ou:* lancar-concluir Reunião 1h30min"
            )
        identifier, seconds = self._split_time_params(params)
        task = self.find_task(identifier)
        if task is None:
            return _not_found(identifier)
        if seconds == 0:
            return INVALID_TIME

        self.timers.log_time(task.id, seconds, notes="Lançamento final via WhatsApp")
        self.storage.complete_task(task.id, self.clock())
        return (
            f'✅ Tarefa "{task.name}" finalizada!\n\n'
            f"⏱️ {format_duration(seconds)} registrados\n🏁 Tarefa marcada como concluída"
        )

    def complete_task(self, params: List[str]) -> str:
        if not params:
            return _need_task("concluir 1")
        identifier = " ".join(params)
        task = self.find_task(identifier)
        if task is None:
            return _not_found(identifier)
        if task.is_completed:
            return f'❌ Tarefa "{task.name}" já está concluída.'

        entry = self.timers.active_entry_for_task(task.id)
        if entry is not None:
            self.timers.finish(entry.id)
        self.storage.complete_task(task.id, self.clock())

        suffix = "\n⏱️ Timer também foi finalizado." if entry is not None else ""
        return f'✅ Tarefa "{task.name}" concluída com sucesso!{suffix}'

    def reopen_task(self, params: List[str]) -> str:
        if not params:
            return _need_task("reabrir 1")
        identifier = " ".join(params)
        task = self.find_task(identifier)
        if task is None:
            return _not_found(identifier)
        if not task.is_completed:
            return f'❌ Tarefa "{task.name}" já está ativa.'

        self.storage.reopen_task(task.id)
        return f'✅ Tarefa "{task.name}" reaberta com sucesso!\n\nAgora você pode continuar trabalhando nela.'

    def report(self, params: List[str]) -> str:
        period = params[0].lower() if params else "hoje"
        stats = self.storage.get_dashboard_stats(self.clock())

        lines = [f"📊 *Relatório - {period}*", ""]
        if period == "semanal":
            lines.append(f"📅 *Esta semana:* {format_duration(stats.week_time)}")
        elif period == "mensal":
            lines.append(f"📅 *Este mês:* {format_duration(stats.month_time)}")
        else:
            lines.append(f"⏰ *Hoje:* {format_duration(stats.today_time)}")
            lines.append(f"📋 *Tarefas ativas:* {stats.active_tasks}")
            lines.append(f"✅ *Concluídas:* {stats.completed_tasks}")
            if stats.overdue_tasks:
                lines.append(f"⚠️ *Atrasadas:* {stats.overdue_tasks}")
        return "\n".join(lines)

    def status(self, params: List[str]) -> str:
        entries = self.storage.get_running_time_entries()
        if not entries:
            return "💤 Nenhum timer rodando no momento.\n\nUse *iniciar [tarefa]* para começar a cronometrar."

        now = self.clock()
        lines = ["⏱️ *Timers Ativos:*", ""]
        for entry in entries:
            elapsed = format_duration(self.timers.elapsed_seconds(entry, now))
            if entry.is_running:
                lines += [f"🟢 {entry.task.name}", f"   └ {elapsed} rodando", ""]
            else:
                lines += [f"⏸️ {entry.task.name}", f"   └ {elapsed} pausado", ""]
        return "\n".join(lines).rstrip()
