import httpx
import pytest

from pontual import schemas
from pontual.whatsapp import EvolutionClient
from pontual.whatsapp.client import sanitize_text
from pontual.whatsapp.service import BLOCKED_INCOMING, COMMAND_PROCESSED, extract_message

OWNER = "5531999999999"
BOT = "5531988887777"
GROUP = "120363025555@g.us"


@pytest.fixture
def integration(storage):
    def _make(**overrides):
        fields = dict(
            instance_name="pontual",
            api_url="https://evo.pontual.com.br",
            api_key="evo-key",
            phone_number=BOT,
            authorized_numbers=[OWNER],
        )
        fields.update(overrides)
        return storage.create_whatsapp_integration(schemas.WhatsappIntegrationCreate(**fields))

    return _make


def _upsert(text, remote_jid=f"{OWNER}@s.whatsapp.net", from_me=False, participant=None):
    key = {"remoteJid": remote_jid, "fromMe": from_me, "id": "ABC123"}
    if participant:
        key["participant"] = participant
    return {"event": "messages.upsert", "instance": "pontual", "data": {"key": key, "message": {"conversation": text}}}


# ---------------- envelope parsing ----------------

def test_extract_message_direct():
    msg = extract_message(_upsert("tarefas"))
    assert msg.sender == f"{OWNER}@s.whatsapp.net"
    assert msg.text == "tarefas"
    assert msg.group_jid is None


def test_extract_message_group_and_extended_text():
    envelope = {
        "event": "MESSAGES_UPSERT",
        "data": [
            {
                "key": {"remoteJid": GROUP, "participant": f"{OWNER}@s.whatsapp.net"},
                "message": {"extendedTextMessage": {"text": "status"}},
            }
        ],
    }
    msg = extract_message(envelope)
    assert msg.group_jid == GROUP
    assert msg.sender == f"{OWNER}@s.whatsapp.net"
    assert msg.text == "status"


@pytest.mark.parametrize(
    "envelope",
    [
        {"event": "connection.update", "data": {}},
        {"event": "messages.upsert", "data": {"key": {"remoteJid": "x"}, "message": {"imageMessage": {}}}},
        {"event": "messages.upsert", "data": []},
        {},
    ],
)
def test_extract_message_ignores_other_payloads(envelope):
    assert extract_message(envelope) is None


# ---------------- gate ----------------

def test_unauthorized_sender_is_blocked_and_logged(whatsapp, integration, sender, storage):
    integration()

    assert whatsapp.process_incoming("5511900000000@c.us", "tarefas") is None

    assert sender.sent == []
    [log] = storage.get_whatsapp_logs()
    assert log.event_type == BLOCKED_INCOMING
    assert not log.success
    assert "5511900000000" in log.error_message


@pytest.mark.parametrize("numbers", [None, []])
def test_missing_allow_list_blocks_everyone(whatsapp, integration, sender, storage, numbers):
    integration(authorized_numbers=numbers)
    assert whatsapp.process_incoming(f"{OWNER}@c.us", "tarefas") is None
    assert sender.sent == []
    assert storage.get_whatsapp_logs()[0].event_type == BLOCKED_INCOMING


def test_inactive_integration_blocks(whatsapp, integration, sender):
    integration(is_active=False)
    assert whatsapp.process_incoming(f"{OWNER}@c.us", "tarefas") is None
    assert sender.sent == []


def test_authorized_sender_gets_reply(whatsapp, integration, sender, storage):
    integration()

    reply = whatsapp.process_incoming(f"{OWNER}@c.us", "ajuda")

    assert "PONTUAL" in reply
    assert sender.sent == [(f"{OWNER}@c.us", reply)]
    [log] = storage.get_whatsapp_logs()
    assert log.event_type == COMMAND_PROCESSED
    assert log.command == "help"
    assert storage.get_whatsapp_integration().last_connection is not None


def test_self_message_blocked_unless_allow_listed(whatsapp, integration, sender, storage):
    integration()
    assert whatsapp.process_incoming(f"{BOT}@c.us", "tarefas", from_me=True) is None

    storage.update_whatsapp_integration({"authorized_numbers": [OWNER, BOT]})
    assert whatsapp.process_incoming(f"{BOT}@c.us", "tarefas", from_me=True) is not None
    assert len(sender.sent) == 1


def test_individual_mode_ignores_groups(whatsapp, integration, sender):
    integration()
    assert whatsapp.process_incoming(f"{OWNER}@c.us", "status", group_jid=GROUP) is None
    assert sender.sent == []


def test_group_mode_replies_to_group(whatsapp, integration, sender):
    integration(response_mode="group", allowed_group_jid=GROUP)

    assert whatsapp.process_incoming(f"{OWNER}@c.us", "status") is None
    assert whatsapp.process_incoming(f"{OWNER}@c.us", "status", group_jid="999@g.us") is None
    assert whatsapp.process_incoming(f"{OWNER}@c.us", "status", group_jid=GROUP) is not None
    assert [target for target, _ in sender.sent] == [GROUP]


def test_handle_webhook_statuses(whatsapp, integration, sender):
    integration()
    assert whatsapp.handle_webhook("other", _upsert("status")) == "ignored"
    assert whatsapp.handle_webhook("pontual", {"event": "presence.update"}) == "ignored"
    assert whatsapp.handle_webhook("pontual", _upsert("status", remote_jid="5511900000000@c.us")) == "blocked"
    assert whatsapp.handle_webhook("pontual", _upsert("status")) == "processed"
    assert len(sender.sent) == 1


# ---------------- commands ----------------

def test_unknown_command_points_to_help(dispatcher):
    result = dispatcher.dispatch("dançar")
    assert result.action == "unknown"
    assert "ajuda" in result.reply


def test_create_and_list(dispatcher, storage):
    created = dispatcher.dispatch("nova Reunião com cliente --tempo 2h --cor verde")
    assert "Tarefa criada" in created.reply

    [task] = storage.get_all_tasks()
    assert task.name == "Reunião com cliente"
    assert task.source == "whatsapp"
    assert task.color == "#10B981"
    assert task.estimated_hours == 2
    assert task.description == "Criada via WhatsApp"

    listing = dispatcher.dispatch("tarefas").reply
    assert "1. Reunião com cliente" in listing


def test_create_without_name_shows_usage(dispatcher):
    assert "informe o nome" in dispatcher.dispatch("nova").reply


def test_numeric_selection_starts_and_stops(dispatcher, make_task, storage, clock):
    make_task("Alpha")
    beta = make_task("Beta")

    assert "Beta" in dispatcher.dispatch("2").reply
    assert "Timer iniciado" in dispatcher.dispatch("2 iniciar").reply
    assert storage.get_running_time_entries()[0].task_id == beta.id
    assert "já está rodando" in dispatcher.dispatch("iniciar beta").reply

    clock.advance(minutes=30)
    reply = dispatcher.dispatch("2 parar").reply
    assert "0h 30min" in reply
    assert storage.get_running_time_entries() == []


def test_selection_out_of_range(dispatcher, make_task):
    make_task()
    assert "entre 1 e 1" in dispatcher.dispatch("5 iniciar").reply


def test_short_session_is_discarded(dispatcher, make_task, storage, clock):
    task = make_task()
    dispatcher.dispatch(f"iniciar {task.id}")
    clock.advance(10)

    assert "descartado" in dispatcher.dispatch(f"parar {task.id}").reply
    assert storage.get_time_entries_by_task(task.id) == []


def test_pause_resume_and_status(dispatcher, make_task, clock):
    task = make_task("Relatório")
    dispatcher.dispatch("iniciar relatório")
    clock.advance(minutes=5)

    assert "pausado" in dispatcher.dispatch(f"pausar {task.id}").reply
    assert "⏸️ Relatório" in dispatcher.dispatch("status").reply

    assert "retomado" in dispatcher.dispatch(f"retomar {task.id}").reply
    assert "🟢 Relatório" in dispatcher.dispatch("status").reply


def test_log_time_by_selection(dispatcher, make_task, storage):
    task = make_task()
    reply = dispatcher.dispatch("1 apontar 1h30min").reply

    assert "1h 30min" in reply
    [entry] = storage.get_time_entries_by_task(task.id)
    assert entry.duration == 5400


def test_log_time_invalid_format(dispatcher, make_task):
    make_task()
    assert "inválido" in dispatcher.dispatch("apontar 1 muito").reply


def test_log_and_complete(dispatcher, make_task, storage):
    task = make_task()
    assert "finalizada" in dispatcher.dispatch(f"apontar-concluir {task.id} 2h").reply
    assert storage.get_task(task.id).is_completed


def test_complete_finishes_running_timer_then_reopen(dispatcher, make_task, storage, clock):
    task = make_task()
    dispatcher.dispatch(f"iniciar {task.id}")
    clock.advance(minutes=2)

    reply = dispatcher.dispatch(f"concluir {task.id}").reply
    assert "Timer também foi finalizado" in reply
    assert storage.get_task(task.id).is_completed
    assert storage.get_running_time_entries() == []
    assert "Nenhuma tarefa ativa" in dispatcher.dispatch("tarefas").reply

    assert "reaberta" in dispatcher.dispatch(f"reabrir {task.id}").reply
    assert not storage.get_task(task.id).is_completed


def test_report_today(dispatcher, make_task, timers):
    task = make_task()
    timers.log_time(task.id, 3600)
    reply = dispatcher.dispatch("resumo").reply
    assert "Hoje:* 1h 0min" in reply


def test_status_without_timers(dispatcher):
    assert "Nenhum timer" in dispatcher.dispatch("status").reply


# ---------------- outbound client ----------------

def test_sanitize_text_keeps_accents_and_newlines():
    assert sanitize_text("Olá\x00 mundo\nção\t!") == "Olá mundo\nção\t!"


def test_evolution_client_posts_message():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, json={"key": {"id": "1"}})

    client = EvolutionClient(
        "https://evo.pontual.com.br", "evo-key", "pontual", timeout=5, transport=httpx.MockTransport(handler)
    )
    assert client.send_text(OWNER, "oi")

    [request] = seen
    assert str(request.url) == "https://evo.pontual.com.br/message/sendText/pontual"
    assert request.headers["apikey"] == "evo-key"


def test_evolution_client_swallows_http_errors():
    client = EvolutionClient(
        "https://evo.pontual.com.br",
        "evo-key",
        "pontual",
        timeout=5,
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    assert client.send_text(OWNER, "oi") is False
