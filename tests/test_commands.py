from datetime import datetime

import pytest

from pontual.whatsapp.commands import (
    extract_command,
    normalize_phone_number,
    parse_task_creation_input,
    parse_time_string,
)


@pytest.mark.parametrize(
    "value, seconds",
    [
        ("2h", 7200),
        ("90min", 5400),
        ("1h30min", 5400),
        ("1.5h", 5400),
        ("45min", 2700),
        ("0.25h", 900),
    ],
)
def test_parse_time_string(value, seconds):
    assert parse_time_string(value) == seconds


@pytest.mark.parametrize("value", ["", "abc", "30", "2 horas"])
def test_parse_time_string_unparseable_is_zero(value):
    assert parse_time_string(value) == 0


def test_extract_command_lowercases_action_only():
    cmd = extract_command("  INICIAR  Reunião Cliente ")
    assert cmd.action == "iniciar"
    assert cmd.params == ["Reunião", "Cliente"]


def test_extract_command_empty():
    assert extract_command("   ").action == ""


def test_task_creation_plain_name():
    draft = parse_task_creation_input("Reunião com cliente")
    assert draft.name == "Reunião com cliente"
    assert draft.description is None
    assert draft.estimated_hours is None
    assert draft.color is None


def test_task_creation_all_flags():
    draft = parse_task_creation_input(
        'Desenvolvimento Frontend --desc "Criar tela de login" --tempo 2h30min --prazo 2025-07-05 --cor verde'
    )
    assert draft.name == "Desenvolvimento Frontend"
    assert draft.description == "Criar tela de login"
    assert draft.estimated_hours == pytest.approx(2.5)
    assert draft.deadline == datetime(2025, 7, 5)
    assert draft.color == "#10B981"


def test_task_creation_english_keys_and_colors():
    draft = parse_task_creation_input("Projeto X --time 90min --color purple --deadline 05/07/2025")
    assert draft.name == "Projeto X"
    assert draft.estimated_hours == pytest.approx(1.5)
    assert draft.color == "#8B5CF6"
    assert draft.deadline == datetime(2025, 7, 5)


def test_task_creation_ignores_unknown_keys_and_values():
    draft = parse_task_creation_input("Tarefa --prioridade alta --cor laranja --prazo amanhã")
    assert draft.name == "Tarefa"
    assert draft.color is None
    assert draft.deadline is None


@pytest.mark.parametrize(
    "jid, expected",
    [
        ("5531999999999@c.us", "5531999999999"),
        ("5531999999999@s.whatsapp.net", "5531999999999"),
        ("120363025@g.us", "120363025"),
        ("5531999999999", "5531999999999"),
    ],
)
def test_normalize_phone_number(jid, expected):
    assert normalize_phone_number(jid) == expected
