from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

from loguru import logger

from .. import schemas
from ..clock import utcnow
from ..storage import Storage
from .commands import is_group_jid, normalize_phone_number
from .dispatcher import CommandDispatcher

BLOCKED_INCOMING = "BLOCKED_INCOMING"
COMMAND_PROCESSED = "COMMAND_PROCESSED"
COMMAND_ERROR = "COMMAND_ERROR"

UPSERT_EVENT = "messages.upsert"


class MessageSender(Protocol):
    def send_text(self, number: str, text: str) -> bool: ...


ClientFactory = Callable[[schemas.WhatsappIntegration], MessageSender]


@dataclass
class GateDecision:
    allowed: bool
    reason: str


@dataclass
class InboundMessage:
    sender: str
    text: str
    group_jid: Optional[str] = None
    from_me: bool = False


def extract_message(envelope: Dict[str, Any]) -> Optional[InboundMessage]:
    """Pull sender and text out of an Evolution API ``messages.upsert`` payload."""
    event = str(envelope.get("event") or "").lower().replace("_", ".")
    if event != UPSERT_EVENT:
        return None

    data = envelope.get("data")
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict):
        return None

    key = data.get("key") or {}
    message = data.get("message") or {}
    text = message.get("conversation") or (message.get("extendedTextMessage") or {}).get("text")
    remote_jid = key.get("remoteJid")
    if not text or not remote_jid:
        return None

    group_jid = None
    sender = remote_jid
    if is_group_jid(remote_jid):
        group_jid = remote_jid
        sender = key.get("participant") or data.get("participant")
        if not sender:
            return None

    return InboundMessage(sender=sender, text=text, group_jid=group_jid, from_me=bool(key.get("fromMe")))


class WhatsappService:
    def __init__(self, storage: Storage, dispatcher: CommandDispatcher, client_factory: ClientFactory):
        self.storage = storage
        self.dispatcher = dispatcher
        self.client_factory = client_factory

    def handle_webhook(self, instance_name: str, envelope: Dict[str, Any]) -> str:
        """Process one webhook call. Returns a short status used only for logging."""
        inbound = extract_message(envelope)
        if inbound is None:
            logger.debug("Webhook event ignored", instance=instance_name, event=envelope.get("event"))
            return "ignored"

        integration = self.storage.get_whatsapp_integration()
        if integration is None or integration.instance_name != instance_name:
            logger.warning("Webhook for unknown instance dropped", instance=instance_name)
            return "ignored"

        reply = self.process_incoming(
            inbound.sender, inbound.text, group_jid=inbound.group_jid, from_me=inbound.from_me
        )
        return "blocked" if reply is None else "processed"

    def check_gate(
        self,
        integration: schemas.WhatsappIntegration,
        sender: str,
        text: str,
        group_jid: Optional[str],
        from_me: bool,
    ) -> GateDecision:
        if not integration.is_active:
            return GateDecision(False, "Integração desativada")

        numbers = integration.authorized_numbers
        if numbers is None:
            return GateDecision(False, "Nenhum número autorizado configurado - sistema bloqueado")
        if len(numbers) == 0:
            return GateDecision(False, "Lista de números autorizados está vazia - sistema bloqueado")

        normalized_sender = normalize_phone_number(sender)
        authorized = {normalize_phone_number(n) for n in numbers}

        own_number = normalize_phone_number(integration.phone_number)
        if (from_me or normalized_sender == own_number) and normalized_sender not in authorized:
            return GateDecision(False, "Mensagem do próprio bot ignorada")

        if normalized_sender not in authorized:
            return GateDecision(False, f'Número "{sender}" (normalizado: {normalized_sender}) não autorizado')

        if not text or not text.strip():
            return GateDecision(False, "Mensagem vazia")

        if integration.response_mode == "group":
            if not integration.allowed_group_jid:
                return GateDecision(False, "Modo grupo: JID do grupo não configurado")
            if not group_jid:
                return GateDecision(False, "Modo grupo: comando deve vir de um grupo, não mensagem direta")
            if group_jid != integration.allowed_group_jid:
                return GateDecision(False, f"Modo grupo: grupo {group_jid} não é o configurado")
            return GateDecision(True, f"Modo grupo: comando aceito de {sender} no grupo {group_jid}")

        if group_jid:
            return GateDecision(False, f"Modo individual: mensagens de grupo são ignoradas (grupo: {group_jid})")
        return GateDecision(True, f"Modo individual: mensagem direta aceita de {sender}")

    @staticmethod
    def reply_target(integration: schemas.WhatsappIntegration, sender: str) -> str:
        if integration.response_mode == "group":
            return integration.allowed_group_jid
        return sender

    def process_incoming(
        self,
        sender: str,
        text: str,
        group_jid: Optional[str] = None,
        from_me: bool = False,
    ) -> Optional[str]:
        """Gate, dispatch and answer one message. Returns the reply, or None when dropped."""
        integration = self.storage.get_whatsapp_integration()
        if integration is None:
            logger.warning("Inbound message with no integration configured", sender=sender)
            return None

        decision = self.check_gate(integration, sender, text, group_jid, from_me)
        if not decision.allowed:
            logger.warning("Inbound message blocked", sender=sender, reason=decision.reason)
            self.storage.create_whatsapp_log(
                schemas.WhatsappLogCreate(
                    integration_id=integration.id,
                    event_type=BLOCKED_INCOMING,
                    phone_number=sender,
                    message=text,
                    success=False,
                    error_message=decision.reason,
                )
            )
            return None

        target = self.reply_target(integration, sender)
        try:
            result = self.dispatcher.dispatch(text)
            reply, command, success, error = result.reply, result.action, result.success, None
        except Exception as exc:
            logger.exception("Command handler crashed", sender=sender)
            reply = f"❌ Erro ao processar comando: {exc}"
            command, success, error = None, False, str(exc)

        sent = self.client_factory(integration).send_text(target, reply)
        logger.info("Command answered", command=command, target=target, delivered=sent)

        self.storage.create_whatsapp_log(
            schemas.WhatsappLogCreate(
                integration_id=integration.id,
                event_type=COMMAND_PROCESSED if success else COMMAND_ERROR,
                phone_number=target,
                message=text,
                command=command,
                response=reply,
                success=success,
                error_message=error if error else (None if sent else "Falha ao enviar resposta"),
            )
        )
        self.storage.update_whatsapp_integration({"last_connection": utcnow()})
        return reply
