"""
Customer Notifications
======================
Templated emails sent by the payment workflow:

- WELCOME: login credentials for an account minted on first payment
- PAYMENT_PENDING: entity / reference / amount for a reference payment

Sending is fire-and-forget from the workflow's point of view: every method
returns True/False and never raises. Failures are logged, never retried.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from html import escape
from typing import Optional

import structlog

from vibe_backend.errors import ApiError
from vibe_backend.pipeline.brevo import BrevoClient


class NotificationType(str, Enum):
    WELCOME = "welcome"
    PAYMENT_PENDING = "payment_pending"


SUBJECTS = {
    NotificationType.WELCOME: "🎉 Bem-vindo à Vibe Coding!",
    NotificationType.PAYMENT_PENDING: "📋 Dados para Pagamento - Vibe Coding",
}


def format_kwanza(amount: float) -> str:
    """5000 -> '5.000 Kz' (pt-AO grouping)"""
    whole, _, cents = f"{amount:,.2f}".partition(".")
    whole = whole.replace(",", ".")
    return f"{whole},{cents} Kz" if cents != "00" else f"{whole} Kz"


# =============================================================================
# TEMPLATES
# =============================================================================

_LAYOUT = """<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"></head>
<body style="font-family: Arial, sans-serif; background-color: #f4f4f4; margin: 0; padding: 20px;">
  <div style="max-width: 600px; margin: 0 auto; background: white; border-radius: 12px; overflow: hidden;">
    <div style="background: linear-gradient(135deg, #0ea5e9, #6366f1); padding: 30px; text-align: center;">
      <h1 style="color: white; margin: 0; font-size: 24px;">🎓 Vibe Coding</h1>
    </div>
    <div style="padding: 30px;">{body}</div>
    <div style="background: #f8fafc; padding: 20px; text-align: center; color: #64748b; font-size: 12px;">
      <p>© {year} Vibe Coding. Todos os direitos reservados.</p>
    </div>
  </div>
</body>
</html>
"""


def render_welcome(name: str, email: str, password: str, dashboard_url: str) -> str:
    body = f"""
      <h2>Olá {escape(name)}! 👋</h2>
      <p>O seu pagamento foi confirmado e a sua conta está pronta.</p>
      <p><strong>Email:</strong> {escape(email)}<br>
         <strong>Palavra-passe:</strong> {escape(password)}</p>
      <p>Recomendamos que altere a palavra-passe após o primeiro acesso.</p>
      <a href="{escape(dashboard_url)}"
         style="background: #0ea5e9; color: white; padding: 15px 30px; border-radius: 8px;
                text-decoration: none; display: inline-block; margin-top: 20px;">Aceder ao Dashboard</a>
    """
    return _LAYOUT.format(body=body, year=datetime.now(timezone.utc).year)


def render_payment_pending(
    name: str,
    entity: str,
    reference: str,
    amount: float,
    due_date: Optional[str] = None,
) -> str:
    due = f"<p><strong>Data limite:</strong> {escape(due_date)}</p>" if due_date else ""
    body = f"""
      <h2>Olá {escape(name)}! 👋</h2>
      <p>O seu pagamento está <strong>pendente</strong>. Conclua o pagamento para acessar a
         Vibe Coding e começar o seu curso!</p>
      <div style="background: #f8fafc; border: 2px solid #e2e8f0; border-radius: 12px; padding: 20px;">
        <p><span style="color: #64748b;">Entidade:</span> <strong>{escape(entity)}</strong></p>
        <p><span style="color: #64748b;">Referência:</span> <strong>{escape(reference)}</strong></p>
        <p><span style="color: #64748b;">Valor:</span> <strong>{format_kwanza(amount)}</strong></p>
      </div>
      {due}
      <div style="background: #fef3c7; border-left: 4px solid #f59e0b; padding: 15px; margin: 20px 0;">
        <strong>📱 Como pagar:</strong>
        <ul>
          <li>Use qualquer <strong>ATM</strong> (caixa automática)</li>
          <li>Use o app <strong>Multicaixa Express</strong> → Pagamentos por Referência</li>
          <li>Use o seu <strong>Internet Banking</strong></li>
        </ul>
      </div>
      <p style="color: #64748b; font-size: 14px;">Assim que confirmarmos o pagamento, receberá
         automaticamente os seus dados de acesso por email.</p>
    """
    return _LAYOUT.format(body=body, year=datetime.now(timezone.utc).year)


# =============================================================================
# NOTIFIERS
# =============================================================================

class INotifier(ABC):
    @abstractmethod
    async def send_welcome(self, email: str, name: str, password: str, dashboard_url: str) -> bool:
        pass

    @abstractmethod
    async def send_payment_pending(
        self,
        email: str,
        name: str,
        reference: str,
        entity: str,
        amount: float,
        due_date: Optional[str] = None,
    ) -> bool:
        pass


class EmailNotifier(INotifier):
    """Sends the templates through Brevo"""

    def __init__(self, brevo: BrevoClient):
        self.brevo = brevo
        self._logger = structlog.get_logger().bind(component="notifier")

    async def _send_notification(
        self,
        notification_type: NotificationType,
        email: str,
        name: str,
        html: str,
    ) -> bool:
        if not self.brevo.configured:
            self._logger.warning("notification_skipped",
                                 notification_type=notification_type.value,
                                 reason="brevo_not_configured")
            return False
        try:
            await self.brevo.send_email(
                [{"email": email, "name": name}], SUBJECTS[notification_type], html
            )
        except ApiError as e:
            self._logger.error("notification_failed",
                               notification_type=notification_type.value,
                               error=e.message,
                               details=e.details)
            return False
        self._logger.info("notification_sent", notification_type=notification_type.value)
        return True

    async def send_welcome(self, email, name, password, dashboard_url) -> bool:
        return await self._send_notification(
            NotificationType.WELCOME, email, name,
            render_welcome(name, email, password, dashboard_url),
        )

    async def send_payment_pending(self, email, name, reference, entity, amount, due_date=None) -> bool:
        return await self._send_notification(
            NotificationType.PAYMENT_PENDING, email, name,
            render_payment_pending(name, entity, reference, amount, due_date),
        )
