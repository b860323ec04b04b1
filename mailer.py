from __future__ import annotations

import logging
import random
import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import Settings, get_settings


logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates" / "email"

THRESHOLD_TIPS = {
    "general": [
        "Try the 50/30/20 rule: 50% needs, 30% wants, 20% savings.",
        "Review your spending weekly to spot patterns early.",
        "Use cash for discretionary spending to stay aware of it.",
    ],
    "food": [
        "Meal prep on weekends to cut delivery orders.",
        "Shop with a grocery list and stick to it.",
        "Make coffee at home instead of buying it daily.",
    ],
    "transportation": [
        "Combine errands into one trip to save fuel.",
        "Consider public transport or carpooling for commutes.",
    ],
    "entertainment": [
        "Look for free community events nearby.",
        "Share streaming subscriptions with family.",
    ],
    "shopping": [
        "Wait 24 hours before any non-essential purchase.",
        "Unsubscribe from promotional emails to reduce temptation.",
    ],
}

EXCEEDED_TIPS = [
    "Pause all non-essential spending for the rest of the month.",
    "Review every transaction from the past week to find the overspend.",
    "Reallocate funds from another category if you can.",
    "Set up automatic transfers to savings right after payday.",
    "Schedule a weekly money check-in to stay on track.",
]


def motivational_message(percentage: float) -> str:
    if percentage < 50:
        return "Great job staying within budget."
    if percentage < 75:
        return "You're doing well, but it's time to be more mindful of your spending."
    if percentage < 90:
        return "You're approaching your budget limit. Consider slowing down."
    return "You're very close to your budget limit. Time for immediate action."


def pick_tips(category: Optional[str], exceeded: bool, count: int = 3) -> list[str]:
    if exceeded:
        pool = list(EXCEEDED_TIPS)
    else:
        pool = list(THRESHOLD_TIPS.get((category or "").lower(), []))
        if len(pool) < count:
            pool += THRESHOLD_TIPS["general"]
    return random.sample(pool, min(count, len(pool)))


class EmailNotifier:
    """Renders budget alerts and sends them over SMTP.

    Delivery failures are logged and swallowed: alerts are best effort.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"]),
        )
        self.env.filters["money"] = lambda value: f"{value:,.2f}"

    @staticmethod
    def _scope_label(budget_kind: str, category: str) -> str:
        return "Monthly" if budget_kind == "monthly" else category

    def send_threshold_alert(
        self,
        email: str,
        name: str,
        budget_kind: str,
        category: str,
        percentage: float,
        amount: float,
        remaining: float,
    ) -> bool:
        context = {
            "name": name,
            "budget_kind": budget_kind,
            "label": self._scope_label(budget_kind, category),
            "percentage": percentage,
            "amount": amount,
            "spent": amount - remaining,
            "remaining": remaining,
            "message": motivational_message(percentage),
            "tips": pick_tips(category, exceeded=False),
            "frontend_url": self.settings.frontend_url,
        }
        subject = f"Budget Alert: {context['label']} budget at {percentage:.1f}%"
        return self._send(email, subject, "budget_threshold", context)

    def send_exceeded_alert(
        self,
        email: str,
        name: str,
        budget_kind: str,
        category: str,
        amount: float,
        exceeded_by: float,
    ) -> bool:
        context = {
            "name": name,
            "budget_kind": budget_kind,
            "label": self._scope_label(budget_kind, category),
            "amount": amount,
            "spent": amount + exceeded_by,
            "exceeded_by": exceeded_by,
            "tips": pick_tips(category, exceeded=True),
            "frontend_url": self.settings.frontend_url,
        }
        subject = f"Budget Exceeded: {context['label']} budget over limit"
        return self._send(email, subject, "budget_exceeded", context)

    def render(self, template: str, context: dict) -> tuple[str, str]:
        text = self.env.get_template(f"{template}.txt").render(**context)
        html = self.env.get_template(f"{template}.html").render(**context)
        return text, html

    def _send(self, to: str, subject: str, template: str, context: dict) -> bool:
        text, html = self.render(template, context)
        if not self.settings.smtp_host:
            logger.info(f"email_skipped: reason=smtp_not_configured to={to} subject={subject!r}")
            return False

        msg = EmailMessage()
        msg["From"] = self.settings.smtp_sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        try:
            with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=30) as smtp:
                if self.settings.smtp_starttls:
                    smtp.starttls()
                if self.settings.smtp_user and self.settings.smtp_password:
                    smtp.login(self.settings.smtp_user, self.settings.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(f"email_failed: to={to} subject={subject!r} error={exc}")
            return False
        logger.info(f"email_sent: to={to} subject={subject!r}")
        return True
