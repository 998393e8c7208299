"""
Notification Service

Renders transactional emails with Jinja templates and hands them to
Flask-Mail. Delivery failures are logged and reported as ``False``; they
never abort the operation that triggered the email.
"""

import smtplib
from typing import Any, Dict

from flask_mail import Message
from jinja2 import Template

from tradeacademy.utils.logger import get_logger

logger = get_logger(__name__)


_LAYOUT = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{{ title }}</title>
    <style>
        body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
        .header { background: #1f3b73; color: white; padding: 24px; text-align: center; }
        .content { padding: 24px; max-width: 600px; margin: 0 auto; }
        .button { display: inline-block; padding: 12px 24px; background: #1f3b73; color: white; text-decoration: none; border-radius: 5px; }
        .footer { padding: 16px; text-align: center; font-size: 12px; color: #666; }
    </style>
</head>
<body>
    <div class="header"><h1>{{ title }}</h1></div>
    <div class="content">
        <h2>Hello {{ user_name }}!</h2>
        {{ body }}
        <a href="{{ action_url }}" class="button">{{ action_label }}</a>
    </div>
    <div class="footer">
        <p>This email was sent to {{ user_email }}.</p>
    </div>
</body>
</html>
"""

TEMPLATES = {
    "welcome": Template(
        "<p>Welcome to TradeAcademy. Your virtual portfolio starts with "
        "${{ '{:,.2f}'.format(starting_balance) }} to practice with.</p>"
    ),
    "achievement_completed": Template(
        "<p>You completed <strong>{{ achievement_name }}</strong>: {{ description }}</p>"
        "<p>Claim your {{ reward_type }} reward from the achievements page.</p>"
    ),
    "badge_earned": Template(
        "<p>You earned the <strong>{{ badge_name }}</strong> badge.</p>"
        "{% if reward_xp %}<p>+{{ reward_xp }} XP has been added to your profile.</p>{% endif %}"
    ),
    "course_completion": Template(
        "<p>Congratulations on completing <strong>{{ course_title }}</strong>.</p>"
        "{% if quiz_average is not none %}<p>Your quiz average was {{ '%.1f'|format(quiz_average) }}%.</p>{% endif %}"
    ),
    "payment_receipt": Template(
        "<p>We received your payment of {{ '%.2f'|format(amount) }} {{ currency|upper }}.</p>"
        "<p>Premium access is active until {{ premium_expires_at }}.</p>"
    ),
    "email_verification": Template(
        "<p>Please confirm that this is your email address. The link expires in {{ hours }} hours.</p>"
    ),
    "password_reset": Template(
        "<p>Someone asked to reset your TradeAcademy password. The link is valid for "
        "{{ minutes }} minutes.</p><p>If that was not you, ignore this email.</p>"
    ),
}

_layout = Template(_LAYOUT)


class EmailService:
    """
    Transactional email sender.

    Args:
        mail: the application's ``flask_mail.Mail`` extension
        sender: default From address
        frontend_url: base URL used for call-to-action links
        enabled: when False every send is skipped
    """

    def __init__(self, mail, sender: str, frontend_url: str, enabled: bool = True):
        self.mail = mail
        self.sender = sender
        self.frontend_url = frontend_url.rstrip("/")
        self.enabled = enabled

    def render(self, template: str, title: str, user, action_path: str,
               action_label: str, **context: Any) -> str:
        body = TEMPLATES[template].render(**context)
        return _layout.render(
            title=title,
            body=body,
            user_name=user.name,
            user_email=user.email,
            action_url=f"{self.frontend_url}{action_path}",
            action_label=action_label,
        )

    def send_email(self, to_email: str, subject: str, html_content: str) -> bool:
        if not self.enabled:
            logger.debug(f"Email notifications disabled, skipping: {subject}")
            return False

        message = Message(subject=subject, recipients=[to_email], html=html_content,
                          sender=self.sender)
        try:
            self.mail.send(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            return False

        logger.info(f"Email sent to {to_email}: {subject}")
        return True

    def send_welcome(self, user, starting_balance: float) -> bool:
        html = self.render(
            "welcome", "Welcome to TradeAcademy", user, "/dashboard", "Start Learning",
            starting_balance=float(starting_balance),
        )
        return self.send_email(user.email, "Welcome to TradeAcademy", html)

    def send_achievement_completed(self, user, achievement) -> bool:
        html = self.render(
            "achievement_completed", "Achievement Completed", user, "/achievements",
            "Claim Reward",
            achievement_name=achievement.name,
            description=achievement.description,
            reward_type=achievement.reward_type.value.replace("_", " "),
        )
        return self.send_email(user.email, f"Achievement completed: {achievement.name}", html)

    def send_badge_earned(self, user, badge) -> bool:
        html = self.render(
            "badge_earned", "New Badge", user, "/profile", "View Badges",
            badge_name=badge.name,
            reward_xp=badge.reward_xp,
        )
        return self.send_email(user.email, f"You earned the {badge.name} badge", html)

    def send_course_completion(self, user, course, enrollment) -> bool:
        html = self.render(
            "course_completion", "Course Completed", user, f"/courses/{course.id}",
            "View Certificate",
            course_title=course.title,
            quiz_average=enrollment.quiz_average,
        )
        return self.send_email(user.email, f"You completed {course.title}", html)

    def send_payment_receipt(self, user, payment) -> bool:
        context: Dict[str, Any] = {
            "amount": float(payment.amount),
            "currency": payment.currency,
            "premium_expires_at": (
                user.premium_expires_at.strftime("%Y-%m-%d") if user.premium_expires_at else "-"
            ),
        }
        html = self.render(
            "payment_receipt", "Payment Received", user, "/profile", "View Account", **context
        )
        return self.send_email(user.email, "Your TradeAcademy payment receipt", html)

    def send_email_verification(self, user, token: str, hours: int) -> bool:
        html = self.render(
            "email_verification", "Verify Your Email", user, f"/verify-email/{token}",
            "Verify Email",
            hours=hours,
        )
        return self.send_email(user.email, "Please verify your email", html)

    def send_password_reset(self, user, token: str, minutes: int) -> bool:
        html = self.render(
            "password_reset", "Password Reset", user, f"/reset-password/{token}",
            "Choose a New Password",
            minutes=minutes,
        )
        return self.send_email(user.email, "Password reset request", html)
