"""HTML bodies for transactional emails."""

from datetime import datetime
from html import escape

from sunrise.config import get_settings


def _layout(heading: str, body_html: str, button_label: str | None = None, button_url: str | None = None, footer: str = "") -> str:
    button = ""
    if button_label and button_url:
        button = f"""
          <tr><td style="padding:24px 0;">
            <a href="{escape(button_url, quote=True)}"
               style="background:#111827;color:#ffffff;padding:12px 24px;border-radius:6px;text-decoration:none;font-weight:600;display:inline-block;">
              {escape(button_label)}
            </a>
          </td></tr>
          <tr><td style="font-size:12px;color:#6b7280;word-break:break-all;">
            Or copy this link into your browser:<br>{escape(button_url)}
          </td></tr>"""

    return f"""<!DOCTYPE html>
<html>
  <body style="margin:0;padding:0;background:#f9fafb;font-family:-apple-system,Segoe UI,Helvetica,Arial,sans-serif;">
    <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="padding:32px 0;">
      <tr><td align="center">
        <table role="presentation" width="560" cellpadding="0" cellspacing="0"
               style="background:#ffffff;border-radius:8px;padding:32px;">
          <tr><td style="font-size:22px;font-weight:700;color:#111827;padding-bottom:16px;">{heading}</td></tr>
          <tr><td style="font-size:15px;line-height:1.6;color:#374151;">{body_html}</td></tr>{button}
          <tr><td style="font-size:12px;color:#9ca3af;padding-top:24px;">{footer}</td></tr>
        </table>
      </td></tr>
    </table>
  </body>
</html>"""


def _format_date(value: datetime) -> str:
    return value.strftime("%B %d, %Y")


def render_invitation_email(
    inviter_name: str,
    invitee_name: str,
    invitation_url: str,
    expires_at: datetime,
) -> tuple[str, str]:
    app_name = get_settings().app_name
    subject = f"You've been invited to join {app_name}"
    html = _layout(
        heading=f"You've been invited to {escape(app_name)}",
        body_html=(
            f"Hi {escape(invitee_name)},<br><br>"
            f"{escape(inviter_name)} has invited you to join {escape(app_name)}. "
            "Click the button below to set up your account."
        ),
        button_label="Accept Invitation",
        button_url=invitation_url,
        footer=(
            f"This invitation expires on {_format_date(expires_at)}. "
            "If you didn't expect this email, you can safely ignore it."
        ),
    )
    return subject, html


def render_welcome_email(user_name: str, user_email: str) -> tuple[str, str]:
    settings = get_settings()
    subject = f"Welcome to {settings.app_name}"
    html = _layout(
        heading=f"Welcome to {escape(settings.app_name)}, {escape(user_name)}!",
        body_html=(
            f"Your account for <strong>{escape(user_email)}</strong> is ready. "
            "You can sign in and start exploring right away."
        ),
        button_label="Go to Dashboard",
        button_url=f"{settings.app_url}/dashboard",
    )
    return subject, html


def render_verify_email(user_name: str, verification_url: str, expires_at: datetime) -> tuple[str, str]:
    subject = "Verify your email address"
    html = _layout(
        heading="Verify your email address",
        body_html=(
            f"Hi {escape(user_name)},<br><br>"
            "Please confirm your email address to finish setting up your account."
        ),
        button_label="Verify Email",
        button_url=verification_url,
        footer=f"This link expires on {_format_date(expires_at)}.",
    )
    return subject, html


def render_reset_password_email(user_name: str, reset_url: str, expires_at: datetime) -> tuple[str, str]:
    subject = "Reset your password"
    html = _layout(
        heading="Reset your password",
        body_html=(
            f"Hi {escape(user_name)},<br><br>"
            "We received a request to reset your password. "
            "If you didn't make this request, you can ignore this email."
        ),
        button_label="Reset Password",
        button_url=reset_url,
        footer=f"This link expires at {expires_at.strftime('%H:%M UTC on %B %d, %Y')}.",
    )
    return subject, html
