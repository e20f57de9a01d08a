import html
import smtplib
from email.message import EmailMessage

from .config import settings


def registration_invite_html(employee_name: str, company_name: str, registration_url: str) -> str:
    name = html.escape(employee_name)
    company = html.escape(company_name)
    url = html.escape(registration_url, quote=True)
    return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #333;">Hello {name},</h2>
  <p>You've been invited to join <strong>{company}</strong>!</p>
  <p>To get started, please create your account by clicking the link below:</p>
  <div style="text-align: center; margin: 30px 0;">
    <a href="{url}"
       style="background-color: #007bff; color: white; padding: 12px 24px;
              text-decoration: none; border-radius: 5px; display: inline-block;">
      Create Your Account
    </a>
  </div>
  <p style="color: #666; font-size: 14px;">
    You'll be able to set your own password during registration.
  </p>
  <hr style="border: none; border-top: 1px solid #eee; margin: 20px 0;">
  <p style="color: #999; font-size: 12px;">
    This is an automated message. Please do not reply to this email.
  </p>
</div>
"""


def build_registration_invite(employee_name: str, employee_email: str, company_name: str, registration_url: str) -> EmailMessage:
    msg = EmailMessage()
    if settings.email_user:
        msg["From"] = settings.email_user
    msg["To"] = employee_email
    msg["Subject"] = f"You've been invited to join {company_name}"
    msg.set_content(
        f"Hello {employee_name},\n\nYou've been invited to join {company_name}.\n"
        f"Create your account here: {registration_url}\n"
    )
    msg.add_alternative(registration_invite_html(employee_name, company_name, registration_url), subtype="html")
    return msg


def _smtp_send(msg: EmailMessage) -> None:
    # Implicit TLS relay (Gmail-style); any relay error propagates to the caller.
    with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
        if settings.email_user:
            smtp.login(settings.email_user, settings.email_pass)
        smtp.send_message(msg)


def send_registration_invite(employee_name: str, employee_email: str, company_name: str, registration_url: str) -> None:
    _smtp_send(build_registration_invite(employee_name, employee_email, company_name, registration_url))
