import asyncio, ssl, smtplib
from email.message import EmailMessage
from typing import Optional

from neurohub.app.config import Settings, settings as default_settings


async def send_email(to: str, subject: str, html: str, sender_name: Optional[str] = None,
                     settings: Optional[Settings] = None):
    """
    Simple SMTP sender.
    - port 465 starts SSL; 587 with smtp_use_starttls=True upgrades with STARTTLS.
    - Async friendly: the blocking work is offloaded to a thread.
    """
    settings = settings or default_settings
    from_addr = settings.smtp_from or settings.smtp_user
    if not settings.smtp_configured:
        raise RuntimeError("SMTP config missing: check host/port/user/password/from")

    msg = EmailMessage()
    msg["To"] = to
    msg["From"] = f"{sender_name} <{from_addr}>" if sender_name else from_addr
    msg["Subject"] = subject
    msg.set_content("View this email as HTML to see its content.")
    msg.add_alternative(html, subtype="html")

    def _send_blocking():
        context = ssl.create_default_context()
        if settings.smtp_use_starttls:
            # 587 / STARTTLS
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
                server.ehlo()
                server.starttls(context=context)
                server.ehlo()
                server.login(settings.smtp_user, settings.smtp_password)
                server.send_message(msg)
        else:
            # 465 / SSL
            with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, context=context) as server:
                server.login(settings.smtp_user, settings.smtp_password)
                server.send_message(msg)

    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _send_blocking)


def verification_email_html(verification_link: str, fallback_link: Optional[str] = None) -> str:
    fallback = (
        f'<p>If that link does not work, use this one instead:</p>'
        f'<p style="word-break:break-all">{fallback_link}</p>'
        if fallback_link else ""
    )
    return f"""<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto">
      <h2 style="color:#4a5568">NeuroHealthHub Email Verification</h2>
      <p>Please verify your email address by clicking the button below:</p>
      <div style="text-align:center;margin:30px 0">
        <a href="{verification_link}"
           style="background-color:#3182ce;color:white;padding:12px 24px;text-decoration:none;border-radius:4px;font-weight:bold">
          Verify My Email
        </a>
      </div>
      <p>If the button doesn't work, copy and paste this link into your browser:</p>
      <p style="word-break:break-all">{verification_link}</p>
      {fallback}
      <p>This link will expire in 24 hours.</p>
    </div>"""
