"""Common relay presets offered when registering an account. Static data, not persisted."""

from .schemas import SmtpProvider

SMTP_PROVIDERS = [
    SmtpProvider(name="Gmail", host="smtp.gmail.com", port=587, secure=False, description="Google Gmail SMTP"),
    SmtpProvider(
        name="Outlook", host="smtp-mail.outlook.com", port=587, secure=False, description="Microsoft Outlook SMTP"
    ),
    SmtpProvider(name="Yahoo", host="smtp.mail.yahoo.com", port=587, secure=False, description="Yahoo Mail SMTP"),
    SmtpProvider(
        name="SendGrid", host="smtp.sendgrid.net", port=587, secure=False, description="SendGrid SMTP Service"
    ),
    SmtpProvider(name="Mailgun", host="smtp.mailgun.org", port=587, secure=False, description="Mailgun SMTP Service"),
]
