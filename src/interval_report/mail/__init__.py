"""Mail collaborator: message composition, review drafts and SMTP delivery."""

from interval_report.mail.client import MailClient, MailMessage, SmtpMailClient, compose

__all__ = ["MailClient", "MailMessage", "SmtpMailClient", "compose"]
