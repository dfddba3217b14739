from __future__ import annotations

import logging
import re
import smtplib
from email.message import EmailMessage


logger = logging.getLogger("chantier_api.mailer")


def _split_emails(value: str | None) -> list[str]:
    if not value:
        return []
    parts = re.split(r"[,\n;]+", value)
    return [p.strip() for p in parts if p.strip()]


def _generer_corps_mail(*, titre: str, message: str, numero: str | None) -> str:
    lines = [
        "Bonjour,",
        "",
        titre,
        "",
        message,
    ]
    if numero:
        lines += ["", f"Référence de la demande : {numero}"]
    lines += [
        "",
        "Merci de vous connecter à l'application pour traiter la demande.",
        "",
        "Cordialement,",
        "Gestion des demandes de chantier",
    ]
    return "\n".join(lines)


def send_workflow_email(
    *,
    smtp_host: str,
    smtp_port: int,
    smtp_user: str,
    smtp_password: str,
    sender: str,
    recipients: str | list[str],
    titre: str,
    message: str,
    numero: str | None = None,
) -> None:
    to_list = _split_emails(recipients) if isinstance(recipients, str) else [r for r in recipients if r]
    if not to_list:
        logger.warning("No recipient for workflow email %s", numero)
        return

    msg = EmailMessage()
    msg["Subject"] = f"{titre} - {numero}" if numero else titre
    msg["From"] = sender
    msg["To"] = ", ".join(to_list)
    msg.set_content(_generer_corps_mail(titre=titre, message=message, numero=numero))

    try:
        with smtplib.SMTP_SSL(smtp_host, smtp_port, timeout=20) as smtp:
            smtp.login(smtp_user, smtp_password)
            smtp.send_message(msg)
        logger.info("Workflow email sent for demande %s to %s recipient(s)", numero, len(to_list))
    except Exception:
        logger.exception("Failed to send workflow email for demande %s", numero)
