import logging
from typing import Any, Dict

import config
from patent_processing import Now, reference_date


logger = logging.getLogger(__name__)

NO_RECIPIENT_LABEL = "尚未設定 (請至編輯頁面新增)"
NO_RECIPIENT_SEND = "未設定信箱"


def reminder_subject(patent: Dict[str, Any]) -> str:
    return f"【專利繳費提醒】{patent.get('name', '')}專利"


def reminder_body(patent: Dict[str, Any]) -> str:
    p = {k: patent.get(k, "") for k in
         ("name", "country", "patentee", "appNumber", "pubNumber", "duration", "annuityDate", "annuityYear")}
    return (
        f"以下專利請於{p['annuityDate']}(即年費到期日)前繳納年費，避免專利失效。\n"
        "\n"
        f"專利名稱：{p['name']}\n"
        f"申請國家：{p['country']}\n"
        f"專利權人：{p['patentee']}\n"
        f"申請號/公開號：{p['appNumber']} / {p['pubNumber']}\n"
        f"專利期間：{p['duration']}\n"
        f"年費到期日/年次：{p['annuityDate']}，第{p['annuityYear']}年"
    )


def build_reminder_email(patent: Dict[str, Any], now: Now = None) -> Dict[str, str]:
    """Annuity reminder preview for one patent."""
    recipients = str(patent.get("notificationEmails") or "").strip()
    return {
        "sender": config.MAIL_SENDER,
        "recipients": recipients,
        "recipients_label": recipients or NO_RECIPIENT_LABEL,
        "date": reference_date(now).isoformat(),
        "subject": reminder_subject(patent),
        "body": reminder_body(patent),
    }


def clipboard_text(email: Dict[str, str]) -> str:
    return f"Subject: {email['subject']}\n\n{email['body']}"


def simulate_send(patent: Dict[str, Any]) -> str:
    """No mail leaves the process; the send is only logged."""
    recipients = str(patent.get("notificationEmails") or "").strip() or NO_RECIPIENT_SEND
    logger.info("Simulated reminder for patent %s to %s", patent.get("id"), recipients)
    return f"模擬發送成功！\n已將信件寄送至：{recipients}"
