"""
templates.py - HTML bodies for customer and partner notifications.

Values are HTML-escaped; amounts are formatted as VND with dot separators.
"""
from __future__ import annotations

from html import escape
from typing import Optional


def format_vnd(amount: Optional[int]) -> str:
    if amount is None:
        return "-"
    return f"{amount:,}".replace(",", ".") + " ₫"


def _layout(title: str, body: str) -> str:
    return (
        "<div style=\"font-family:Arial,sans-serif;max-width:600px;margin:auto\">"
        f"<h2 style=\"color:#1a4d8f\">{escape(title)}</h2>"
        f"{body}"
        "<p style=\"color:#888;font-size:12px\">OnePass - Dịch vụ lãnh sự và pháp lý</p>"
        "</div>"
    )


def consultation_received(full_name: str, service: str) -> tuple[str, str]:
    subject = "OnePass đã nhận yêu cầu tư vấn của bạn"
    body = (
        f"<p>Xin chào {escape(full_name)},</p>"
        f"<p>Chúng tôi đã nhận yêu cầu tư vấn dịch vụ <b>{escape(service)}</b>. "
        "Chuyên viên OnePass sẽ liên hệ với bạn trong thời gian sớm nhất.</p>"
    )
    return subject, _layout(subject, body)


def partner_registration_received(company_name: str) -> tuple[str, str]:
    subject = "OnePass đã nhận đăng ký đối tác"
    body = (
        f"<p>Kính gửi {escape(company_name)},</p>"
        "<p>Cảm ơn quý công ty đã đăng ký trở thành đối tác của OnePass. "
        "Chúng tôi sẽ xem xét và phản hồi trong vòng 2 ngày làm việc.</p>"
    )
    return subject, _layout(subject, body)


def service_approved(
    recipient_name: str,
    code: str,
    service: str,
    amount: int,
    discount_percent: int,
    discount_amount: int,
    wallet_deduction: int,
    post_discount_amount: int,
    tier: Optional[str] = None,
) -> tuple[str, str]:
    subject = f"Dịch vụ {code} đã được duyệt"
    rows = [
        ("Mã dịch vụ", escape(code)),
        ("Dịch vụ", escape(service)),
        ("Số tiền", format_vnd(amount)),
        (f"Chiết khấu ({discount_percent}%)", format_vnd(discount_amount)),
        ("Trừ ví", format_vnd(wallet_deduction)),
        ("Thành tiền", f"<b>{format_vnd(post_discount_amount)}</b>"),
    ]
    if tier:
        rows.append(("Hạng đối tác", escape(tier)))
    table = "".join(
        f"<tr><td style=\"padding:4px 12px 4px 0\">{label}</td><td>{value}</td></tr>"
        for label, value in rows
    )
    body = (
        f"<p>Kính gửi {escape(recipient_name)},</p>"
        "<p>Yêu cầu dịch vụ của quý khách đã được duyệt với thông tin sau:</p>"
        f"<table>{table}</table>"
    )
    return subject, _layout(subject, body)
