"""
Email templates for Gifts.

All templates use inline CSS for email client compatibility and share the
warm olive accent of the app.

Each template function returns (subject, html_body, text_body).
"""

from __future__ import annotations

from html import escape

# Color constants
BG_PAGE = "#F8F8F6"
BG_CARD = "#FFFFFF"
ACCENT = "#64723F"
TEXT_PRIMARY = "#1F2937"
TEXT_MUTED = "#6B7280"


def _base_layout(content: str, app_name: str = "Gifts") -> str:
    """Wrap content in the base email layout."""
    return f"""\
<!DOCTYPE html>
<html lang="zh-CN">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{app_name}</title>
</head>
<body style="margin: 0; padding: 0; background-color: {BG_PAGE}; font-family: Arial, Helvetica, sans-serif;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="background-color: {BG_PAGE};">
        <tr>
            <td align="center" style="padding: 32px 16px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="560" style="max-width: 560px; width: 100%;">
                    <tr>
                        <td style="background-color: {BG_CARD}; border-radius: 14px; padding: 28px 24px; color: {TEXT_PRIMARY}; line-height: 1.7;">
                            {content}
                        </td>
                    </tr>
                    <tr>
                        <td align="center" style="padding-top: 20px;">
                            <p style="color: {TEXT_MUTED}; font-size: 12px; margin: 0;">
                                如果这不是你本人的操作，请忽略这封邮件。
                            </p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def _code_block(code: str) -> str:
    return (
        f'<p style="font-size: 28px; font-weight: 700; letter-spacing: 6px; margin: 12px 0; color: {ACCENT};">'
        f"{escape(code)}</p>"
    )


def signup_code(code: str, ttl_minutes: int) -> tuple[str, str, str]:
    """Registration verification code."""
    subject = "【Gifts】邮箱验证码"
    text = f"你的 Gifts 注册验证码是 {code}，{ttl_minutes} 分钟内有效。"
    html = _base_layout(
        f"""\
<h2 style="margin: 0 0 12px;">Gifts 邮箱验证</h2>
<p>你的验证码如下：</p>
{_code_block(code)}
<p>验证码 <strong>{ttl_minutes} 分钟</strong>内有效，请勿泄露给他人。</p>"""
    )
    return subject, html, text


def reset_code(code: str, ttl_minutes: int) -> tuple[str, str, str]:
    """Password reset verification code."""
    subject = "【Gifts】重置密码验证码"
    text = f"你的 Gifts 重置密码验证码是 {code}，{ttl_minutes} 分钟内有效。"
    html = _base_layout(
        f"""\
<h2 style="margin: 0 0 12px;">Gifts 重置密码</h2>
<p>你的验证码如下：</p>
{_code_block(code)}
<p>验证码 <strong>{ttl_minutes} 分钟</strong>内有效，请勿泄露给他人。</p>"""
    )
    return subject, html, text


def binding_confirm(
    requester_name: str,
    requester_email: str,
    invite_code: str,
    confirm_url: str,
    ttl_hours: int,
) -> tuple[str, str, str]:
    """Ask the invite code's owner to confirm a binding request."""
    subject = "【Gifts】关系绑定确认请求"
    text = (
        f"{requester_name} ({requester_email}) 希望绑定你的邀请码 {invite_code}。"
        f"请在 {ttl_hours} 小时内打开此链接确认：{confirm_url}"
    )
    html = _base_layout(
        f"""\
<h2 style="margin: 0 0 12px;">Gifts 关系绑定确认</h2>
<p><strong>{escape(requester_name)}</strong>（{escape(requester_email)}）正在请求绑定你的邀请码：</p>
<p style="font-size: 20px; font-weight: 700; letter-spacing: 2px; margin: 10px 0; color: {ACCENT};">{escape(invite_code)}</p>
<p>请在 {ttl_hours} 小时内点击下面按钮确认：</p>
<p style="margin: 18px 0;">
    <a href="{escape(confirm_url, quote=True)}" style="display: inline-block; padding: 10px 18px; background: {ACCENT}; color: #FFFFFF; text-decoration: none; border-radius: 8px; font-weight: 600;">同意绑定</a>
</p>"""
    )
    return subject, html, text
