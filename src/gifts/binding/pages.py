"""HTML landing pages for the emailed binding confirmation link."""

from __future__ import annotations

from html import escape

from gifts.config import get_settings


def render_page(title: str, message: str, button_text: str = "Open App") -> str:
    """A small self-contained card with a link back to the app."""
    frontend_url = escape(get_settings().frontend_url, quote=True)
    safe_title = escape(title)
    return f"""\
<!doctype html>
<html lang="zh-CN">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>{safe_title}</title>
    <style>
      body {{ font-family: Arial, sans-serif; background: #f8f8f6; color: #1f2937; margin: 0; padding: 24px; }}
      .card {{ max-width: 560px; margin: 40px auto; background: #fff; border-radius: 14px; padding: 24px; }}
      h1 {{ margin: 0 0 12px; font-size: 24px; }}
      p {{ margin: 0 0 14px; line-height: 1.7; }}
      a {{ display: inline-block; padding: 10px 16px; border-radius: 8px; text-decoration: none; color: #fff; background: #64723f; }}
      .muted {{ color: #6b7280; font-size: 12px; margin-top: 12px; }}
    </style>
  </head>
  <body>
    <div class="card">
      <h1>{safe_title}</h1>
      <p>{escape(message)}</p>
      <a href="{frontend_url}">{escape(button_text)}</a>
      <p class="muted">If the button does not open the app, copy this URL: {frontend_url}</p>
    </div>
  </body>
</html>
"""


MISSING_TOKEN = ("Confirmation Failed", "Missing confirmation token. Please retry.", "Back to App")
NOT_FOUND = ("Request Not Found", "This binding request does not exist or is already handled.")
EXPIRED = ("Request Expired", "The confirmation link has expired. Ask your partner to retry.")
USER_GONE = ("User Not Found", "One side of this binding request no longer exists.")
CANNOT_BIND = ("Cannot Bind", "At least one account is already connected.")
SUCCESS = ("Binding Success", "You have successfully confirmed the connection.")
