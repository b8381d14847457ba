"""HTML and plain-text bodies for notification emails."""
import html
from typing import Optional

_STYLE = """
  body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;
         line-height: 1.6; color: #1a1a1a; max-width: 600px; margin: 0 auto; padding: 0; }
  .container { border: 1px solid #e0e0e0; margin: 20px; }
  .header { border-bottom: 3px solid #000000; padding: 30px; }
  .header h1 { margin: 0; font-size: 24px; font-weight: 700; }
  .header p { margin: 8px 0 0 0; font-size: 14px; color: #666666; }
  .content { padding: 30px; }
  .info-table { width: 100%; border-collapse: collapse; margin: 20px 0;
                background: #fafafa; border: 1px solid #e0e0e0; }
  .info-table td { padding: 12px 15px; border-bottom: 1px solid #e0e0e0; font-size: 14px; }
  .info-table td:first-child { font-weight: 600; color: #666666; width: 120px;
                               text-transform: uppercase; font-size: 11px; }
  .diff { border: 1px solid #e0e0e0; padding: 15px; margin: 20px 0; }
  .button { display: inline-block; padding: 12px 24px; background: #000000;
            color: #ffffff; text-decoration: none; font-weight: 600; }
  .footer { padding: 20px 30px; font-size: 12px; color: #999999; border-top: 1px solid #e0e0e0; }
"""


def _page(title: str, subtitle: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <style>{_STYLE}</style>
  </head>
  <body>
    <div class="container">
      <div class="header">
        <h1>{html.escape(title)}</h1>
        <p>{html.escape(subtitle)}</p>
      </div>
      <div class="content">
{body}
      </div>
      <div class="footer">Sent by AlertFrame. Manage this alert from your dashboard.</div>
    </div>
  </body>
</html>"""


def change_email_html(
    alert_title: str,
    url: str,
    change_type: str,
    summary: str,
    diff_html: str,
    dashboard_url: Optional[str] = None,
) -> str:
    """Email body for a detected change. ``diff_html`` is already escaped markup."""
    button = (
        f'<p><a class="button" href="{html.escape(dashboard_url, quote=True)}">View in Dashboard</a></p>'
        if dashboard_url else ""
    )
    body = f"""
        <table class="info-table">
          <tr><td>Alert</td><td>{html.escape(alert_title)}</td></tr>
          <tr><td>Change</td><td>{html.escape(change_type)}</td></tr>
          <tr><td>Page</td><td><a href="{html.escape(url, quote=True)}">{html.escape(url)}</a></td></tr>
          <tr><td>Summary</td><td>{html.escape(summary)}</td></tr>
        </table>
        <div class="diff">{diff_html}</div>
        {button}"""
    return _page("Change Detected", alert_title, body)


def change_email_text(alert_title: str, url: str, change_type: str, summary: str) -> str:
    return "\n".join([
        f"Change detected: {alert_title}",
        "=" * 40,
        "",
        f"Page: {url}",
        f"Change: {change_type}",
        f"Summary: {summary}",
        "",
        "--",
        "AlertFrame",
    ])


def alert_created_email_html(alert_title: str, url: str, css_selector: str, frequency_label: str) -> str:
    """Confirmation sent when a new alert is created."""
    body = f"""
        <p>Your alert is set up. We'll check the element below and email you when it changes.</p>
        <table class="info-table">
          <tr><td>Alert</td><td>{html.escape(alert_title)}</td></tr>
          <tr><td>Page</td><td><a href="{html.escape(url, quote=True)}">{html.escape(url)}</a></td></tr>
          <tr><td>Element</td><td><code>{html.escape(css_selector)}</code></td></tr>
          <tr><td>Frequency</td><td>{html.escape(frequency_label)}</td></tr>
        </table>"""
    return _page("Alert Created", alert_title, body)
