"""
Standalone HTML pages served to customers following an emailed magic link.
"""
from typing import Any, Dict

from jinja2 import DictLoader, Environment

from ..config.settings import get_settings

_PAGE = """
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{{ page_title }}</title>
  <style>
    body { font-family: Arial, sans-serif; background: #f5f7fa; margin: 0; padding: 20px; }
    .card { max-width: 560px; margin: 40px auto; background: #fff; border-radius: 12px;
            padding: 32px; box-shadow: 0 10px 30px rgba(0,0,0,0.08); }
    .icon { font-size: 48px; text-align: center; }
    .details { background: #f8fafc; border-radius: 8px; padding: 16px; margin: 20px 0; }
    .btn { display: inline-block; padding: 12px 24px; border-radius: 8px; color: #fff;
           text-decoration: none; font-weight: bold; border: none; cursor: pointer; }
    .approve { background: #10b981; }
    .reject { background: #ef4444; }
    textarea { width: 100%; min-height: 100px; padding: 8px; box-sizing: border-box; }
    input[type=text], input[type=tel] { width: 100%; padding: 8px; box-sizing: border-box; margin-bottom: 10px; }
    .confirm { background: #2563eb; }
    .footer { margin-top: 28px; color: #888; font-size: 12px; text-align: center; }
  </style>
</head>
<body>
  <div class="card">
    {% block body %}{% endblock %}
    <div class="footer"><strong>{{ company_name }}</strong><br>
      If you have any questions, please contact us at {{ contact_email }}</div>
  </div>
</body>
</html>
"""

_QUOTE_DETAILS = """
<div class="details">
  <p><strong>Quote:</strong> {{ quote.quote_number }}</p>
  <p><strong>Title:</strong> {{ quote.title }}</p>
  <p><strong>Total Amount:</strong> {{ quote.currency }} {{ "{:,.2f}".format(quote.total_amount or 0) }}</p>
  <p><strong>Valid Until:</strong> {{ quote.valid_until.strftime('%d %b %Y') if quote.valid_until else 'N/A' }}</p>
</div>
"""

TEMPLATES = {
    "choice": """
{% extends "page" %}
{% block body %}
<h1>Quote {{ quote.quote_number }}</h1>
<p>Please review the quote below and let us know your decision.</p>
""" + _QUOTE_DETAILS + """
<p style="text-align: center;">
  <a href="?token={{ token | urlencode }}&action=approve" class="btn approve">Approve Quote</a>
  <a href="?token={{ token | urlencode }}&action=reject" class="btn reject">Reject Quote</a>
</p>
{% endblock %}
""",
    "form": """
{% extends "page" %}
{% block body %}
<h1>{{ 'Approve Quote' if action == 'approve' else 'Reject Quote' }}</h1>
""" + _QUOTE_DETAILS + """
<form method="POST">
  <input type="hidden" name="token" value="{{ token }}">
  <input type="hidden" name="action" value="{{ action }}">
  <p><label for="notes">Comments (Optional):</label></p>
  <textarea name="notes" id="notes" placeholder="Please provide any additional comments or feedback..."></textarea>
  <p style="text-align: center;">
    <button type="submit" class="btn {{ action }}">
      {{ 'Confirm Approval' if action == 'approve' else 'Confirm Rejection' }}</button>
  </p>
</form>
{% endblock %}
""",
    "address_form": """
{% extends "page" %}
{% block body %}
<h1>Delivery Address</h1>
<p>Please tell us where to deliver order <strong>{{ order.order_number }}</strong>.</p>
<form method="POST">
  <input type="hidden" name="token" value="{{ token }}">
  <label for="recipient_name">Recipient name</label>
  <input type="text" name="recipient_name" id="recipient_name" value="{{ customer.contact_name or '' }}">
  <label for="phone">Phone</label>
  <input type="tel" name="phone" id="phone" value="{{ customer.phone or '' }}">
  <label for="street_address">Street address *</label>
  <input type="text" name="street_address" id="street_address" required>
  <label for="city">City *</label>
  <input type="text" name="city" id="city" required>
  <label for="region">Region</label>
  <input type="text" name="region" id="region">
  <label for="digital_address">Digital address (GhanaPost GPS)</label>
  <input type="text" name="digital_address" id="digital_address">
  <p><label><input type="checkbox" name="is_default" value="true"> Save as my default address</label></p>
  <p style="text-align: center;"><button type="submit" class="btn confirm">Confirm Address</button></p>
</form>
{% endblock %}
""",
    "result": """
{% extends "page" %}
{% block body %}
<div class="icon" style="color: {{ '#10b981' if success else '#ef4444' }};">{% if success %}&#10003;{% else %}&#10007;{% endif %}</div>
<h1 style="text-align: center;">{{ title }}</h1>
<p style="text-align: center;">{{ message }}</p>
{% endblock %}
""",
}


_env = Environment(loader=DictLoader({"page": _PAGE, **TEMPLATES}), autoescape=True)


def render_page(name: str, page_title: str, **context: Any) -> str:
    settings = get_settings()
    base: Dict[str, Any] = {
        "page_title": page_title,
        "company_name": settings.APP_NAME,
        "contact_email": settings.ADMIN_NOTIFICATION_EMAIL,
    }
    base.update(context)
    return _env.get_template(name).render(**base)


def render_choice_page(quote, token: str) -> str:
    return render_page("choice", f"Quote {quote.quote_number}", quote=quote, token=token)


def render_form_page(quote, token: str, action: str) -> str:
    title = "Approve Quote" if action == "approve" else "Reject Quote"
    return render_page("form", f"{title} - {quote.quote_number}", quote=quote, token=token, action=action)


def render_result_page(title: str, message: str, success: bool = True) -> str:
    return render_page("result", title, title=title, message=message, success=success)


def render_address_form_page(order, token: str) -> str:
    return render_page("address_form", f"Delivery Address - {order.order_number}",
                       order=order, customer=order.customer, token=token)
