"""Jinja2 email templates.

Each template type has three entries in the loader: ``<type>.subject``,
``<type>.html`` (extends ``base.html``, autoescaped) and ``<type>.txt``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from jinja2 import DictLoader, Environment, TemplateNotFound, select_autoescape

from backend.config import settings

_BASE_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{% block title %}{{ app_name }}{% endblock %}</title>
  <style>
    body { font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #333; margin: 0; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background: #6366f1; padding: 30px; text-align: center; border-radius: 8px 8px 0 0; }
    .header h1 { color: #fff; margin: 0; font-size: 24px; }
    .content { background: #fff; padding: 30px; border: 1px solid #e5e7eb; border-top: none; }
    .footer { background: #f9fafb; padding: 20px; text-align: center; font-size: 12px; color: #6b7280; }
    .button { display: inline-block; background: #6366f1; color: #fff; padding: 12px 24px; text-decoration: none; border-radius: 6px; }
    .highlight { background: #f0f9ff; border-left: 4px solid #6366f1; padding: 15px; margin: 20px 0; }
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1>{% block heading %}{% endblock %}</h1></div>
    <div class="content">{% block content %}{% endblock %}</div>
    <div class="footer">
      {% block footer %}<p>&copy; {{ year }} {{ company_name or app_name }}. This is an automated message.</p>{% endblock %}
    </div>
  </div>
</body>
</html>
"""


def _html(heading: str, body: str) -> str:
    return (
        '{% extends "base.html" %}'
        "{% block heading %}" + heading + "{% endblock %}"
        "{% block content %}" + body + "{% endblock %}"
    )


_TRIAL_EXPIRING_HTML = _html(
    "Your trial ends in {{ days_remaining }} day{{ '' if days_remaining == 1 else 's' }}",
    """<p>Hi {{ user_name }},</p>
<p>The free trial for <strong>{{ company_name }}</strong> ends in
<strong>{{ days_remaining }} day{{ '' if days_remaining == 1 else 's' }}</strong>.
Upgrade now to keep full access to your HR data.</p>
<p style="text-align:center"><a class="button" href="{{ upgrade_url }}">Upgrade now</a></p>
{% if can_request_extension and not has_pending_request %}
<p>Need more time to evaluate? <a href="{{ extension_url }}">Request a trial extension</a>.</p>
{% elif has_pending_request %}
<p>Your trial extension request is being reviewed.</p>
{% endif %}""",
)

_TRIAL_EXPIRING_TXT = (
    "Hi {{ user_name }},\n\nThe free trial for {{ company_name }} ends in {{ days_remaining }} "
    "day{{ '' if days_remaining == 1 else 's' }}.\n\nUpgrade: {{ upgrade_url }}\n"
    "{% if can_request_extension and not has_pending_request %}"
    "Request an extension: {{ extension_url }}\n{% endif %}"
)

_TEMPLATES: dict[str, dict[str, str]] = {
    "user_invitation": {
        "subject": "You've been invited to join {{ company_name }}",
        "html": _html(
            "You're invited!",
            """<p>Hi there,</p>
<p><strong>{{ inviter_name }}</strong> has invited you to join <strong>{{ company_name }}</strong>
as a <strong>{{ role }}</strong>.</p>
<p style="text-align:center"><a class="button" href="{{ invite_url }}">Accept invitation</a></p>
<p>If you didn't expect this invitation, you can ignore this email.</p>""",
        ),
        "txt": "{{ inviter_name }} has invited you to join {{ company_name }} as a {{ role }}.\n\n"
               "Accept your invitation: {{ invite_url }}\n",
    },
    "welcome": {
        "subject": "Welcome to {{ company_name }}!",
        "html": _html(
            "Welcome aboard!",
            """<p>Hi {{ user_name }},</p>
<p>Your account at <strong>{{ company_name }}</strong> is ready.</p>
<p style="text-align:center"><a class="button" href="{{ login_url }}">Go to dashboard</a></p>""",
        ),
        "txt": "Welcome to {{ company_name }}, {{ user_name }}!\n\nSign in: {{ login_url }}\n",
    },
    "password_reset": {
        "subject": "Reset your password",
        "html": _html(
            "Password reset",
            """<p>Hi {{ user_name }},</p>
<p>We received a request to reset your password.</p>
<p style="text-align:center"><a class="button" href="{{ reset_url }}">Reset password</a></p>
<p>This link expires in 1 hour. If you didn't ask for it, ignore this email.</p>""",
        ),
        "txt": "Hi {{ user_name }},\n\nReset your password: {{ reset_url }}\n\n"
               "This link expires in 1 hour.\n",
    },
    "leave_request_submitted": {
        "subject": "Leave request from {{ employee_name }}",
        "html": _html(
            "New leave request",
            """<p>Hi {{ manager_name }},</p>
<p><strong>{{ employee_name }}</strong> has submitted a leave request:</p>
<div class="highlight">
  <p><strong>Leave type:</strong> {{ leave_type }}</p>
  <p><strong>From:</strong> {{ start_date }} <strong>to</strong> {{ end_date }}</p>
</div>
<p>Please sign in to approve or reject it.</p>""",
        ),
        "txt": "Hi {{ manager_name }},\n\n{{ employee_name }} requested {{ leave_type }} "
               "from {{ start_date }} to {{ end_date }}.\n",
    },
    "leave_request_approved": {
        "subject": "Your leave request has been approved",
        "html": _html(
            "Leave approved",
            """<p>Hi {{ employee_name }},</p>
<p>Your <strong>{{ leave_type }}</strong> request from {{ start_date }} to {{ end_date }}
has been approved. Enjoy your time off!</p>""",
        ),
        "txt": "Hi {{ employee_name }},\n\nYour {{ leave_type }} request from {{ start_date }} "
               "to {{ end_date }} has been approved.\n",
    },
    "leave_request_rejected": {
        "subject": "Your leave request was not approved",
        "html": _html(
            "Leave request update",
            """<p>Hi {{ employee_name }},</p>
<p>Your <strong>{{ leave_type }}</strong> request was not approved.</p>
{% if reason %}<div class="highlight"><p><strong>Reason:</strong> {{ reason }}</p></div>{% endif %}""",
        ),
        "txt": "Hi {{ employee_name }},\n\nYour {{ leave_type }} request was not approved."
               "{% if reason %}\nReason: {{ reason }}{% endif %}\n",
    },
    "payroll_processed": {
        "subject": "Your payslip for {{ period_start }} - {{ period_end }} is ready",
        "html": _html(
            "Payroll processed",
            """<p>Hi {{ employee_name }},</p>
<p>Payroll for <strong>{{ period_start }}</strong> to <strong>{{ period_end }}</strong> has been processed.</p>
<div class="highlight"><p><strong>Net pay:</strong> {{ net_pay }}</p></div>""",
        ),
        "txt": "Hi {{ employee_name }},\n\nPayroll for {{ period_start }} to {{ period_end }} "
               "has been processed. Net pay: {{ net_pay }}\n",
    },
    "subscription_expiring": {
        "subject": "Your {{ company_name }} subscription is expiring",
        "html": _html(
            "Subscription expiring",
            """<p>The subscription for <strong>{{ company_name }}</strong> expires on
<strong>{{ expiration_date }}</strong>.</p>
<p style="text-align:center"><a class="button" href="{{ renew_url }}">Renew subscription</a></p>""",
        ),
        "txt": "The subscription for {{ company_name }} expires on {{ expiration_date }}.\n"
               "Renew: {{ renew_url }}\n",
    },
    "company_frozen": {
        "subject": "{{ company_name }} has been frozen",
        "html": _html(
            "Account frozen",
            """<p>The account for <strong>{{ company_name }}</strong> has been frozen and is now read-only.</p>
{% if reason %}<div class="highlight"><p><strong>Reason:</strong> {{ reason }}</p></div>{% endif %}
<p>Contact <a href="mailto:{{ support_email }}">{{ support_email }}</a> to restore access.</p>""",
        ),
        "txt": "The account for {{ company_name }} has been frozen and is now read-only.\n"
               "{% if reason %}Reason: {{ reason }}\n{% endif %}Contact {{ support_email }}.\n",
    },
    "suspicious_login": {
        "subject": "New sign-in to your account",
        "html": _html(
            "New device sign-in",
            """<p>Hi {{ user_name }},</p>
<p>We noticed a sign-in from a device we haven't seen before.</p>
<div class="highlight">
  <p><strong>Time:</strong> {{ login_time }}</p>
  <p><strong>Device:</strong> {{ browser }}</p>
  <p><strong>IP address:</strong> {{ ip_address or "unknown" }}</p>
</div>
<p>If this wasn't you, <a href="{{ secure_account_url }}">change your password</a> immediately.</p>""",
        ),
        "txt": "Hi {{ user_name }},\n\nNew sign-in at {{ login_time }} from {{ browser }} "
               "({{ ip_address or 'unknown IP' }}).\nIf this wasn't you: {{ secure_account_url }}\n",
    },
    "trial_started": {
        "subject": "Your {{ trial_days }}-day {{ plan_name }} trial has started",
        "html": _html(
            "Welcome to your trial",
            """<p>Hi {{ user_name }},</p>
<p><strong>{{ company_name }}</strong> is on a {{ trial_days }}-day trial of the
<strong>{{ plan_name }}</strong> plan, ending on {{ trial_end_date }}.</p>
<p style="text-align:center"><a class="button" href="{{ dashboard_url }}">Open dashboard</a></p>""",
        ),
        "txt": "Hi {{ user_name }},\n\n{{ company_name }} is on a {{ trial_days }}-day trial of "
               "{{ plan_name }} ending {{ trial_end_date }}.\nDashboard: {{ dashboard_url }}\n",
    },
    "trial_expired": {
        "subject": "Your {{ company_name }} trial has ended",
        "html": _html(
            "Your trial has ended",
            """<p>Hi {{ user_name }},</p>
<p>The trial for <strong>{{ company_name }}</strong> has ended and your account is now read-only.</p>
<p style="text-align:center"><a class="button" href="{{ upgrade_url }}">Upgrade now</a></p>
{% if can_request_extension and not has_pending_request %}
<p>Still evaluating? <a href="{{ extension_url }}">Request a trial extension</a>.</p>
{% endif %}""",
        ),
        "txt": "Hi {{ user_name }},\n\nThe trial for {{ company_name }} has ended; your account is "
               "read-only.\nUpgrade: {{ upgrade_url }}\n",
    },
    "trial_expiring_7_days": {
        "subject": "Your trial ends in 7 days",
        "html": _TRIAL_EXPIRING_HTML,
        "txt": _TRIAL_EXPIRING_TXT,
    },
    "trial_expiring_3_days": {
        "subject": "Your trial ends in 3 days",
        "html": _TRIAL_EXPIRING_HTML,
        "txt": _TRIAL_EXPIRING_TXT,
    },
    "trial_expiring_1_day": {
        "subject": "Your trial ends tomorrow",
        "html": _TRIAL_EXPIRING_HTML,
        "txt": _TRIAL_EXPIRING_TXT,
    },
    "trial_extension_approved": {
        "subject": "Your trial extension has been approved",
        "html": _html(
            "Trial extended",
            """<p>Your request for {{ requested_days }} more days on <strong>{{ company_name }}</strong>
has been approved. Your trial now ends on <strong>{{ new_trial_end }}</strong>.</p>""",
        ),
        "txt": "Your trial for {{ company_name }} was extended by {{ requested_days }} days "
               "and now ends on {{ new_trial_end }}.\n",
    },
    "trial_extension_rejected": {
        "subject": "Your trial extension request",
        "html": _html(
            "Trial extension declined",
            """<p>Your trial extension request for <strong>{{ company_name }}</strong> was not approved.</p>
{% if review_notes %}<div class="highlight"><p>{{ review_notes }}</p></div>{% endif %}
<p style="text-align:center"><a class="button" href="{{ upgrade_url }}">Choose a plan</a></p>""",
        ),
        "txt": "Your trial extension request for {{ company_name }} was not approved.\n"
               "{% if review_notes %}{{ review_notes }}\n{% endif %}",
    },
    "employee_account_created": {
        "subject": "Your {{ company_name }} account is ready",
        "html": _html(
            "Your account is ready",
            """<p>Hi {{ employee_name }},</p>
<p>An account has been created for you at <strong>{{ company_name }}</strong>.</p>
<div class="highlight">
  <p><strong>Employee number:</strong> {{ employee_number }}</p>
  <p><strong>Sign-in email:</strong> {{ email }}</p>
  <p><strong>Temporary password:</strong> {{ temporary_password }}</p>
</div>
<p>Please change your password after your first sign-in.</p>
<p style="text-align:center"><a class="button" href="{{ login_url }}">Sign in</a></p>""",
        ),
        "txt": "Hi {{ employee_name }},\n\nYour {{ company_name }} account is ready.\n"
               "Email: {{ email }}\nTemporary password: {{ temporary_password }}\n"
               "Sign in: {{ login_url }}\n",
    },
    "document_expiring": {
        "subject": "{{ document_name }} expires in {{ days_until_expiry }} day{{ '' if days_until_expiry == 1 else 's' }}",
        "html": _html(
            "Document expiring",
            """<p>Hi {{ employee_name }},</p>
<p>Your document <strong>{{ document_name }}</strong> expires on <strong>{{ expiry_date }}</strong>.
Please upload a renewed copy.</p>""",
        ),
        "txt": "Hi {{ employee_name }},\n\n{{ document_name }} expires on {{ expiry_date }}.\n",
    },
}

TEMPLATE_TYPES: tuple[str, ...] = tuple(_TEMPLATES)


def _build_loader_mapping() -> dict[str, str]:
    mapping = {"base.html": _BASE_HTML}
    for name, parts in _TEMPLATES.items():
        mapping[f"{name}.subject"] = parts["subject"]
        mapping[f"{name}.html"] = parts["html"]
        mapping[f"{name}.txt"] = parts["txt"]
    return mapping


env = Environment(
    loader=DictLoader(_build_loader_mapping()),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
    trim_blocks=True,
    lstrip_blocks=True,
)


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


def render_email(template_type: str, data: dict[str, Any]) -> RenderedEmail:
    """Render subject, HTML and text bodies for *template_type*.

    Raises ``KeyError`` for an unknown template type.
    """
    if template_type not in _TEMPLATES:
        raise KeyError(template_type)
    context = {
        "app_name": settings.APP_NAME,
        "app_url": settings.APP_URL,
        "year": datetime.now(timezone.utc).year,
        **data,
    }
    try:
        subject = env.get_template(f"{template_type}.subject").render(context)
        html = env.get_template(f"{template_type}.html").render(context)
        text = env.get_template(f"{template_type}.txt").render(context)
    except TemplateNotFound as exc:  # pragma: no cover - mapping is static
        raise KeyError(template_type) from exc
    return RenderedEmail(subject=" ".join(subject.split()), html=html, text=text)
