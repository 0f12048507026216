from jinja2 import Environment, DictLoader, select_autoescape

# ----------------------------
# Jinja2 in-memory templates (no files needed)
# ----------------------------
TEMPLATES = {
    "verify.html": r"""
    <html>
      <head><meta charset="utf-8"><title>Ticket check</title></head>
      <body style="font-family: sans-serif; text-align: center; padding: 50px;">
        {% if outcome == "valid" %}
          <h1 style="color: green;">&#9989; Valid Ticket</h1>
          <p>Ticket Code: {{ code }}</p>
          <p>Event Date: {{ event_date }}</p>
        {% elif outcome == "used" %}
          <h1 style="color: orange;">&#9888;&#65039; Already Used</h1>
          <p>This ticket has already been checked in.</p>
        {% else %}
          <h1 style="color: red;">&#10060; Invalid Ticket</h1>
          <p>This ticket code is not valid.</p>
        {% endif %}
      </body>
    </html>
    """,

    "ticket.html": r"""
    <html>
      <head><meta charset="utf-8"><title>{{ event_name }} ticket</title></head>
      <body style="font-family: system-ui, sans-serif; text-align: center; padding: 30px;">
        <h2 style="color: #0A1A33;">{{ event_name }}</h2>
        <p style="color: #666;">{{ venue_name }} &middot; {{ event_date }}</p>
        <img src="{{ qr }}" width="260" height="260" alt="QR Code"/>
        <h3 style="letter-spacing: 2px;">{{ code }}</h3>
        {% if redeemed %}<p style="color: orange;">Checked in</p>{% endif %}
      </body>
    </html>
    """,

    "tickets_email.html": r"""
    <div style="font-family: system-ui, -apple-system, 'Segoe UI', sans-serif; max-width: 600px; margin: 0 auto;">
      <h2 style="color: #0A1A33;">{{ event_name }}</h2>
      <p style="font-size: 16px;">Thank you for your purchase!</p>
      <p style="font-size: 14px; color: #666;">Doors open at 7:00 PM at {{ venue_name }}</p>
      <hr style="border: 1px solid #eee; margin: 20px 0;">
      {% for t in tickets %}
      <div style="margin-bottom:30px; padding: 20px; border: 2px solid #0A1A33; border-radius: 10px;">
        <h3 style="color: #0A1A33;">Ticket Code: {{ t.code }}</h3>
        <p style="color: #666;">Event Date: {{ t.event_date }}</p>
        <img src="cid:{{ t.cid }}" width="200" height="200" alt="QR Code" style="margin: 10px 0;"/>
        <p style="font-size: 12px; color: #999;">Present this QR code at the door for entry</p>
      </div>
      {% endfor %}
      <hr style="border: 1px solid #eee; margin: 20px 0;">
      <p style="font-size: 12px; color: #999;">
        Save this email or take a screenshot. You'll need to show the QR code at the door.
      </p>
    </div>
    """,

    "tickets_email.txt": r"""Thank you for your purchase!

{{ event_name }} - doors open at 7:00 PM at {{ venue_name }}.
{% for t in tickets %}
Ticket code: {{ t.code }}   Event date: {{ t.event_date }}
{% endfor %}
Show the code (or its QR image) at the door.
""",

    "login.html": r"""
    <html>
      <head><meta charset="utf-8"><title>Admin login</title></head>
      <body style="font-family:system-ui;margin:2rem">
        <h3>Door admin</h3>
        {% if error %}<p style="color:red">{{ error }}</p>{% endif %}
        <form method="post" action="/admin/login">
          <input type="hidden" name="next" value="{{ next }}"/>
          <label>User <input name="username"/></label>
          <label>Password <input name="password" type="password"/></label>
          <button type="submit">Log in</button>
        </form>
      </body>
    </html>
    """,

    "admin.html": r"""
    <html>
      <head><meta charset="utf-8"><title>{{ event_name }} &middot; door</title></head>
      <body style="font-family:system-ui;margin:2rem">
        <h3>{{ event_name }} &middot; {{ event_date }}</h3>
        <table>
          <tr><td>Sold</td><td>{{ stats.sold }}</td></tr>
          <tr><td>Scanned</td><td>{{ stats.scanned }}</td></tr>
          <tr><td>Remaining</td><td>{{ stats.remaining }}</td></tr>
        </table>
        <p><a href="/offline-tickets?date={{ event_date }}">Offline list</a>
           &middot; <a href="/admin/logout">Log out</a></p>
      </body>
    </html>
    """,
}

env = Environment(
    loader=DictLoader(TEMPLATES),
    autoescape=select_autoescape(["html"]),
)


def render(name: str, **context) -> str:
    return env.get_template(name).render(**context)
