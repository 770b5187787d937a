"""
extensions.py — Unbound Flask extensions shared by models, services and routes.

`db` and `ma` are created without an app and bound in create_app() through
init_app(), so each test run can build its own app against its own database:

    from backend.app.extensions import db
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

# Models subclass db.Model; services receive db.session from the routes.
db = SQLAlchemy()

# Bound alongside `db` so marshmallow shares the app's lifecycle.
# Request schemas in app/schemas/ subclass plain marshmallow.Schema, not
# ma.Schema: tests/unit/ loads them with no application context.
ma = Marshmallow()
