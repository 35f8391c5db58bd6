# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

# Key under app.extensions holding the subscription gate for the running app.
SUBSCRIPTION_GATE_KEY = "tillpoint.subscription_gate"
