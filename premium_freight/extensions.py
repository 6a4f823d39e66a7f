"""
Flask extensions and app-level slots shared by models, services and blueprints.

Instances are created unbound here and attached in create_app(), which keeps
imports free of circular dependencies.
"""

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect

db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()

login_manager = LoginManager()

# app.extensions key holding the MailTransport used by the notification dispatcher
MAIL_TRANSPORT_KEY = "premium_freight_mail"
