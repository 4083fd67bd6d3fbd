"""Database handle shared by the models, helpers and the provisioning queue."""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
