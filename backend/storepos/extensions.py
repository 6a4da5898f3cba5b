# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

# Keys under app.extensions for the per-app analytics components
ANALYTICS_CACHE_KEY = "storepos.analytics_cache"
PUSH_BROKER_KEY = "storepos.push_broker"
DISPATCHER_KEY = "storepos.analytics_dispatcher"
