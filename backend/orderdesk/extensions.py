# Overview: Flask extension instances for database, migrations, and the order event bus.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.realtime_service import OrderEventBus

db = SQLAlchemy()
migrate = Migrate()
order_events = OrderEventBus()
