# Overview: Flask extension instances for database, migrations and the collection cache.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.cache_service import CollectionCache

db = SQLAlchemy()
migrate = Migrate()
collection_cache = CollectionCache()
