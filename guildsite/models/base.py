from flask_sqlalchemy import SQLAlchemy

# Single SQLAlchemy instance shared by the app. Table definitions live on the
# per-dialect MetaData built in ``schema.build_schema``, not on db.metadata.
db = SQLAlchemy()
