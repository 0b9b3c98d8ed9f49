from datetime import datetime, timezone
from db import db


def utc_now():
    """Return current UTC time (timezone-aware)"""
    return datetime.now(timezone.utc)


class StorageItem(db.Model):
    """Key/value storage row; one JSON document per (owner, key)"""
    __tablename__ = 'user_storage'
    __table_args__ = (
        db.UniqueConstraint('owner', 'storage_key', name='uq_user_storage_owner_key'),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner = db.Column(db.String(255), nullable=False, index=True)
    storage_key = db.Column(db.String(255), nullable=False)
    storage_value = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    def __init__(self, owner, storage_key, storage_value=None):
        self.owner = owner
        self.storage_key = storage_key
        self.storage_value = storage_value

    def to_dict(self):
        """Convert storage item to dictionary"""
        return {
            'id': self.id,
            'owner': self.owner,
            'key': self.storage_key,
            'value': self.storage_value,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    @staticmethod
    def get_item(owner, storage_key):
        """Get a storage row by owner and key"""
        return StorageItem.query.filter_by(owner=owner, storage_key=storage_key).first()

    def __repr__(self):
        return f'<StorageItem {self.owner}:{self.storage_key}>'
