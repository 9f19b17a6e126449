from buzzquiz import db
import json
import time


class Document(db.Model):
    """One top-level node of the path-addressed store.

    A store path ``games/1234/players/p1/score`` lives in the row
    ``(collection='games', key='1234')``; everything below the key is kept
    in the JSON ``body``. ``status`` mirrors ``body['status']`` so it can be
    used as an equality index.
    """
    __tablename__ = 'document'
    INDEXED_FIELDS = ('status',)

    collection = db.Column(db.String(64), primary_key=True)
    key = db.Column(db.String(128), primary_key=True)
    body = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(32), nullable=True, index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    updated_at = db.Column(db.Float, nullable=False, default=time.time)

    @property
    def value(self):
        return json.loads(self.body) if self.body else None

    @value.setter
    def value(self, new_value):
        self.body = encode_body(new_value)
        self.status = index_value(new_value, 'status')
        self.updated_at = time.time()

    def to_dict(self):
        return {
            'collection': self.collection,
            'key': self.key,
            'version': self.version,
            'value': self.value,
        }


def encode_body(value) -> str:
    return json.dumps(value, ensure_ascii=False)


def index_value(value, field: str):
    if isinstance(value, dict):
        indexed = value.get(field)
        return str(indexed) if indexed is not None else None
    return None
