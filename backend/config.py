import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///buzzquiz.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Comma separated list of browser origins allowed to talk to the API
    CORS_ORIGINS = [o.strip() for o in os.environ.get(
        'CORS_ORIGINS', 'http://localhost:5173,http://127.0.0.1:5173'
    ).split(',') if o.strip()]
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Room code allocation: give up after this many collisions
    ROOM_CODE_MAX_ATTEMPTS = int(os.environ.get('ROOM_CODE_MAX_ATTEMPTS', '50'))
    # Open matchmaking scans at most this many waiting rooms
    OPEN_MATCH_PAGE_SIZE = int(os.environ.get('OPEN_MATCH_PAGE_SIZE', '10'))
    # Used when a room is created without an explicit delay rule (seconds)
    DEFAULT_NEXT_QUESTION_DELAY_SEC = float(os.environ.get('DEFAULT_NEXT_QUESTION_DELAY_SEC', '3'))
    # Host disconnect grace period before failover / abandonment (seconds)
    HOST_GRACE_PERIOD_SEC = float(os.environ.get('HOST_GRACE_PERIOD_SEC', '5'))
    # Waiting rooms older than this are swept by `flask sessions-sweep` (seconds)
    ABANDONED_SESSION_SEC = int(os.environ.get('ABANDONED_SESSION_SEC', '1800'))
    # Host-side judgment retries when a store write fails
    JUDGE_MAX_RETRIES = int(os.environ.get('JUDGE_MAX_RETRIES', '3'))
    JUDGE_RETRY_BACKOFF_SEC = float(os.environ.get('JUDGE_RETRY_BACKOFF_SEC', '0.5'))
