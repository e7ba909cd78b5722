from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

ALLOWED_HOSTS = ['testserver']

PAYMENTS_WEBHOOK_BASE_URL = ""

PULLTASKS = {
    **PULLTASKS,
    "ENABLED": True,
    "OWNER": "test-owner",
    "MAX_WORKERS": 1,
}
