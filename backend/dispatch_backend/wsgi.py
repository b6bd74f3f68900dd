"""
WSGI config for the rider dispatch backend.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "backend.dispatch_backend.settings")

application = get_wsgi_application()
