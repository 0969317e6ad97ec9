"""
WSGI config for Flash Express.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'flash_core.settings')

application = get_wsgi_application()
