"""WSGI config for the PathLab LIMS project."""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "pathlab.settings")

application = get_wsgi_application()
