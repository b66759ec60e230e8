import os
from django.core.wsgi import get_wsgi_application

# settings loads .env itself
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
application = get_wsgi_application()
