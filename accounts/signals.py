from django.contrib.auth.signals import user_logged_out
from django.dispatch import receiver
from localcache.cache import LocalCache


@receiver(user_logged_out)
def on_user_logged_out(sender, request, user, **kwargs):
    # Signing out ends the parent session: drop tokens and cached data
    if user is not None:
        LocalCache(user).clear_all()
