"""
Django Signals.

Trade-off Discussion:
---------------------
Counters are NOT maintained with signals. Signals do not fire on
QuerySet.update() / QuerySet.delete(), and the ledger needs the counter
write inside the same transaction as the edge write anyway, so all
counter maintenance is explicit in services.py / comments.py.

The one signal here gives every new identity account an empty profile
with zeroed counters, so the ledger can always assume the counter row
exists. The identity provider never has to know about profiles.
"""

from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import Profile


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_profile_for_new_user(sender, instance, created, **kwargs):
    """
    When an account is created, create its profile.

    Email/handle are left empty: they are claimed later through
    create_or_update_profile, where uniqueness is checked.
    """
    if created and not kwargs.get('raw', False):
        Profile.objects.get_or_create(user=instance)
