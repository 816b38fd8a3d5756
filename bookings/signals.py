from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from bookings.models import Booking, BookingPayment
from bookings.report_cache import invalidate_report_cache
from directory.models import Party, Vehicle


@receiver(post_save, sender=Booking)
@receiver(post_delete, sender=Booking)
@receiver(post_save, sender=BookingPayment)
@receiver(post_delete, sender=BookingPayment)
@receiver(post_save, sender=Party)
@receiver(post_delete, sender=Party)
@receiver(post_save, sender=Vehicle)
@receiver(post_delete, sender=Vehicle)
def reports_changed(sender, **kwargs):
    invalidate_report_cache()
