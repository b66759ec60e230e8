from django.contrib import admin
from .models import CacheSlot

@admin.register(CacheSlot)
class CacheSlotAdmin(admin.ModelAdmin):
    list_display = ("owner", "key", "updated_at")
    list_filter = ("key",)
    search_fields = ("owner__email",)
