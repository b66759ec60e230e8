from django.contrib import admin
from .models import User

@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ("id", "email", "first_name", "last_name", "external_parent_id", "is_parent")
    search_fields = ("email", "first_name", "last_name", "external_parent_id")
    list_filter = ("is_parent",)
